from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Mapping

from .types import (
    INT32_MAX,
    INT32_MIN,
    INT64_MAX,
    INT64_MIN,
    FieldDef,
    FieldType,
    Record,
    Schema,
)


class ViolationReason(StrEnum):
    MISSING_FIELD = "MISSING_FIELD"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"


class UnknownFieldPolicy(StrEnum):
    REJECT = "reject"
    IGNORE = "ignore"


@dataclass(frozen=True, slots=True)
class SchemaViolation:
    field: str
    reason: ViolationReason
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "reason": self.reason.value,
            "message": self.message,
        }


_PY_TYPES: dict[FieldType, tuple[type, ...]] = {
    FieldType.STRING: (str,),
    FieldType.INT32: (int,),
    FieldType.INT64: (int,),
    FieldType.BOOL: (bool,),
    FieldType.FLOAT: (float,),
    FieldType.BYTES: (bytes,),
}

_INT_BOUNDS: dict[FieldType, tuple[int, int]] = {
    FieldType.INT32: (INT32_MIN, INT32_MAX),
    FieldType.INT64: (INT64_MIN, INT64_MAX),
}


def check_value(fd: FieldDef, value: Any) -> SchemaViolation | None:
    """
    Check one value against its field definition. Types are checked exactly:
    no implicit widening and `bool` is never accepted as an integer.
    """
    if value is None:
        if fd.nullable:
            return None
        return SchemaViolation(
            fd.name, ViolationReason.MISSING_FIELD, "required field is null"
        )

    expected = _PY_TYPES[fd.type]
    is_bool = isinstance(value, bool)
    if not isinstance(value, expected) or (fd.type != FieldType.BOOL and is_bool):
        return SchemaViolation(
            fd.name,
            ViolationReason.TYPE_MISMATCH,
            f"expected {fd.type.value}, got {type(value).__name__}",
        )

    bounds = _INT_BOUNDS.get(fd.type)
    if bounds is not None and not bounds[0] <= value <= bounds[1]:
        return SchemaViolation(
            fd.name,
            ViolationReason.OUT_OF_RANGE,
            f"{value} does not fit in {fd.type.value}",
        )
    return None


class SchemaRegistry:
    """
    Holds the target schema and validates records against it. Pure: validation
    never mutates the record.
    """

    def __init__(
        self,
        schema: Schema,
        *,
        unknown_fields: UnknownFieldPolicy = UnknownFieldPolicy.IGNORE,
    ) -> None:
        self.schema = schema
        self.unknown_fields = UnknownFieldPolicy(unknown_fields)

    def validate(self, record: Mapping[str, Any]) -> SchemaViolation | None:
        for fd in self.schema:
            if fd.name not in record:
                if fd.nullable:
                    continue
                return SchemaViolation(
                    fd.name, ViolationReason.MISSING_FIELD, "required field is absent"
                )
            violation = check_value(fd, record[fd.name])
            if violation is not None:
                return violation

        if self.unknown_fields == UnknownFieldPolicy.REJECT:
            for name in record:
                if name not in self.schema:
                    return SchemaViolation(
                        str(name),
                        ViolationReason.UNKNOWN_FIELD,
                        "field is not declared in the schema",
                    )
        return None

    def project(self, record: Mapping[str, Any]) -> Record:
        """Schema-ordered copy of `record`; absent nullable fields become None."""
        return {fd.name: record.get(fd.name) for fd in self.schema}
