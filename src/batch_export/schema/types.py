from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Iterator, Mapping, Sequence

import pyarrow as pa

from batch_export.core.json import stable_json_dumps

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1
INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1


class FieldType(StrEnum):
    STRING = "STRING"
    INT32 = "INT32"
    INT64 = "INT64"
    BOOL = "BOOL"
    FLOAT = "FLOAT"
    BYTES = "BYTES"


# FLOAT is a 64-bit double: Python floats round-trip without loss.
ARROW_TYPES: dict[FieldType, pa.DataType] = {
    FieldType.STRING: pa.string(),
    FieldType.INT32: pa.int32(),
    FieldType.INT64: pa.int64(),
    FieldType.BOOL: pa.bool_(),
    FieldType.FLOAT: pa.float64(),
    FieldType.BYTES: pa.binary(),
}

# Fixed-width payload sizes used for row-group byte estimates; None = variable.
FIXED_WIDTH: dict[FieldType, int | None] = {
    FieldType.STRING: None,
    FieldType.INT32: 4,
    FieldType.INT64: 8,
    FieldType.BOOL: 1,
    FieldType.FLOAT: 8,
    FieldType.BYTES: None,
}


@dataclass(frozen=True, slots=True)
class FieldDef:
    name: str
    type: FieldType
    nullable: bool = True

    def to_arrow(self) -> pa.Field:
        return pa.field(self.name, ARROW_TYPES[self.type], nullable=self.nullable)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type.value, "nullable": self.nullable}


@dataclass(frozen=True, slots=True)
class Schema:
    """
    Ordered, immutable set of fields. Field names are unique.
    """

    fields: tuple[FieldDef, ...]

    def __post_init__(self) -> None:
        names = [f.name for f in self.fields]
        if not names:
            raise ValueError("Schema must declare at least one field")
        if len(names) != len(set(names)):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate field name(s) in schema: {dupes}")

    @classmethod
    def of(cls, *fields: FieldDef) -> Schema:
        return cls(fields=tuple(fields))

    def __iter__(self) -> Iterator[FieldDef]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __contains__(self, name: object) -> bool:
        return any(f.name == name for f in self.fields)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def field(self, name: str) -> FieldDef:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def to_arrow(self) -> pa.Schema:
        return pa.schema([f.to_arrow() for f in self.fields])

    def to_dict(self) -> dict[str, Any]:
        return {"fields": [f.to_dict() for f in self.fields]}

    def to_json(self) -> str:
        return stable_json_dumps(self.to_dict(), indent=None)

    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()

    @classmethod
    def from_fields(cls, fields: Sequence[Mapping[str, Any]]) -> Schema:
        return cls(
            fields=tuple(
                FieldDef(
                    name=str(f["name"]),
                    type=FieldType(str(f["type"]).upper()),
                    nullable=bool(f.get("nullable", True)),
                )
                for f in fields
            )
        )


Record = dict[str, Any]
