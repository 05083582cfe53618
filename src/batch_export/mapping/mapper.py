from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterable, Mapping

from batch_export.core import MappingError
from batch_export.schema import Record, Schema, SchemaRegistry, UnknownFieldPolicy

from .coerce import coerce
from .rules import FieldRule


class MappingPolicy(StrEnum):
    STRICT = "strict"
    LENIENT = "lenient"


@dataclass(frozen=True, slots=True)
class RejectedRow:
    row_number: int
    field: str | None
    reason: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "field": self.field,
            "reason": self.reason,
            "message": self.message,
        }


@dataclass(slots=True)
class RejectionLog:
    """
    Aggregated row-scoped errors: exact counts per reason, bounded samples.
    """

    max_samples: int = 100
    total: int = 0
    by_reason: dict[str, int] = field(default_factory=dict)
    samples: list[RejectedRow] = field(default_factory=list)

    def add(self, row_number: int, err: MappingError) -> RejectedRow:
        rej = RejectedRow(
            row_number=row_number,
            field=err.field,
            reason=str(err.reason),
            message=err.message,
        )
        self.total += 1
        self.by_reason[rej.reason] = self.by_reason.get(rej.reason, 0) + 1
        if len(self.samples) < self.max_samples:
            self.samples.append(rej)
        return rej

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_reason": dict(sorted(self.by_reason.items())),
            "samples": [r.to_dict() for r in self.samples],
        }


class RowMapper:
    """
    Turns raw rows into schema-conformant records.

    Every field is read through its FieldRule (rename + transforms), coerced
    to the declared type, and the result is validated by the SchemaRegistry.
    Raw columns that feed no field are carried along so the registry's unknown
    field policy can see them; under IGNORE they are projected away.
    """

    def __init__(
        self,
        schema: Schema,
        *,
        rules: Iterable[FieldRule] = (),
        unknown_fields: UnknownFieldPolicy = UnknownFieldPolicy.IGNORE,
    ) -> None:
        self.schema = schema
        self.registry = SchemaRegistry(schema, unknown_fields=unknown_fields)

        by_field: dict[str, FieldRule] = {}
        for r in rules:
            if r.field not in schema:
                raise KeyError(f"Rule targets unknown field {r.field!r}")
            if r.field in by_field:
                raise ValueError(f"Duplicate rule for field {r.field!r}")
            by_field[r.field] = r
        self._rules = tuple(by_field.get(f.name, FieldRule(f.name)) for f in schema)
        # Raw columns that never pass through as unknowns: rule sources and
        # schema field names, which only reach a record through their rule.
        self._consumed = frozenset(r.column for r in self._rules) | frozenset(
            f.name for f in schema
        )

    def map(self, raw: Mapping[str, Any]) -> Record:
        record: Record = {}
        for rule, fd in zip(self._rules, self.schema):
            if rule.column not in raw:
                continue
            value = rule.apply(raw[rule.column])
            record[fd.name] = coerce(fd.name, fd.type, value)

        for col, value in raw.items():
            if col not in self._consumed:
                record[col] = value

        violation = self.registry.validate(record)
        if violation is not None:
            raise MappingError(
                field=violation.field,
                reason=violation.reason,
                message=violation.message,
            )
        return self.registry.project(record)
