from .loader import SchemaDef, load_schema, schema_from_dict
from .registry import (
    SchemaRegistry,
    SchemaViolation,
    UnknownFieldPolicy,
    ViolationReason,
    check_value,
)
from .types import ARROW_TYPES, FIXED_WIDTH, FieldDef, FieldType, Record, Schema

__all__ = [
    "ARROW_TYPES",
    "FIXED_WIDTH",
    "FieldDef",
    "FieldType",
    "Record",
    "Schema",
    "SchemaDef",
    "SchemaRegistry",
    "SchemaViolation",
    "UnknownFieldPolicy",
    "ViolationReason",
    "check_value",
    "load_schema",
    "schema_from_dict",
]
