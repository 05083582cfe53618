from __future__ import annotations

import pytest
from batch_export.schema import FieldDef, FieldType, Schema


@pytest.fixture
def people_schema() -> Schema:
    return Schema.of(
        FieldDef("name", FieldType.STRING, nullable=False),
        FieldDef("age", FieldType.INT32),
        FieldDef("isStudent", FieldType.BOOL),
    )


@pytest.fixture
def all_types_schema() -> Schema:
    return Schema.of(
        FieldDef("s", FieldType.STRING),
        FieldDef("i32", FieldType.INT32),
        FieldDef("i64", FieldType.INT64),
        FieldDef("b", FieldType.BOOL),
        FieldDef("f", FieldType.FLOAT),
        FieldDef("raw", FieldType.BYTES),
    )
