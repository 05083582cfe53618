from __future__ import annotations

from decimal import Decimal

import pytest
from batch_export.core import MappingError
from batch_export.mapping import coerce
from batch_export.schema import FieldType, ViolationReason


@pytest.mark.parametrize(
    "ftype,value,expected",
    [
        (FieldType.INT32, "25", 25),
        (FieldType.INT32, " 7 ", 7),
        (FieldType.INT64, 3.0, 3),
        (FieldType.INT64, Decimal("12"), 12),
        (FieldType.BOOL, 0, False),
        (FieldType.BOOL, "Yes", True),
        (FieldType.BOOL, "f", False),
        (FieldType.FLOAT, "1.5", 1.5),
        (FieldType.FLOAT, 2, 2.0),
        (FieldType.STRING, 42, "42"),
        (FieldType.STRING, True, "true"),
        (FieldType.BYTES, "hÃ©", "hÃ©".encode("utf-8")),
        (FieldType.BYTES, bytearray(b"ab"), b"ab"),
    ],
)
def test_coerce_accepts(ftype: FieldType, value: object, expected: object) -> None:
    out = coerce("f", ftype, value)
    assert out == expected
    assert type(out) is type(expected)


@pytest.mark.parametrize(
    "ftype,value",
    [
        (FieldType.INT32, "abc"),
        (FieldType.INT32, 2.5),
        (FieldType.INT32, "1_000"),
        (FieldType.INT64, "\u0661\u0662"),
        (FieldType.INT64, "0x10"),
        (FieldType.INT64, True),
        (FieldType.BOOL, 2),
        (FieldType.BOOL, "maybe"),
        (FieldType.FLOAT, "n/a"),
        (FieldType.FLOAT, False),
        (FieldType.BYTES, 1),
    ],
)
def test_coerce_rejects(ftype: FieldType, value: object) -> None:
    with pytest.raises(MappingError) as ei:
        coerce("f", ftype, value)
    assert ei.value.field == "f"
    assert ei.value.reason == ViolationReason.TYPE_MISMATCH


def test_none_passes_through() -> None:
    for ftype in FieldType:
        assert coerce("f", ftype, None) is None


@pytest.mark.parametrize("value", [10**400, -(10**400), Decimal("1e400"), "1e400"])
def test_float_overflow_is_out_of_range(value: object) -> None:
    with pytest.raises(MappingError) as ei:
        coerce("x", FieldType.FLOAT, value)
    assert ei.value.field == "x"
    assert ei.value.reason == ViolationReason.OUT_OF_RANGE


def test_float_keeps_explicit_infinity() -> None:
    assert coerce("x", FieldType.FLOAT, "inf") == float("inf")
    assert coerce("x", FieldType.FLOAT, float("-inf")) == float("-inf")
