from __future__ import annotations

import datetime as dt
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from batch_export.core import MappingError
from batch_export.schema import FieldType, ViolationReason

_TRUE = frozenset({"true", "t", "yes", "y", "1"})
_FALSE = frozenset({"false", "f", "no", "n", "0"})
_INT_TEXT = re.compile(r"[+-]?[0-9]+")


def _mismatch(field: str, ftype: FieldType, value: Any) -> MappingError:
    return MappingError(
        field=field,
        reason=ViolationReason.TYPE_MISMATCH,
        message=f"cannot convert {type(value).__name__} {value!r:.80} to {ftype.value}",
    )


def _out_of_range(field: str, ftype: FieldType, value: Any) -> MappingError:
    return MappingError(
        field=field,
        reason=ViolationReason.OUT_OF_RANGE,
        message=f"{type(value).__name__} value does not fit in {ftype.value}",
    )


def _to_int(field: str, ftype: FieldType, value: Any) -> int:
    if isinstance(value, bool):
        raise _mismatch(field, ftype, value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        raise _mismatch(field, ftype, value)
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        raise _mismatch(field, ftype, value)
    if isinstance(value, str):
        s = value.strip()
        if _INT_TEXT.fullmatch(s):
            return int(s)
        raise _mismatch(field, ftype, value)
    raise _mismatch(field, ftype, value)


def _to_bool(field: str, ftype: FieldType, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
    raise _mismatch(field, ftype, value)


def _to_float(field: str, ftype: FieldType, value: Any) -> float:
    if isinstance(value, bool):
        raise _mismatch(field, ftype, value)
    if isinstance(value, float):
        return value
    if isinstance(value, (int, Decimal)):
        num = value
    elif isinstance(value, str):
        try:
            num = Decimal(value.strip())
        except InvalidOperation:
            raise _mismatch(field, ftype, value) from None
    else:
        raise _mismatch(field, ftype, value)

    # Finite input must stay finite; float() overflows ints and saturates Decimals.
    try:
        out = float(num)
    except OverflowError:
        raise _out_of_range(field, ftype, value) from None
    if math.isinf(out) and (isinstance(num, int) or num.is_finite()):
        raise _out_of_range(field, ftype, value)
    return out


def _to_str(field: str, ftype: FieldType, value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    raise _mismatch(field, ftype, value)


def _to_bytes(field: str, ftype: FieldType, value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise _mismatch(field, ftype, value)


COERCERS: dict[FieldType, Callable[[str, FieldType, Any], Any]] = {
    FieldType.STRING: _to_str,
    FieldType.INT32: _to_int,
    FieldType.INT64: _to_int,
    FieldType.BOOL: _to_bool,
    FieldType.FLOAT: _to_float,
    FieldType.BYTES: _to_bytes,
}


def coerce(field: str, ftype: FieldType, value: Any) -> Any:
    """
    Convert a driver value to the Python type of `ftype`. None passes through;
    nullability is the registry's concern. Range checks also belong to the
    registry.
    """
    if value is None:
        return None
    return COERCERS[ftype](field, ftype, value)
