from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

Transform = Callable[[Any], Any]


def _strip(v: Any) -> Any:
    return v.strip() if isinstance(v, str) else v


def _lower(v: Any) -> Any:
    return v.lower() if isinstance(v, str) else v


def _upper(v: Any) -> Any:
    return v.upper() if isinstance(v, str) else v


def _empty_to_null(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


TRANSFORMS: dict[str, Transform] = {
    "strip": _strip,
    "lower": _lower,
    "upper": _upper,
    "empty_to_null": _empty_to_null,
}


def get_transform(name: str) -> Transform:
    fn = TRANSFORMS.get(name)
    if fn is None:
        raise KeyError(
            f"No transform registered for name={name!r} (known: {sorted(TRANSFORMS)})"
        )
    return fn


@dataclass(frozen=True, slots=True)
class FieldRule:
    """
    How one schema field is produced from a raw row.

    `source` is the raw column to read (defaults to the field name);
    `transforms` run in order before type coercion.
    """

    field: str
    source: str | None = None
    transforms: tuple[Transform, ...] = ()

    @property
    def column(self) -> str:
        return self.source or self.field

    def apply(self, value: Any) -> Any:
        for fn in self.transforms:
            value = fn(value)
        return value

    @classmethod
    def named(
        cls, field: str, *, source: str | None = None, transforms: tuple[str, ...] = ()
    ) -> FieldRule:
        return cls(
            field=field,
            source=source,
            transforms=tuple(get_transform(t) for t in transforms),
        )
