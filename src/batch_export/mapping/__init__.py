from .coerce import coerce
from .mapper import MappingPolicy, RejectedRow, RejectionLog, RowMapper
from .rules import TRANSFORMS, FieldRule, get_transform

__all__ = [
    "FieldRule",
    "MappingPolicy",
    "RejectedRow",
    "RejectionLog",
    "RowMapper",
    "TRANSFORMS",
    "coerce",
    "get_transform",
]
