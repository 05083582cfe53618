from .base import CursorFactory, IterableCursor, RawRow, RowCursor, RowSource
from .dbapi import DbApiCursor, sqlite_cursor

__all__ = [
    "CursorFactory",
    "DbApiCursor",
    "IterableCursor",
    "RawRow",
    "RowCursor",
    "RowSource",
    "sqlite_cursor",
]
