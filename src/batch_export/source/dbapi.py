from __future__ import annotations

import sqlite3
from collections import deque
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from .base import RawRow

Params = Sequence[Any] | Mapping[str, Any] | None


class DbApiCursor:
    """
    RowCursor over any DB-API 2.0 connection.

    Executes the query on construction and pages through it with `fetchmany`.
    Rows are returned as dicts keyed by the column names in
    `cursor.description`. When `owns_connection` is set, `close()` also closes
    the connection.
    """

    def __init__(
        self,
        conn: Any,
        query: str,
        params: Params = None,
        *,
        batch_size: int = 1000,
        owns_connection: bool = True,
        cursor_factory: Callable[[Any], Any] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._conn = conn
        self._owns_connection = owns_connection
        self._batch_size = batch_size
        self._buffer: deque[tuple[Any, ...]] = deque()
        self._exhausted = False

        self._cursor = cursor_factory(conn) if cursor_factory else conn.cursor()
        try:
            if params is None:
                self._cursor.execute(query)
            else:
                self._cursor.execute(query, params)
        except Exception:
            self.close()
            raise
        self._columns: list[str] | None = None

    @property
    def columns(self) -> list[str]:
        if self._columns is None:
            desc = self._cursor.description
            if desc is None:
                raise RuntimeError("query did not produce a result set")
            self._columns = [str(d[0]) for d in desc]
        return self._columns

    def next(self) -> RawRow | None:
        if not self._buffer:
            if self._exhausted:
                return None
            batch = self._cursor.fetchmany(self._batch_size)
            if not batch:
                self._exhausted = True
                return None
            self._buffer.extend(batch)
        values = self._buffer.popleft()
        return dict(zip(self.columns, values))

    def close(self) -> None:
        cursor, self._cursor = getattr(self, "_cursor", None), None
        try:
            if cursor is not None:
                cursor.close()
        finally:
            if self._owns_connection and self._conn is not None:
                conn, self._conn = self._conn, None
                conn.close()


def sqlite_cursor(
    path: Path | str,
    query: str,
    params: Params = None,
    *,
    batch_size: int = 1000,
) -> DbApiCursor:
    """Open `path` read-only and run `query`."""
    conn = sqlite3.connect(f"file:{Path(path).as_posix()}?mode=ro", uri=True)
    return DbApiCursor(conn, query, params, batch_size=batch_size)
