from __future__ import annotations

import uuid

import psycopg2

from .dbapi import DbApiCursor, Params


def postgres_cursor(
    dsn: str,
    query: str,
    params: Params = None,
    *,
    batch_size: int = 1000,
) -> DbApiCursor:
    """
    Stream a PostgreSQL query through a server-side (named) cursor so the
    result set is never materialized client-side.
    """
    conn = psycopg2.connect(dsn)
    conn.set_session(readonly=True)
    cursor_name = f"batch_export_{uuid.uuid4().hex[:12]}"

    def _named_cursor(c):
        cur = c.cursor(name=cursor_name)
        cur.itersize = batch_size
        return cur

    try:
        return DbApiCursor(
            conn,
            query,
            params,
            batch_size=batch_size,
            cursor_factory=_named_cursor,
        )
    except Exception:
        conn.close()
        raise
