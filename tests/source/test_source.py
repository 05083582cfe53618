from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from batch_export.core import CancelledError, CancelToken, SourceError
from batch_export.source import DbApiCursor, IterableCursor, RowSource, sqlite_cursor


class BrokenCursor:
    def __init__(self, fail_after: int) -> None:
        self.fail_after = fail_after
        self.served = 0
        self.closed = False

    def next(self):
        if self.served >= self.fail_after:
            raise sqlite3.OperationalError("connection reset")
        self.served += 1
        return {"n": self.served}

    def close(self) -> None:
        self.closed = True


def _people_db(path: Path, n: int) -> Path:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE people (name TEXT, age INTEGER, is_student INTEGER)")
    conn.executemany(
        "INSERT INTO people VALUES (?, ?, ?)",
        [(f"p{i}", 20 + i, i % 2) for i in range(n)],
    )
    conn.commit()
    conn.close()
    return path


def test_rows_are_lazy_and_cursor_closed_at_end() -> None:
    cur = IterableCursor([{"a": 1}, {"a": 2}])
    with RowSource(lambda: cur) as src:
        assert list(src.rows()) == [{"a": 1}, {"a": 2}]
        assert src.rows_read == 2
    assert cur.closed


def test_open_failure_is_source_error() -> None:
    def _boom():
        raise sqlite3.OperationalError("unable to open database file")

    with pytest.raises(SourceError) as ei:
        RowSource(_boom).open()
    assert isinstance(ei.value.cause, sqlite3.OperationalError)


def test_read_failure_is_source_error_and_closes() -> None:
    cur = BrokenCursor(fail_after=2)
    src = RowSource(lambda: cur)
    seen = []
    with pytest.raises(SourceError):
        for row in src.rows():
            seen.append(row)
    assert seen == [{"n": 1}, {"n": 2}]
    assert cur.closed
    assert not src.is_open
    # not retried: the cursor was only asked once past the failure point
    assert cur.served == 2


def test_cancel_releases_cursor() -> None:
    token = CancelToken()
    cur = IterableCursor({"i": i} for i in range(100))
    src = RowSource(lambda: cur, cancel=token)
    it = src.rows()
    assert next(it) == {"i": 0}
    token.cancel("downstream failed")
    with pytest.raises(CancelledError):
        next(it)
    assert cur.closed
    assert src.rows_read == 1


def test_sqlite_cursor_pages_through_results(tmp_path: Path) -> None:
    db = _people_db(tmp_path / "people.db", 7)
    src = RowSource(lambda: sqlite_cursor(db, "SELECT * FROM people ORDER BY age", batch_size=3))
    with src:
        rows = list(src)
    assert len(rows) == 7
    assert rows[0] == {"name": "p0", "age": 20, "is_student": 0}
    assert rows[-1]["name"] == "p6"


def test_sqlite_cursor_is_read_only(tmp_path: Path) -> None:
    db = _people_db(tmp_path / "people.db", 1)
    with pytest.raises(sqlite3.OperationalError):
        sqlite_cursor(db, "DELETE FROM people")


def test_sqlite_bad_query_is_source_error(tmp_path: Path) -> None:
    db = _people_db(tmp_path / "people.db", 1)
    with pytest.raises(SourceError):
        RowSource(lambda: sqlite_cursor(db, "SELECT * FROM missing")).open()


def test_dbapi_cursor_with_params(tmp_path: Path) -> None:
    db = _people_db(tmp_path / "people.db", 5)
    conn = sqlite3.connect(db)
    cur = DbApiCursor(conn, "SELECT name FROM people WHERE age >= ?", (23,), owns_connection=False)
    assert cur.next() == {"name": "p3"}
    assert cur.next() == {"name": "p4"}
    assert cur.next() is None
    cur.close()
    # connection left open for its owner
    assert conn.execute("SELECT count(*) FROM people").fetchone() == (5,)
    conn.close()
