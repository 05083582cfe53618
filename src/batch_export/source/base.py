from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, Mapping, Protocol, runtime_checkable

import structlog
from batch_export.core import CancelledError, CancelToken, SourceError

log = structlog.get_logger(__name__)

RawRow = Mapping[str, Any]


@runtime_checkable
class RowCursor(Protocol):
    """
    Forward-only cursor over a query result. `next()` returns None at end of
    stream; `close()` releases the underlying cursor/connection.
    """

    def next(self) -> RawRow | None: ...

    def close(self) -> None: ...


CursorFactory = Callable[[], RowCursor]


class IterableCursor:
    """RowCursor over an in-memory iterable of mappings."""

    def __init__(self, rows: Iterable[RawRow]) -> None:
        self._it = iter(rows)
        self.closed = False

    def next(self) -> RawRow | None:
        if self.closed:
            raise RuntimeError("cursor is closed")
        return next(self._it, None)

    def close(self) -> None:
        self.closed = True


class RowSource:
    """
    Lazy, finite, forward-only sequence of raw rows.

    The cursor is opened by `open()` (or on entering the context manager) and
    released on close, on cancellation and on any failure. Driver errors are
    wrapped in SourceError and never retried: a partially consumed result set
    cannot be resumed without risking duplicate or missing rows.
    """

    def __init__(
        self,
        open_cursor: CursorFactory,
        *,
        cancel: CancelToken | None = None,
        name: str = "source",
    ) -> None:
        self._open_cursor = open_cursor
        self._cursor: RowCursor | None = None
        self._cancel = cancel or CancelToken()
        self.name = name
        self.rows_read = 0

    @property
    def is_open(self) -> bool:
        return self._cursor is not None

    def open(self) -> RowSource:
        if self._cursor is not None:
            return self
        try:
            self._cursor = self._open_cursor()
        except Exception as e:
            raise SourceError(e) from e
        log.debug("source.open", source=self.name)
        return self

    def bind_cancel(self, cancel: CancelToken) -> None:
        """Switch the checkpoint token, e.g. when moving from extract to encode."""
        self._cancel = cancel

    def rows(self) -> Iterator[RawRow]:
        if self._cursor is None:
            self.open()
        assert self._cursor is not None
        cursor = self._cursor
        try:
            while True:
                self._cancel.check()
                try:
                    row = cursor.next()
                except Exception as e:
                    raise SourceError(e) from e
                if row is None:
                    return
                self.rows_read += 1
                yield row
        except (SourceError, CancelledError):
            self.close()
            raise

    def __iter__(self) -> Iterator[RawRow]:
        return self.rows()

    def close(self) -> None:
        cursor, self._cursor = self._cursor, None
        if cursor is None:
            return
        try:
            cursor.close()
        except Exception as e:
            log.warning("source.close_failed", source=self.name, error=repr(e))
        else:
            log.debug("source.closed", source=self.name, rows_read=self.rows_read)

    def __enter__(self) -> RowSource:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()
