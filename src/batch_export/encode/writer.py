from __future__ import annotations

import json
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping

import pyarrow as pa
import pyarrow.parquet as pq
import structlog
from batch_export.core import (
    Artifact,
    CancelledError,
    CancelToken,
    EncodeError,
    atomic_replace,
    safe_unlink,
    tmp_path_for,
)
from batch_export.schema import Record, Schema

from .codecs import DEFAULT_CODEC, CompressionCodec, column_compression
from .rowgroup import RowGroup, build_table, estimate_record_bytes

log = structlog.get_logger(__name__)

FOOTER_SCHEMA_KEY = "batch_export.schema"
FOOTER_SEQS_KEY = "batch_export.row_group_seqs"
FOOTER_ROWS_KEY = "batch_export.rows"

PARQUET_CONTENT_TYPE = "application/vnd.apache.parquet"
DEFAULT_ROW_GROUP_BYTES = 64 * 1024 * 1024


@dataclass(slots=True)
class _OpenFile:
    final_path: Path
    tmp_path: Path
    writer: pq.ParquetWriter
    rows: int = 0
    buffered_rows: int = 0
    seqs: list[int] = field(default_factory=list)


class ColumnarEncoder:
    """
    Buffers validated records into row groups and writes them as Parquet.

    Sealed row groups are converted to Arrow tables on a bounded worker pool
    while the caller keeps fetching rows; tables are written strictly in
    sequence order regardless of which worker finishes first. Files are
    written under a hidden temp name and renamed into place only after the
    footer is finalized, so a visible file is always complete.

    Any failure (or cancellation) deletes every file this encoder produced and
    surfaces as EncodeError (cancellation propagates unchanged).
    """

    def __init__(
        self,
        schema: Schema,
        *,
        out_dir: Path,
        name: str = "export",
        codec: CompressionCodec | str = DEFAULT_CODEC,
        column_codecs: Mapping[str, CompressionCodec | str] | None = None,
        row_group_size_bytes: int = DEFAULT_ROW_GROUP_BYTES,
        row_group_max_rows: int | None = None,
        rows_per_file: int | None = None,
        workers: int = 2,
        cancel: CancelToken | None = None,
    ) -> None:
        if row_group_size_bytes < 1:
            raise ValueError("row_group_size_bytes must be >= 1")
        if row_group_max_rows is not None and row_group_max_rows < 1:
            raise ValueError("row_group_max_rows must be >= 1")
        if rows_per_file is not None and rows_per_file < 1:
            raise ValueError("rows_per_file must be >= 1")
        if workers < 1:
            raise ValueError("workers must be >= 1")

        self.schema = schema
        self.out_dir = Path(out_dir)
        self.name = name
        self.row_group_size_bytes = row_group_size_bytes
        self.row_group_max_rows = row_group_max_rows
        self.rows_per_file = rows_per_file
        self.cancel = cancel or CancelToken()

        self._arrow_schema = schema.to_arrow()
        self._compression = column_compression(schema.names, codec, column_codecs)
        self._pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="encode"
        )
        self._max_pending = workers * 2
        self._pending: deque[tuple[int, int, Future[pa.Table]]] = deque()

        self._group: RowGroup | None = None
        self._file: _OpenFile | None = None
        self._next_seq = 0
        self._part = 0
        self._artifacts: list[Artifact] = []
        self._closed = False

        self.rows_appended = 0
        self.rows_written = 0
        self.row_groups_written = 0

    # public API

    def append(self, record: Record) -> None:
        self._require_open()
        with self._failing_cleanly():
            self.cancel.check()
            if self._file is None:
                self._open_file()
            assert self._file is not None

            if self._group is None:
                self._group = RowGroup(seq=self._next_seq)
                self._next_seq += 1
            self._group.append(record, estimate_record_bytes(self.schema, record))
            self._file.buffered_rows += 1
            self.rows_appended += 1

            if self._group_full(self._group):
                self._seal_group()
            if self.rows_per_file and self._file.buffered_rows >= self.rows_per_file:
                self._finish_file()

    def close(self) -> list[Artifact]:
        """
        Flush the last row group, finalize the footer and hand the files over.
        An export with no rows still yields one valid (empty) file.
        """
        self._require_open()
        with self._failing_cleanly():
            if self._file is None and not self._artifacts:
                self._open_file()
            if self._file is not None:
                self._finish_file()
        self._pool.shutdown(wait=True)
        self._closed = True
        log.debug(
            "encode.closed",
            files=len(self._artifacts),
            rows=self.rows_written,
            row_groups=self.row_groups_written,
        )
        return list(self._artifacts)

    def abort(self) -> None:
        """Discard everything: pending work, the open temp file, finished parts."""
        if self._closed:
            return
        self._closed = True
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._pending.clear()
        self._group = None

        f, self._file = self._file, None
        if f is not None:
            try:
                f.writer.close()
            except Exception as e:
                log.warning("encode.abort_close_failed", error=repr(e))
            safe_unlink(f.tmp_path)
            safe_unlink(f.final_path)

        for art in self._artifacts:
            safe_unlink(art.path)
        self._artifacts.clear()

    def __enter__(self) -> ColumnarEncoder:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()

    # internals

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError("ColumnarEncoder is closed")

    @contextmanager
    def _failing_cleanly(self) -> Iterator[None]:
        try:
            yield
        except CancelledError:
            self.abort()
            raise
        except Exception as e:
            rows_written = self.rows_written
            self.abort()
            raise EncodeError(rows_written=rows_written, cause=e) from e

    def _group_full(self, group: RowGroup) -> bool:
        if group.estimated_bytes >= self.row_group_size_bytes:
            return True
        return (
            self.row_group_max_rows is not None
            and len(group) >= self.row_group_max_rows
        )

    def _file_name(self) -> str:
        if self.rows_per_file is None:
            return f"{self.name}.parquet"
        return f"{self.name}-{self._part:05d}.parquet"

    def _open_file(self) -> None:
        final_path = self.out_dir / self._file_name()
        tmp_path = tmp_path_for(final_path)
        writer = pq.ParquetWriter(
            str(tmp_path),
            schema=self._arrow_schema,
            compression=self._compression,
        )
        self._file = _OpenFile(final_path=final_path, tmp_path=tmp_path, writer=writer)

    def _seal_group(self) -> None:
        group, self._group = self._group, None
        if group is None or not len(group):
            return
        group.seal()
        fut = self._pool.submit(build_table, self._arrow_schema, group.records)
        self._pending.append((group.seq, len(group), fut))
        while len(self._pending) > self._max_pending:
            self._write_next()

    def _write_next(self) -> None:
        assert self._file is not None
        seq, n, fut = self._pending.popleft()
        table = fut.result()
        self._file.writer.write_table(table, row_group_size=n)
        self._file.seqs.append(seq)
        self._file.rows += n
        self.rows_written += n
        self.row_groups_written += 1
        log.debug("encode.row_group_written", seq=seq, rows=n)

    def _finish_file(self) -> None:
        self._seal_group()
        while self._pending:
            self._write_next()

        f = self._file
        assert f is not None
        f.writer.add_key_value_metadata(
            {
                FOOTER_SCHEMA_KEY: self.schema.to_json(),
                FOOTER_SEQS_KEY: json.dumps(f.seqs),
                FOOTER_ROWS_KEY: str(f.rows),
            }
        )
        f.writer.close()
        atomic_replace(f.tmp_path, f.final_path)
        self._file = None
        self._part += 1

        art = Artifact.from_path(
            f.final_path,
            name=f.final_path.name,
            rows=f.rows,
            content_type=PARQUET_CONTENT_TYPE,
        )
        self._artifacts.append(art)
        log.info(
            "encode.file_finalized",
            file=art.name,
            rows=art.rows,
            bytes=art.bytes,
            row_groups=len(f.seqs),
        )
