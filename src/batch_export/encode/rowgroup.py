from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pyarrow as pa

from batch_export.schema import FIXED_WIDTH, Record, Schema

# Per-value overhead for variable-width columns (offset entry).
_OFFSET_BYTES = 4


def estimate_record_bytes(schema: Schema, record: Record) -> int:
    """
    Uncompressed size estimate: fixed widths for numeric/bool columns, payload
    length plus an offset for strings/bytes, one bit per value for presence.
    """
    total = (len(schema) + 7) // 8
    for fd in schema:
        width = FIXED_WIDTH[fd.type]
        if width is not None:
            total += width
            continue
        v = record.get(fd.name)
        if isinstance(v, str):
            total += len(v.encode("utf-8")) + _OFFSET_BYTES
        elif isinstance(v, bytes):
            total += len(v) + _OFFSET_BYTES
        else:
            total += _OFFSET_BYTES
    return total


@dataclass(slots=True)
class RowGroup:
    """
    A batch of records destined for one Parquet row group.

    Lifecycle: created empty, appended to, sealed, serialized, discarded.
    After `seal()` the group is immutable and may be handed to a worker.
    """

    seq: int
    records: list[Record] = field(default_factory=list)
    estimated_bytes: int = 0
    sealed: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def append(self, record: Record, size: int) -> None:
        if self.sealed:
            raise RuntimeError(f"RowGroup {self.seq} is sealed")
        self.records.append(record)
        self.estimated_bytes += size

    def seal(self) -> RowGroup:
        self.sealed = True
        return self


def build_table(arrow_schema: pa.Schema, records: list[Record]) -> pa.Table:
    """
    Columnar conversion of one sealed row group. Runs on worker threads.
    """
    arrays: list[Any] = []
    for f in arrow_schema:
        arrays.append(pa.array([r[f.name] for r in records], type=f.type))
    return pa.Table.from_arrays(arrays, schema=arrow_schema)
