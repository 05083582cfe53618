from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import polars as pl
import pyarrow.parquet as pq
from batch_export.schema import Record, Schema, schema_from_dict

from .writer import FOOTER_ROWS_KEY, FOOTER_SCHEMA_KEY, FOOTER_SEQS_KEY


@dataclass(frozen=True, slots=True)
class RowGroupInfo:
    index: int
    seq: int | None
    num_rows: int
    offset: int
    total_byte_size: int


@dataclass(frozen=True, slots=True)
class ArtifactFooter:
    schema: Schema
    num_rows: int
    row_groups: tuple[RowGroupInfo, ...]
    codecs: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema.to_dict(),
            "num_rows": self.num_rows,
            "codecs": dict(self.codecs),
            "row_groups": [
                {
                    "index": g.index,
                    "seq": g.seq,
                    "num_rows": g.num_rows,
                    "offset": g.offset,
                    "total_byte_size": g.total_byte_size,
                }
                for g in self.row_groups
            ],
        }


def _row_group_offset(rg: pq.RowGroupMetaData) -> int:
    offsets: list[int] = []
    for i in range(rg.num_columns):
        col = rg.column(i)
        if col.has_dictionary_page and col.dictionary_page_offset is not None:
            offsets.append(int(col.dictionary_page_offset))
        else:
            offsets.append(int(col.data_page_offset))
    return min(offsets)


def read_footer(path: Path) -> ArtifactFooter:
    """
    Everything needed to interpret the file, read from the file alone.
    """
    md = pq.ParquetFile(str(path)).metadata
    kv = {k.decode("utf-8"): v.decode("utf-8") for k, v in (md.metadata or {}).items()}

    if FOOTER_SCHEMA_KEY not in kv:
        raise ValueError(f"{path} has no {FOOTER_SCHEMA_KEY} footer entry")
    schema = schema_from_dict(json.loads(kv[FOOTER_SCHEMA_KEY]))
    seqs: list[int] = json.loads(kv.get(FOOTER_SEQS_KEY, "[]"))

    groups: list[RowGroupInfo] = []
    codecs: dict[str, str] = {}
    for i in range(md.num_row_groups):
        rg = md.row_group(i)
        if i == 0:
            for c in range(rg.num_columns):
                col = rg.column(c)
                codecs[col.path_in_schema] = str(col.compression)
        groups.append(
            RowGroupInfo(
                index=i,
                seq=seqs[i] if i < len(seqs) else None,
                num_rows=int(rg.num_rows),
                offset=_row_group_offset(rg),
                total_byte_size=int(rg.total_byte_size),
            )
        )

    num_rows = int(kv.get(FOOTER_ROWS_KEY, md.num_rows))
    return ArtifactFooter(
        schema=schema, num_rows=num_rows, row_groups=tuple(groups), codecs=codecs
    )


def iter_records(path: Path) -> Iterator[Record]:
    pf = pq.ParquetFile(str(path))
    for i in range(pf.num_row_groups):
        yield from pf.read_row_group(i).to_pylist()


def read_records(path: Path) -> list[Record]:
    return list(iter_records(path))


def read_frame(path: Path) -> pl.DataFrame:
    return pl.read_parquet(path)
