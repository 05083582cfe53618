from __future__ import annotations

from pathlib import Path

import pyarrow.parquet as pq
import pytest
from batch_export.core import CancelledError, CancelToken, EncodeError
from batch_export.encode import (
    PARQUET_CONTENT_TYPE,
    ColumnarEncoder,
    read_footer,
    read_frame,
    read_records,
)
from batch_export.schema import Schema


def _people(n: int) -> list[dict]:
    return [{"name": f"p{i}", "age": i, "isStudent": i % 2 == 0} for i in range(n)]


def test_two_rows_one_row_group(tmp_path: Path, people_schema: Schema) -> None:
    enc = ColumnarEncoder(people_schema, out_dir=tmp_path, name="people")
    enc.append({"name": "John", "age": 25, "isStudent": False})
    enc.append({"name": "Jane", "age": 30, "isStudent": True})
    [art] = enc.close()

    assert art.path == tmp_path / "people.parquet"
    assert art.rows == 2
    assert art.content_type == PARQUET_CONTENT_TYPE
    assert art.bytes == art.path.stat().st_size

    footer = read_footer(art.path)
    assert footer.num_rows == 2
    assert len(footer.row_groups) == 1
    assert footer.row_groups[0].num_rows == 2
    assert footer.schema == people_schema

    assert read_records(art.path) == [
        {"name": "John", "age": 25, "isStudent": False},
        {"name": "Jane", "age": 30, "isStudent": True},
    ]


def test_round_trip_all_types_with_nulls(tmp_path: Path, all_types_schema: Schema) -> None:
    records = [
        {"s": "héllo", "i32": -(2**31), "i64": 2**63 - 1, "b": True, "f": 0.1, "raw": b"\x00\xff"},
        {"s": None, "i32": None, "i64": None, "b": None, "f": None, "raw": None},
        {"s": "", "i32": 0, "i64": -1, "b": False, "f": -1e308, "raw": b""},
    ]
    enc = ColumnarEncoder(all_types_schema, out_dir=tmp_path, codec="none")
    for r in records:
        enc.append(r)
    [art] = enc.close()

    assert read_records(art.path) == records

    arrow = pq.read_schema(art.path)
    assert str(arrow.field("i32").type) == "int32"
    assert str(arrow.field("i64").type) == "int64"
    assert str(arrow.field("f").type) == "double"


@pytest.mark.parametrize("workers", [1, 2, 4, 8])
def test_row_groups_written_in_sequence_order(
    tmp_path: Path, people_schema: Schema, workers: int
) -> None:
    rows = _people(50)
    enc = ColumnarEncoder(
        people_schema,
        out_dir=tmp_path,
        row_group_max_rows=3,
        workers=workers,
    )
    for r in rows:
        enc.append(r)
    [art] = enc.close()

    footer = read_footer(art.path)
    seqs = [g.seq for g in footer.row_groups]
    assert seqs == list(range(17))
    offsets = [g.offset for g in footer.row_groups]
    assert offsets == sorted(offsets) and len(set(offsets)) == len(offsets)
    assert read_records(art.path) == rows
    assert enc.row_groups_written == 17


def test_byte_threshold_seals_groups(tmp_path: Path, people_schema: Schema) -> None:
    enc = ColumnarEncoder(people_schema, out_dir=tmp_path, row_group_size_bytes=64)
    for r in _people(20):
        enc.append(r)
    [art] = enc.close()
    assert len(read_footer(art.path).row_groups) > 1
    assert read_footer(art.path).num_rows == 20


def test_rows_per_file_rollover(tmp_path: Path, people_schema: Schema) -> None:
    enc = ColumnarEncoder(people_schema, out_dir=tmp_path, name="part", rows_per_file=4)
    for r in _people(10):
        enc.append(r)
    arts = enc.close()

    assert [a.name for a in arts] == [
        "part-00000.parquet",
        "part-00001.parquet",
        "part-00002.parquet",
    ]
    assert [a.rows for a in arts] == [4, 4, 2]
    assert [read_footer(a.path).num_rows for a in arts] == [4, 4, 2]


def test_empty_export_is_valid_file(tmp_path: Path, people_schema: Schema) -> None:
    [art] = ColumnarEncoder(people_schema, out_dir=tmp_path).close()
    footer = read_footer(art.path)
    assert footer.num_rows == 0
    assert footer.row_groups == ()
    assert read_frame(art.path).height == 0


def test_column_codecs(tmp_path: Path, people_schema: Schema) -> None:
    enc = ColumnarEncoder(
        people_schema,
        out_dir=tmp_path,
        codec="none",
        column_codecs={"name": "zstd"},
    )
    enc.append({"name": "John", "age": 25, "isStudent": False})
    [art] = enc.close()

    codecs = read_footer(art.path).codecs
    assert codecs["name"] == "ZSTD"
    assert codecs["age"] == "UNCOMPRESSED"


def test_unknown_codec_override_is_rejected(tmp_path: Path, people_schema: Schema) -> None:
    with pytest.raises(KeyError):
        ColumnarEncoder(people_schema, out_dir=tmp_path, column_codecs={"nope": "gzip"})


def test_write_failure_removes_partial_file(tmp_path: Path, people_schema: Schema) -> None:
    enc = ColumnarEncoder(people_schema, out_dir=tmp_path, row_group_max_rows=1)
    enc.append({"name": "John", "age": 25, "isStudent": False})
    # bypasses the mapper on purpose: the column conversion fails in a worker
    enc.append({"name": "Jane", "age": "thirty", "isStudent": True})

    with pytest.raises(EncodeError) as ei:
        enc.close()
    assert ei.value.rows_written == 1
    assert list(tmp_path.iterdir()) == []


def test_failure_after_rollover_removes_finished_parts(
    tmp_path: Path, people_schema: Schema
) -> None:
    enc = ColumnarEncoder(people_schema, out_dir=tmp_path, rows_per_file=2)
    for r in _people(2):
        enc.append(r)
    assert len(list(tmp_path.glob("*.parquet"))) == 1

    enc.append({"name": "x", "age": "bad", "isStudent": True})
    with pytest.raises(EncodeError):
        enc.close()
    assert list(tmp_path.iterdir()) == []


def test_cancel_aborts_and_cleans_up(tmp_path: Path, people_schema: Schema) -> None:
    token = CancelToken()
    enc = ColumnarEncoder(people_schema, out_dir=tmp_path, cancel=token)
    enc.append({"name": "John", "age": 25, "isStudent": False})
    token.cancel("stop")

    with pytest.raises(CancelledError):
        enc.append({"name": "Jane", "age": 30, "isStudent": True})
    assert list(tmp_path.iterdir()) == []
    with pytest.raises(RuntimeError):
        enc.close()


def test_context_manager_aborts_on_error(tmp_path: Path, people_schema: Schema) -> None:
    with pytest.raises(ValueError):
        with ColumnarEncoder(people_schema, out_dir=tmp_path) as enc:
            enc.append({"name": "John", "age": 25, "isStudent": False})
            raise ValueError("upstream")
    assert list(tmp_path.iterdir()) == []
