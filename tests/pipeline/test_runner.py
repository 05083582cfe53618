from __future__ import annotations

import json
import sqlite3
import zipfile
from pathlib import Path

import pytest
from batch_export.core import CancelToken, TransientUploadError, get_logger
from batch_export.encode import read_footer, read_records
from batch_export.pipeline import ExportConfig, ExportPipeline, RunState, RunSummary
from batch_export.source import sqlite_cursor
from batch_export.upload import Destination, LocalObjectStore, PutOptions, PutResult

PEOPLE_SCHEMA = {
    "fields": [
        {"name": "name", "type": "STRING", "nullable": False},
        {"name": "age", "type": "INT32"},
        {"name": "isStudent", "type": "BOOL"},
    ]
}

JOHN_AND_JANE = [
    {"name": "John", "age": 25, "isStudent": False},
    {"name": "Jane", "age": 30, "isStudent": True},
]


def _is_empty(path: Path) -> bool:
    return path.is_dir() and not any(path.iterdir())


class InterruptingCursor:
    """Yields one row, then behaves like Ctrl-C arriving mid-fetch."""

    def __init__(self) -> None:
        self.calls = 0
        self.closed = False

    def next(self):
        self.calls += 1
        if self.calls > 1:
            raise KeyboardInterrupt
        return JOHN_AND_JANE[0]

    def close(self) -> None:
        self.closed = True


class FlakyStore:
    def __init__(self, inner: LocalObjectStore, failures: int) -> None:
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def put(self, local_path: Path, key: str, options: PutOptions) -> PutResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientUploadError("503 Service Unavailable")
        return self.inner.put(local_path, key, options)


class CorruptingStore:
    def __init__(self, inner: LocalObjectStore) -> None:
        self.inner = inner

    def put(self, local_path: Path, key: str, options: PutOptions) -> PutResult:
        res = self.inner.put(local_path, key, options)
        return PutResult(location=res.location, key=res.key, bytes=res.bytes, sha256="0" * 64)


def test_two_rows_end_to_end(tmp_path: Path, dest_dir: Path, make_pipeline) -> None:
    summary = make_pipeline(JOHN_AND_JANE, output_name="people").run(run_id="r1")

    assert summary.state == RunState.DONE
    assert summary.status == "success"
    assert summary.exit_code == 0
    assert (summary.rows_read, summary.rows_mapped, summary.rows_rejected) == (2, 2, 0)
    assert summary.upload_status == "uploaded"

    [receipt] = summary.receipts
    assert receipt.attempts == 1
    out = dest_dir / "people.parquet"
    assert receipt.location == out.resolve().as_uri()

    footer = read_footer(out)
    assert footer.num_rows == 2
    assert len(footer.row_groups) == 1
    assert read_records(out) == JOHN_AND_JANE

    assert [s for s, _ in summary.state_history] == [
        "INIT",
        "EXTRACTING",
        "ENCODING",
        "UPLOADING",
        "CLEANUP",
        "DONE",
    ]
    assert _is_empty(tmp_path / "work")

    report = json.loads((tmp_path / "runs" / "r1" / "run_report.json").read_text())
    assert report["status"] == "success"
    assert report["rows"] == {"read": 2, "mapped": 2, "rejected": 0}
    assert report["receipts"][0]["sha256"] == receipt.sha256

    events = [
        json.loads(line)
        for line in (tmp_path / "runs" / "r1" / "events.jsonl").read_text().splitlines()
    ]
    types = [e["type"] for e in events]
    assert types[0] == "run.env"
    assert types[-1] == "run.finish"
    assert "upload.finish" in types
    assert types.count("cleanup.finish") == 1
    [start] = [e for e in events if e["type"] == "run.start"]
    schema = ExportConfig.model_validate({"schema": PEOPLE_SCHEMA}).build_schema()
    assert start["data"]["schema_fingerprint"] == schema.fingerprint()


def test_lenient_mode_counts_rejections(tmp_path: Path, dest_dir: Path, make_pipeline) -> None:
    rows = [
        {"name": "John", "age": 25, "isStudent": False},
        {"name": "Jane", "age": "thirty", "isStudent": True},
    ]
    summary = make_pipeline(rows, mapping_policy="lenient").run()

    assert summary.state == RunState.DONE
    assert (summary.rows_read, summary.rows_mapped, summary.rows_rejected) == (2, 1, 1)
    assert summary.rejections["by_reason"] == {"TYPE_MISMATCH": 1}
    [sample] = summary.rejections["samples"]
    assert sample["field"] == "age"
    assert sample["row_number"] == 2

    assert read_records(dest_dir / "export.parquet") == [rows[0]]
    encode = next(s for s in summary.stages if s.stage == "encode")
    assert encode.warnings


def test_strict_mode_halts_with_zero_uploads(tmp_path: Path, dest_dir: Path, make_pipeline) -> None:
    rows = [
        {"name": "John", "age": 25, "isStudent": False},
        {"name": "Jane", "age": "thirty", "isStudent": True},
    ]
    summary = make_pipeline(rows, mapping_policy="strict").run()

    assert summary.state == RunState.FAILED
    assert summary.exit_code == 1
    assert summary.failed_stage == "encode"
    assert summary.failed_in == RunState.ENCODING
    assert summary.error is not None and summary.error.exc_type == "MappingError"
    assert summary.rows_rejected == 1
    assert summary.receipts == []
    assert summary.upload_status == "not_uploaded"
    assert not dest_dir.exists() or list(dest_dir.iterdir()) == []
    assert _is_empty(tmp_path / "work")


def test_output_count_is_read_minus_rejected(make_pipeline, dest_dir: Path) -> None:
    rows = [
        {"name": f"p{i}", "age": i if i % 3 else "x", "isStudent": i % 2 == 0}
        for i in range(30)
    ]
    summary = make_pipeline(rows, row_group_max_rows=4, encoder_workers=3).run()

    assert summary.state == RunState.DONE
    assert summary.rows_read == 30
    assert summary.rows_rejected == 10
    assert summary.rows_mapped == 20
    out = read_records(dest_dir / "export.parquet")
    assert len(out) == summary.rows_read - summary.rows_rejected
    assert [r["name"] for r in out] == [r["name"] for r in rows if r["age"] != "x"]


def test_transient_upload_failures_are_retried(make_pipeline, dest_dir: Path) -> None:
    store = FlakyStore(LocalObjectStore(dest_dir), failures=2)
    summary = make_pipeline(JOHN_AND_JANE, store=store).run()

    assert summary.state == RunState.DONE
    [receipt] = summary.receipts
    assert receipt.attempts == 3


def test_upload_exhaustion_fails_and_cleans_up(tmp_path: Path, make_pipeline, dest_dir: Path) -> None:
    store = FlakyStore(LocalObjectStore(dest_dir), failures=100)
    summary = make_pipeline(JOHN_AND_JANE, store=store, retry_max_attempts=3).run()

    assert summary.state == RunState.FAILED
    assert summary.failed_in == RunState.UPLOADING
    assert summary.error is not None and summary.error.exc_type == "UploadError"
    assert store.calls == 3
    # the encoded file was produced, then removed with the work directory
    assert summary.artifacts and not summary.artifacts[0].path.exists()
    assert _is_empty(tmp_path / "work")


def test_verification_failure_is_never_success(tmp_path: Path, make_pipeline, dest_dir: Path) -> None:
    summary = make_pipeline(
        JOHN_AND_JANE, store=CorruptingStore(LocalObjectStore(dest_dir))
    ).run()

    assert summary.state == RunState.FAILED
    assert summary.status == "failed"
    assert summary.error is not None and summary.error.exc_type == "VerificationError"
    assert summary.receipts == []
    assert _is_empty(tmp_path / "work")


def test_archive_stage(tmp_path: Path, make_pipeline, dest_dir: Path) -> None:
    summary = make_pipeline(
        JOHN_AND_JANE, archive_enabled=True, rows_per_file=1, output_name="people"
    ).run()

    assert summary.state == RunState.DONE
    assert RunState.ARCHIVING.value in [s for s, _ in summary.state_history]
    [receipt] = summary.receipts
    assert receipt.key == "people.zip"
    with zipfile.ZipFile(dest_dir / "people.zip") as zf:
        assert zf.namelist() == ["people-00000.parquet", "people-00001.parquet"]
    assert list(dest_dir.iterdir()) == [dest_dir / "people.zip"]
    assert _is_empty(tmp_path / "work")


def test_source_failure_fails_fast(tmp_path: Path, dest_dir: Path) -> None:
    cfg = ExportConfig.model_validate({"schema": PEOPLE_SCHEMA})
    pipeline = ExportPipeline(
        cfg,
        open_cursor=lambda: sqlite_cursor(tmp_path / "missing.db", "SELECT 1"),
        store=LocalObjectStore(dest_dir),
        destination=Destination.parse(str(dest_dir)),
        work_root=tmp_path / "work",
        run_root=tmp_path / "runs",
        logger=get_logger("test"),
    )
    summary = pipeline.run()

    assert summary.state == RunState.FAILED
    assert summary.failed_in == RunState.EXTRACTING
    assert summary.error is not None and summary.error.exc_type == "SourceError"
    assert [s.stage for s in summary.stages] == ["extract"]
    assert _is_empty(tmp_path / "work")


def test_sqlite_source_end_to_end(tmp_path: Path, dest_dir: Path) -> None:
    db = tmp_path / "people.db"
    conn = sqlite3.connect(db)
    conn.execute("CREATE TABLE people (full_name TEXT, age INTEGER, student INTEGER)")
    conn.executemany(
        "INSERT INTO people VALUES (?, ?, ?)",
        [(" John ", 25, 0), ("Jane", 30, 1)],
    )
    conn.commit()
    conn.close()

    cfg = ExportConfig.model_validate(
        {
            "schema": PEOPLE_SCHEMA,
            "fieldRules": {
                "name": {"source": "full_name", "transforms": ["strip"]},
                "isStudent": {"source": "student"},
            },
            "compressionCodec": "zstd",
        }
    )
    pipeline = ExportPipeline(
        cfg,
        open_cursor=lambda: sqlite_cursor(db, "SELECT * FROM people ORDER BY age"),
        store=LocalObjectStore(dest_dir),
        destination=Destination.parse(dest_dir.as_uri()),
        work_root=tmp_path / "work",
        run_root=tmp_path / "runs",
        logger=get_logger("test"),
    )
    summary = pipeline.run()

    assert summary.state == RunState.DONE
    assert read_records(dest_dir / "export.parquet") == JOHN_AND_JANE


def test_stage_timeout_fails_run(tmp_path: Path, make_pipeline) -> None:
    def _slow_rows():
        import time

        for i in range(1000):
            time.sleep(0.005)
            yield {"name": f"p{i}", "age": i, "isStudent": False}

    summary = make_pipeline(_slow_rows(), stage_timeout_ms={"encode": 50}).run()

    assert summary.state == RunState.FAILED
    assert summary.failed_in == RunState.ENCODING
    assert summary.error is not None and summary.error.exc_type == "StageTimeoutError"
    assert summary.rows_read < 1000
    assert _is_empty(tmp_path / "work")


def test_external_cancellation(tmp_path: Path, make_pipeline) -> None:
    token = CancelToken()
    token.cancel("shutdown")
    summary = make_pipeline(JOHN_AND_JANE).run(cancel=token)

    assert summary.state == RunState.FAILED
    assert summary.failed_in == RunState.EXTRACTING
    assert summary.error is not None and summary.error.exc_type == "CancelledError"
    assert _is_empty(tmp_path / "work")


def test_runs_are_isolated(tmp_path: Path, make_pipeline) -> None:
    p = make_pipeline(JOHN_AND_JANE)
    a = p.run(run_id="a")
    b = make_pipeline(JOHN_AND_JANE, output_name="second").run(run_id="b")

    assert a.state == b.state == RunState.DONE
    assert (tmp_path / "runs" / "a" / "run_report.json").exists()
    assert (tmp_path / "runs" / "b" / "run_report.json").exists()
    assert a.provenance is not None and a.provenance.run_id == "a"


def test_float_overflow_is_rejected_not_fatal(dest_dir: Path, make_pipeline) -> None:
    rows = [{"x": 1.5}, {"x": 10**400}]
    summary = make_pipeline(
        rows,
        schema={"fields": [{"name": "x", "type": "FLOAT"}]},
        mapping_policy="lenient",
    ).run()

    assert summary.state == RunState.DONE
    assert (summary.rows_read, summary.rows_mapped, summary.rows_rejected) == (2, 1, 1)
    assert summary.rejections["by_reason"] == {"OUT_OF_RANGE": 1}
    assert read_records(dest_dir / "export.parquet") == [{"x": 1.5}]


def test_interrupt_still_cleans_up(tmp_path: Path, dest_dir: Path) -> None:
    cursor = InterruptingCursor()
    token = CancelToken()
    pipeline = ExportPipeline(
        ExportConfig.model_validate({"schema": PEOPLE_SCHEMA}),
        open_cursor=lambda: cursor,
        store=LocalObjectStore(dest_dir),
        destination=Destination.parse(str(dest_dir)),
        work_root=tmp_path / "work",
        run_root=tmp_path / "runs",
        logger=get_logger("test"),
    )

    with pytest.raises(KeyboardInterrupt):
        pipeline.run(run_id="ki", cancel=token)

    assert cursor.closed
    assert token.cancelled
    assert not (tmp_path / "work" / "ki").exists()
    assert _is_empty(tmp_path / "work")
    assert not dest_dir.exists() or list(dest_dir.iterdir()) == []


def test_report_write_failure_still_cleans_up(
    tmp_path: Path, make_pipeline, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _disk_full(self: RunSummary, path: Path) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr(RunSummary, "write_json", _disk_full)

    with pytest.raises(OSError, match="No space left"):
        make_pipeline(JOHN_AND_JANE).run(run_id="full")

    assert _is_empty(tmp_path / "work")
