from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from batch_export.archive import archive as build_archive
from batch_export.archive import archive_name
from batch_export.core import (
    Artifact,
    CancelToken,
    ILogger,
    MappingError,
    RunProvenance,
    configure_logging,
    get_logger,
    monotonic_ms,
    new_run_id,
    remove_tree,
    utc_now_iso,
)
from batch_export.encode import ColumnarEncoder
from batch_export.mapping import MappingPolicy, RejectionLog, RowMapper
from batch_export.source import CursorFactory, RowSource
from batch_export.upload import Destination, ObjectStore, UploadReceipt, Uploader

from .config import ExportConfig, StageName
from .context import RunContext
from .events import EventSink, EventType
from .report import RunSummary
from .stage import (
    FunctionStage,
    Stage,
    StageResult,
    format_duration_ms,
    run_stage,
    skipped_stage,
)
from .state import RunState, RunStateMachine


def default_logger() -> ILogger:
    configure_logging()
    return get_logger("pipeline")


@dataclass(slots=True)
class PipelineRun:
    """
    Mutable state of a single run: the open source, what each stage handed
    over, and the counts accumulated so far. Never shared between runs.
    """

    config: ExportConfig
    open_cursor: CursorFactory
    store: ObjectStore
    destination: Destination
    sleep: Callable[[float], None] | None = None

    source: RowSource | None = None
    rows_mapped: int = 0
    rejections: RejectionLog = field(default_factory=RejectionLog)
    encoded: list[Artifact] = field(default_factory=list)
    outputs: list[Artifact] = field(default_factory=list)
    receipts: list[UploadReceipt] = field(default_factory=list)

    @property
    def rows_read(self) -> int:
        return self.source.rows_read if self.source is not None else 0

    # stages

    def extract(self, ctx: RunContext) -> dict[str, Any]:
        cancel = ctx.stage_cancel(StageName.EXTRACT.value)
        cancel.check()
        self.source = RowSource(self.open_cursor, cancel=cancel, name="source").open()
        cancel.check()
        return {}

    def encode(self, ctx: RunContext) -> dict[str, Any]:
        cfg = self.config
        assert self.source is not None
        cancel = ctx.stage_cancel(StageName.ENCODE.value)
        self.source.bind_cancel(cancel)

        schema = cfg.build_schema()
        mapper = RowMapper(
            schema,
            rules=cfg.build_rules(),
            unknown_fields=cfg.unknown_field_policy,
        )
        self.rejections = RejectionLog(max_samples=cfg.max_rejection_samples)
        strict = cfg.mapping_policy == MappingPolicy.STRICT

        encoder = ColumnarEncoder(
            schema,
            out_dir=ctx.work_dir / "encode",
            name=cfg.output_name,
            codec=cfg.compression_codec,
            column_codecs=cfg.column_codecs,
            row_group_size_bytes=cfg.row_group_size_bytes,
            row_group_max_rows=cfg.row_group_max_rows,
            rows_per_file=cfg.rows_per_file,
            workers=cfg.encoder_workers,
            cancel=cancel,
        )
        with encoder:
            for row_number, raw in enumerate(self.source.rows(), start=1):
                try:
                    record = mapper.map(raw)
                except MappingError as e:
                    rejected = self.rejections.add(row_number, e)
                    if self.rejections.total <= cfg.max_rejection_samples:
                        ctx.emit(
                            EventType.ROW_REJECTED,
                            stage=StageName.ENCODE.value,
                            **rejected.to_dict(),
                        )
                    if strict:
                        raise
                    continue
                encoder.append(record)
                self.rows_mapped += 1
            artifacts = encoder.close()

        self.source.close()
        self.encoded = [
            ctx.record_artifact(stage=StageName.ENCODE.value, artifact=a)
            for a in artifacts
        ]
        self.outputs = list(self.encoded)

        warnings: list[str] = []
        if self.rejections.total:
            warnings.append(
                f"{self.rejections.total} row(s) rejected: {self.rejections.by_reason}"
            )
        return {
            "_metrics": {
                "rows_read": self.rows_read,
                "rows_mapped": self.rows_mapped,
                "rows_rejected": self.rejections.total,
                "files": len(artifacts),
                "row_groups": encoder.row_groups_written,
                "bytes": sum(a.bytes for a in artifacts),
            },
            "_warnings": warnings,
            "_artifacts": list(self.encoded),
        }

    def archive(self, ctx: RunContext) -> dict[str, Any]:
        cfg = self.config
        out = ctx.work_dir / "archive" / archive_name(cfg.output_name, cfg.archive_format)
        out.parent.mkdir(parents=True, exist_ok=True)
        art = build_archive(
            self.encoded,
            out,
            fmt=cfg.archive_format,
            cancel=ctx.stage_cancel(StageName.ARCHIVE.value),
        )
        self.outputs = [ctx.record_artifact(stage=StageName.ARCHIVE.value, artifact=art)]
        return {
            "_metrics": {"entries": len(self.encoded), "bytes": art.bytes},
            "_artifacts": [art],
        }

    def upload(self, ctx: RunContext) -> dict[str, Any]:
        cfg = self.config
        uploader = Uploader(
            self.store,
            max_attempts=cfg.retry_max_attempts,
            backoff_base_ms=cfg.retry_backoff_base_ms,
            backoff_cap_ms=cfg.retry_backoff_cap_ms,
            cancel=ctx.stage_cancel(StageName.UPLOAD.value),
            sleep=self.sleep,
        )
        for art in self.outputs:
            ctx.emit(
                EventType.UPLOAD_START,
                stage=StageName.UPLOAD.value,
                name=art.name,
                bytes=art.bytes,
                destination=self.destination.uri(),
            )
            receipt = uploader.upload(art, self.destination)
            self.receipts.append(receipt)
            ctx.emit(
                EventType.UPLOAD_FINISH,
                stage=StageName.UPLOAD.value,
                **receipt.to_dict(),
            )
        return {
            "_metrics": {
                "uploaded": len(self.receipts),
                "attempts": sum(r.attempts for r in self.receipts),
                "bytes": sum(r.bytes for r in self.receipts),
            }
        }

    def release(self, work_dir: Path) -> list[str]:
        """Close the source and remove the work directory. Safe to call twice."""
        if self.source is not None:
            self.source.close()
        return remove_tree(work_dir)

    def cleanup(self, ctx: RunContext) -> list[str]:
        leftovers = self.release(ctx.work_dir)
        ctx.emit(EventType.CLEANUP_FINISH, leftovers=leftovers)
        return leftovers


class ExportPipeline:
    """
    Runs one export: rows from `open_cursor` end up as Parquet (optionally
    archived) at `destination`.

    Each `run()` is isolated: its own work directory under `work_root`, its own
    cancellation token and state machine. Stage failures never escape as
    exceptions; they move the run to FAILED and are reported in the summary.
    The work directory is removed on every exit path, while `events.jsonl` and
    `run_report.json` are kept under `run_root/<run_id>/`.
    """

    def __init__(
        self,
        config: ExportConfig,
        *,
        open_cursor: CursorFactory,
        store: ObjectStore,
        destination: Destination,
        work_root: Path,
        run_root: Path,
        logger: ILogger | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config
        self.open_cursor = open_cursor
        self.store = store
        self.destination = destination
        self.work_root = Path(work_root)
        self.run_root = Path(run_root)
        self.logger: ILogger = logger or default_logger()
        self.sleep = sleep

    def _plan(self, run: PipelineRun) -> list[tuple[RunState, Stage | None]]:
        """Stage order for one run; a None stage is an optional one left out."""
        archive_stage = (
            FunctionStage(StageName.ARCHIVE.value, run.archive)
            if self.config.archive_enabled
            else None
        )
        return [
            (RunState.EXTRACTING, FunctionStage(StageName.EXTRACT.value, run.extract)),
            (RunState.ENCODING, FunctionStage(StageName.ENCODE.value, run.encode)),
            (RunState.ARCHIVING, archive_stage),
            (RunState.UPLOADING, FunctionStage(StageName.UPLOAD.value, run.upload)),
        ]

    def _stage_timeouts(self) -> dict[str, int]:
        timeouts: dict[str, int] = {}
        for name in StageName:
            ms = self.config.timeout_for(name)
            if ms is not None:
                timeouts[name.value] = ms
        return timeouts

    def run(
        self,
        *,
        run_id: str | None = None,
        cancel: CancelToken | None = None,
        meta: dict[str, Any] | None = None,
    ) -> RunSummary:
        meta = meta or {}
        rid = run_id or new_run_id()
        run_dir = self.run_root / rid
        run_dir.mkdir(parents=True, exist_ok=True)
        work_dir = self.work_root / rid
        work_dir.mkdir(parents=True, exist_ok=True)

        events_path = run_dir / "events.jsonl"
        sink = EventSink(events_path)
        logger = self.logger.bind(run_id=rid)

        ctx = RunContext(
            run_id=rid,
            run_dir=run_dir,
            work_dir=work_dir,
            logger=logger,
            events=sink,
            cancel=cancel or CancelToken(),
            stage_timeouts_ms=self._stage_timeouts(),
            meta=meta,
        )
        run = PipelineRun(
            config=self.config,
            open_cursor=self.open_cursor,
            store=self.store,
            destination=self.destination,
            sleep=self.sleep,
        )
        machine = RunStateMachine()

        # Set once the cleanup stage ran; the finally block covers every other exit.
        cleaned = False
        try:
            started_at = utc_now_iso()
            t0 = monotonic_ms()
            provenance = RunProvenance(run_id=rid, started_at_utc=started_at)
            schema_fingerprint = self.config.build_schema().fingerprint()

            plan = self._plan(run)
            logger.info(
                "Export starting",
                stages=[st.stage_id for _, st in plan if st is not None],
                destination=self.destination.uri(),
                schema=schema_fingerprint,
                work_dir=str(work_dir),
            )
            ctx.emit(
                EventType.RUN_START,
                destination=self.destination.uri(),
                schema_fingerprint=schema_fingerprint,
                **meta,
            )

            def enter(state: RunState) -> None:
                prev = machine.state
                machine.advance(state)
                ctx.emit(EventType.RUN_STATE, previous=prev.value, state=state.value)

            results: list[StageResult] = []
            failure: StageResult | None = None
            total = len(plan)
            for idx, (state, st) in enumerate(plan, start=1):
                if st is None:
                    results.append(skipped_stage(StageName.ARCHIVE.value, "archiving disabled"))
                    continue
                enter(state)
                res = run_stage(ctx=ctx, stage=st, index=idx, total=total)
                results.append(res)
                if res.status == "failed":
                    failure = res
                    break

            if failure is not None:
                ctx.cancel.cancel(f"stage {failure.stage} failed")
                enter(RunState.FAILED)
                cleaned = True
                leftovers = run.cleanup(ctx)
                logger.error(
                    "Export failed",
                    stage=failure.stage,
                    failed_in=machine.failed_in.value if machine.failed_in else None,
                    error=failure.error.message if failure.error else None,
                )
            else:
                enter(RunState.CLEANUP)
                cleaned = True
                leftovers = run.cleanup(ctx)
                enter(RunState.DONE)

            if leftovers:
                logger.warning("Cleanup left files behind", leftovers=leftovers)

            duration = monotonic_ms() - t0
            summary = RunSummary(
                run_id=rid,
                state=machine.state,
                started_at_utc=started_at,
                finished_at_utc=utc_now_iso(),
                duration_ms=duration,
                rows_read=run.rows_read,
                rows_mapped=run.rows_mapped,
                rows_rejected=run.rejections.total,
                rejections=run.rejections.to_dict(),
                artifacts=list(run.outputs),
                receipts=list(run.receipts),
                error=failure.error if failure else None,
                failed_stage=failure.stage if failure else None,
                failed_in=machine.failed_in,
                stages=results,
                state_history=list(machine.history),
                cleanup_leftovers=leftovers,
                provenance=provenance,
                events_jsonl=str(events_path),
                meta=meta,
            )

            report_json = run_dir / "run_report.json"
            summary.write_json(report_json)
            ctx.emit(
                EventType.RUN_FINISH,
                status=summary.status,
                state=summary.state.value,
                duration_ms=duration,
                report_json=str(report_json),
            )
        except BaseException as e:
            # Interrupts and errors outside a stage: stop in-flight work, then unwind.
            ctx.cancel.cancel(f"run aborted: {type(e).__name__}")
            if not machine.terminal:
                machine.fail()
            logger.error(
                "Export aborted",
                state=machine.state.value,
                failed_in=machine.failed_in.value if machine.failed_in else None,
                error=repr(e),
            )
            raise
        finally:
            if not cleaned:
                run.release(work_dir)
            sink.close()

        logger.info(
            "Run Complete",
            status=summary.status,
            rows_read=summary.rows_read,
            rows_mapped=summary.rows_mapped,
            rows_rejected=summary.rows_rejected,
            uploaded=len(summary.receipts),
            duration_ms=duration,
            duration=format_duration_ms(duration),
            report=str(report_json),
        )
        return summary
