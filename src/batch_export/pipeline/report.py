from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from batch_export.core import (
    Artifact,
    RunProvenance,
    StageError,
    atomic_write_json,
)
from batch_export.upload import UploadReceipt

from .stage import StageResult
from .state import RunState


@dataclass(slots=True)
class RunSummary:
    """
    Outcome of one export run. Written to `run_report.json` and returned to
    the caller; a run is only "success" when it reached DONE.
    """

    run_id: str
    state: RunState
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    rows_read: int = 0
    rows_mapped: int = 0
    rows_rejected: int = 0
    rejections: dict[str, Any] = field(default_factory=dict)

    artifacts: list[Artifact] = field(default_factory=list)
    receipts: list[UploadReceipt] = field(default_factory=list)

    error: Optional[StageError] = None
    failed_stage: Optional[str] = None
    failed_in: Optional[RunState] = None

    stages: list[StageResult] = field(default_factory=list)
    state_history: list[tuple[str, str]] = field(default_factory=list)
    cleanup_leftovers: list[str] = field(default_factory=list)

    provenance: Optional[RunProvenance] = None
    events_jsonl: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "success" if self.state == RunState.DONE else "failed"

    @property
    def upload_status(self) -> str:
        if self.state == RunState.DONE:
            return "uploaded"
        if self.receipts:
            return "partial"
        return "not_uploaded"

    @property
    def exit_code(self) -> int:
        return 0 if self.state == RunState.DONE else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "state": self.state.value,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "rows": {
                "read": self.rows_read,
                "mapped": self.rows_mapped,
                "rejected": self.rows_rejected,
            },
            "rejections": self.rejections,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "upload_status": self.upload_status,
            "receipts": [r.to_dict() for r in self.receipts],
            "error": self.error.to_dict() if self.error else None,
            "failed_stage": self.failed_stage,
            "failed_in": self.failed_in.value if self.failed_in else None,
            "stages": [s.to_dict() for s in self.stages],
            "state_history": [
                {"state": s, "at_utc": ts} for s, ts in self.state_history
            ],
            "cleanup_leftovers": self.cleanup_leftovers,
            "provenance": self.provenance.to_dict() if self.provenance else None,
            "events_jsonl": self.events_jsonl,
            "meta": self.meta,
        }

    def write_json(self, path: Path) -> None:
        atomic_write_json(Path(path), self.to_dict())
