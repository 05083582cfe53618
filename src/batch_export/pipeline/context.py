from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from batch_export.core import Artifact, CancelToken, ILogger

from .events import EventSink, EventType, make_event


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    run_dir: Path
    work_dir: Path
    logger: ILogger
    events: EventSink
    cancel: CancelToken = field(default_factory=CancelToken)
    stage_timeouts_ms: dict[str, int] = field(default_factory=dict)

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def stage_cancel(self, stage: str) -> CancelToken:
        """Child of the run token carrying this stage's own deadline."""
        return self.cancel.child(stage, self.stage_timeouts_ms.get(stage))

    def emit(self, event: EventType | str, *, stage: str | None = None, **kw: object) -> None:
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.events.emit(
            make_event(event_type=event_value, run_id=self.run_id, stage=stage, **kw)
        )
        # Keep event chatter at debug level to leave console logs readable.
        self.logger.debug(event_value, event_type=event_value, stage=stage, **kw)

    def record_artifact(self, *, stage: str, artifact: Artifact) -> Artifact:
        self.emit(
            EventType.ARTIFACT_WRITTEN,
            stage=stage,
            name=artifact.name,
            bytes=artifact.bytes,
            sha256=artifact.sha256,
            rows=artifact.rows,
            content_type=artifact.content_type,
        )
        return artifact
