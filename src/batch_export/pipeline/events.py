from __future__ import annotations

import json
import os
import socket
import threading
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from batch_export.core import utc_now_iso

from .types import Event


class EventType(str, Enum):
    RUN_ENV = "run.env"
    RUN_START = "run.start"
    RUN_STATE = "run.state"
    RUN_FINISH = "run.finish"

    STAGE_START = "stage.start"
    STAGE_WARN = "stage.warn"
    STAGE_METRICS = "stage.metrics"
    STAGE_SUCCESS = "stage.success"
    STAGE_FAILED = "stage.failed"

    ARTIFACT_WRITTEN = "artifact.written"

    ROW_REJECTED = "row.rejected"

    UPLOAD_START = "upload.start"
    UPLOAD_FINISH = "upload.finish"

    CLEANUP_FINISH = "cleanup.finish"


class EventSink:
    """
    Append-only JSONL log of one export run, kept at `<run_root>/<run_id>/events.jsonl`
    after the work directory is gone. Safe to call from worker threads.

    Each line is an `Event`. A run writes, in order: `run.env`, `run.start`
    (destination, schema fingerprint, caller meta), a `run.state` per
    transition, the `stage.*` events of every stage that ran, and
    `run.finish` with the final status. In between come `row.rejected`
    (sampled rows only), `artifact.written`, `upload.start`/`upload.finish`
    per artifact, and one `cleanup.finish` listing anything left behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self.emit(
            Event(
                type=EventType.RUN_ENV.value,
                ts_utc=utc_now_iso(),
                run_id="__init__",
                data={
                    "hostname": socket.gethostname(),
                    "pid": os.getpid(),
                    "cwd": str(Path.cwd()),
                },
            )
        )

    def emit(self, event: Event) -> None:
        line = json.dumps(asdict(event), ensure_ascii=False, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")

    def close(self) -> None:
        return


def make_event(
    *,
    event_type: EventType | str,
    run_id: str,
    stage: Optional[str] = None,
    **data: Any,
) -> Event:
    type_value = (
        event_type.value if isinstance(event_type, EventType) else str(event_type)
    )
    return Event(
        type=type_value,
        ts_utc=utc_now_iso(),
        run_id=run_id,
        stage=stage,
        data=dict(data),
    )
