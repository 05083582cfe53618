from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class Event:
    """
    One line of `events.jsonl`. `stage` is set for stage-scoped events
    (`extract`, `encode`, `archive`, `upload`); `data` holds the event's
    payload, e.g. row counts or an upload receipt.
    """

    type: str
    ts_utc: str
    run_id: str
    stage: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
