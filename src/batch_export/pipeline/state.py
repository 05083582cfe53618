from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from batch_export.core import IllegalTransition, utc_now_iso


class RunState(StrEnum):
    INIT = "INIT"
    EXTRACTING = "EXTRACTING"
    ENCODING = "ENCODING"
    ARCHIVING = "ARCHIVING"
    UPLOADING = "UPLOADING"
    CLEANUP = "CLEANUP"
    DONE = "DONE"
    FAILED = "FAILED"


_FORWARD: tuple[RunState, ...] = (
    RunState.INIT,
    RunState.EXTRACTING,
    RunState.ENCODING,
    RunState.ARCHIVING,
    RunState.UPLOADING,
    RunState.CLEANUP,
    RunState.DONE,
)

TERMINAL: frozenset[RunState] = frozenset({RunState.DONE, RunState.FAILED})


@dataclass(slots=True)
class RunStateMachine:
    """
    Forward-only run state. Optional states may be skipped (ARCHIVING), none
    may be re-entered, and FAILED is reachable from any non-terminal state.
    """

    state: RunState = RunState.INIT
    history: list[tuple[str, str]] = field(default_factory=list)
    failed_in: RunState | None = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.state.value, utc_now_iso()))

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL

    def advance(self, to: RunState) -> None:
        if self.terminal:
            raise IllegalTransition(f"{self.state} is terminal; cannot move to {to}")
        if to == RunState.FAILED:
            self.failed_in = self.state
        elif _FORWARD.index(to) <= _FORWARD.index(self.state):
            raise IllegalTransition(f"{self.state} -> {to} is not a forward transition")
        elif to == RunState.DONE and self.state != RunState.CLEANUP:
            raise IllegalTransition("DONE is only reachable from CLEANUP")
        self.state = to
        self.history.append((to.value, utc_now_iso()))

    def fail(self) -> None:
        self.advance(RunState.FAILED)
