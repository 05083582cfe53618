from __future__ import annotations

import threading

from .errors import CancelledError, StageTimeoutError
from .time import monotonic_ms


class CancelToken:
    """
    Cooperative cancellation shared by the stages of one run.

    Stages call `check()` between rows or chunks (never mid-row). A child token
    created with `child(stage, timeout_ms)` also trips when the stage deadline
    passes, and whenever its parent is cancelled.
    """

    def __init__(
        self,
        *,
        parent: CancelToken | None = None,
        stage: str | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        self._event = threading.Event()
        self._parent = parent
        self._reason: str | None = None
        self.stage = stage
        self.timeout_ms = timeout_ms
        self._deadline_ms = (
            monotonic_ms() + int(timeout_ms) if timeout_ms is not None else None
        )

    def child(self, stage: str, timeout_ms: int | None = None) -> CancelToken:
        return CancelToken(parent=self, stage=stage, timeout_ms=timeout_ms)

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def reason(self) -> str | None:
        if self._reason is not None:
            return self._reason
        return self._parent.reason if self._parent is not None else None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._parent is not None and self._parent.cancelled:
            return True
        return self._expired()

    def _expired(self) -> bool:
        return self._deadline_ms is not None and monotonic_ms() >= self._deadline_ms

    def check(self) -> None:
        if self._parent is not None:
            self._parent.check()
        if self._event.is_set():
            raise CancelledError(self._reason or "cancelled")
        if self._expired():
            assert self.stage is not None and self.timeout_ms is not None
            self.cancel(f"timeout after {self.timeout_ms} ms")
            raise StageTimeoutError(self.stage, self.timeout_ms)

    def sleep(self, seconds: float) -> None:
        """Interruptible sleep; raises if cancelled while waiting."""
        end = monotonic_ms() + int(seconds * 1000)
        while True:
            self.check()
            remaining = end - monotonic_ms()
            if remaining <= 0:
                return
            self._event.wait(min(remaining, 100) / 1000)
