from __future__ import annotations

from typing import Callable

import structlog
from batch_export.core import (
    Artifact,
    CancelledError,
    CancelToken,
    TransientUploadError,
    UploadError,
    VerificationError,
    utc_now_iso,
)
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt
from tenacity.wait import wait_base

from .types import Destination, ObjectStore, PutOptions, PutResult, UploadReceipt

log = structlog.get_logger(__name__)


class DeterministicExponentialBackoff(wait_base):
    """base, 2*base, 4*base, ... capped; no jitter so runs are reproducible."""

    def __init__(self, *, base: float = 0.5, cap: float = 30.0) -> None:
        self._base = float(base)
        self._cap = float(cap)

    def __call__(self, retry_state) -> float:
        n = retry_state.attempt_number
        return min(self._cap, self._base * (2 ** (n - 1)))


class Uploader:
    """
    Transfers artifacts to an ObjectStore.

    TransientUploadError is retried with exponential backoff up to
    `max_attempts`; any other failure is permanent and raised at once. A
    completed transfer is then verified against the local artifact: a size or
    digest mismatch raises VerificationError and is never retried.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        max_attempts: int = 5,
        backoff_base_ms: int = 500,
        backoff_cap_ms: int = 30_000,
        cancel: CancelToken | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.cancel = cancel or CancelToken()
        self._sleep = sleep or self.cancel.sleep

    def _retrying(self, key: str) -> Retrying:
        def _before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            sleep = retry_state.next_action.sleep if retry_state.next_action else None
            log.warning(
                "upload.retry",
                key=key,
                attempt=retry_state.attempt_number,
                sleep_s=sleep,
                error=repr(exc) if exc else None,
            )

        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=DeterministicExponentialBackoff(
                base=self.backoff_base_ms / 1000, cap=self.backoff_cap_ms / 1000
            ),
            retry=retry_if_exception_type(TransientUploadError),
            reraise=False,
            before_sleep=_before_sleep,
            sleep=self._sleep,
        )

    def upload(self, artifact: Artifact, destination: Destination) -> UploadReceipt:
        key = destination.key_for(artifact.name)
        options = PutOptions(
            content_type=artifact.content_type,
            sha256=artifact.sha256,
            cancel=self.cancel,
        )

        attempt_no = 0
        result: PutResult | None = None
        try:
            for attempt in self._retrying(key):
                attempt_no = attempt.retry_state.attempt_number
                with attempt:
                    self.cancel.check()
                    result = self._store.put(artifact.path, key, options)
        except RetryError as re:
            last = re.last_attempt.exception()
            raise UploadError(
                attempt=re.last_attempt.attempt_number,
                cause=last or Exception("unknown"),
            ) from last
        except CancelledError:
            raise
        except Exception as e:
            raise UploadError(attempt=max(attempt_no, 1), cause=e) from e

        assert result is not None
        self._verify(artifact, result)

        receipt = UploadReceipt(
            location=result.location,
            key=result.key,
            bytes=result.bytes,
            sha256=artifact.sha256,
            etag=result.etag,
            attempts=attempt_no,
            uploaded_at_utc=utc_now_iso(),
        )
        log.info(
            "upload.done",
            location=receipt.location,
            bytes=receipt.bytes,
            attempts=receipt.attempts,
        )
        return receipt

    @staticmethod
    def _verify(artifact: Artifact, result: PutResult) -> None:
        if result.bytes != artifact.bytes:
            raise VerificationError(
                location=result.location,
                expected=f"{artifact.bytes} bytes",
                actual=f"{result.bytes} bytes",
            )
        if result.sha256 is not None and result.sha256 != artifact.sha256:
            raise VerificationError(
                location=result.location,
                expected=f"sha256 {artifact.sha256}",
                actual=f"sha256 {result.sha256}",
            )
