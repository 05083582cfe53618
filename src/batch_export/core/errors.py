from __future__ import annotations

import traceback
from dataclasses import dataclass


class ETLError(RuntimeError):
    """Base error"""


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    exc_type: str
    message: str
    traceback: str

    def to_dict(self) -> dict[str, str]:
        return {
            "exc_type": self.exc_type,
            "message": self.message,
            "traceback": self.traceback,
        }


def stage_error_from_exc(exc: BaseException) -> StageError:
    return StageError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback="".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    )


class TransientError(ETLError):
    """
    Retryable failures such as network timeouts, throttling, temporary upstream 5xx
    """


class ConfigError(ETLError):
    """Invalid export configuration or schema definition"""


class InternalError(ETLError):
    """Bugs or invariant violation in our code"""


class IllegalTransition(InternalError):
    """Run state machine asked to move backwards or out of a terminal state"""


class CancelledError(ETLError):
    """The run was cancelled cooperatively"""


class StageTimeoutError(CancelledError):
    def __init__(self, stage: str, timeout_ms: int) -> None:
        super().__init__(f"Stage {stage!r} exceeded its timeout of {timeout_ms} ms")
        self.stage = stage
        self.timeout_ms = timeout_ms


class SourceError(ETLError):
    """
    Connectivity or query execution failure in the row source.
    Fatal: the query is never retried on a partially consumed result set.
    """

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(f"Row source failed: {cause}")
        self.cause = cause


class MappingError(ETLError):
    """Row-scoped: a raw row could not be turned into a schema-conformant record"""

    def __init__(self, *, field: str | None, reason: str, message: str) -> None:
        where = f" (field={field})" if field else ""
        super().__init__(f"{reason}{where}: {message}")
        self.field = field
        self.reason = reason
        self.message = message


class EncodeError(ETLError):
    """Columnar write failed; the partial artifact has been removed"""

    def __init__(self, *, rows_written: int, cause: BaseException | str) -> None:
        super().__init__(f"Encode failed after {rows_written} rows: {cause}")
        self.rows_written = rows_written
        self.cause = cause


class ArchiveError(ETLError):
    """Archive write failed; the partial archive has been removed"""


class UploadError(ETLError):
    """Upload failed; `attempt` is the attempt number that produced the failure"""

    def __init__(self, *, attempt: int, cause: BaseException | str) -> None:
        super().__init__(f"Upload failed on attempt {attempt}: {cause}")
        self.attempt = attempt
        self.cause = cause


class TransientUploadError(TransientError):
    """
    Raised by object stores for failures worth retrying
    (timeouts, throttling, 5xx).
    """


class VerificationError(ETLError):
    """
    Non-retryable: destination reported a size or digest different from the local
    artifact, even though the transfer call itself succeeded.
    """

    def __init__(
        self,
        *,
        location: str,
        expected: str,
        actual: str,
    ) -> None:
        super().__init__(
            f"Upload verification failed for {location}: expected {expected}, got {actual}"
        )
        self.location = location
        self.expected = expected
        self.actual = actual
