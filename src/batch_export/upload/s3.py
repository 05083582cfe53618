from __future__ import annotations

import base64
from pathlib import Path
from typing import Any, Iterator

import boto3
import structlog
from batch_export.core import CancelledError, CancelToken, TransientUploadError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, ConnectionError, HTTPClientError

from .types import PutOptions, PutResult

log = structlog.get_logger(__name__)

# S3 error codes worth another attempt. Everything else (AccessDenied,
# NoSuchBucket, InvalidAccessKeyId, quota errors, ...) fails immediately.
_TRANSIENT_CODES: frozenset[str] = frozenset(
    {
        "RequestTimeout",
        "RequestTimeoutException",
        "Throttling",
        "ThrottlingException",
        "SlowDown",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "InternalError",
        "ServiceUnavailable",
        "500",
        "502",
        "503",
        "504",
    }
)


def make_s3_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    profile: str | None = None,
) -> Any:
    """
    Build a client from explicit settings. Retries are owned by the Uploader,
    so botocore's own retry loop is reduced to a single attempt.
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    return session.client(
        "s3",
        endpoint_url=endpoint_url,
        config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
    )


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        yield cur
        cur = cur.__cause__ or cur.__context__


def is_transient(exc: BaseException) -> bool:
    """
    boto3's managed transfer wraps ClientError in S3UploadFailedError, so the
    whole exception chain is inspected.
    """
    for e in _exception_chain(exc):
        if isinstance(e, ClientError):
            err = e.response.get("Error", {})
            code = str(err.get("Code", ""))
            status = str(e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
            return code in _TRANSIENT_CODES or status in _TRANSIENT_CODES
        if isinstance(e, (ConnectionError, HTTPClientError, TimeoutError)):
            return True
    return False


class S3ObjectStore:
    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        transfer_config: TransferConfig | None = None,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self._transfer_config = transfer_config or TransferConfig()

    def put(self, local_path: Path, key: str, options: PutOptions) -> PutResult:
        cancel = options.cancel or CancelToken()

        extra: dict[str, Any] = {"ChecksumAlgorithm": "SHA256"}
        if options.content_type:
            extra["ContentType"] = options.content_type
        metadata = dict(options.metadata)
        if options.sha256:
            metadata["sha256"] = options.sha256
        if metadata:
            extra["Metadata"] = metadata

        def _progress(_bytes: int) -> None:
            cancel.check()

        try:
            self._client.upload_file(
                str(local_path),
                self.bucket,
                key,
                ExtraArgs=extra,
                Callback=_progress,
                Config=self._transfer_config,
            )
            head = self._client.head_object(
                Bucket=self.bucket, Key=key, ChecksumMode="ENABLED"
            )
        except CancelledError:
            raise
        except Exception as e:
            for inner in _exception_chain(e):
                if isinstance(inner, CancelledError):
                    raise inner from e
            if is_transient(e):
                raise TransientUploadError(f"s3://{self.bucket}/{key}: {e}") from e
            raise

        # Multipart uploads report a composite checksum ("<b64>-<parts>") that
        # cannot be compared with a whole-file digest; size is still verified.
        sha256: str | None = None
        checksum = head.get("ChecksumSHA256")
        if checksum and "-" not in checksum:
            sha256 = base64.b64decode(checksum).hex()

        etag = str(head.get("ETag") or "").strip('"') or None
        return PutResult(
            location=f"s3://{self.bucket}/{key}",
            key=key,
            bytes=int(head["ContentLength"]),
            sha256=sha256,
            etag=etag,
        )
