from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, runtime_checkable
from urllib.parse import urlparse

from batch_export.core import CancelToken, ConfigError


@dataclass(frozen=True, slots=True)
class Destination:
    """
    Where artifacts go: `s3://bucket/prefix`, `file:///dir` or a plain path.
    """

    scheme: str
    bucket: str
    prefix: str = ""

    @classmethod
    def parse(cls, uri: str) -> Destination:
        uri = uri.strip()
        if not uri:
            raise ConfigError("Empty destination")
        parsed = urlparse(uri)
        if parsed.scheme == "s3":
            if not parsed.netloc:
                raise ConfigError(f"Invalid S3 destination (no bucket): {uri}")
            return cls(scheme="s3", bucket=parsed.netloc, prefix=parsed.path.strip("/"))
        if parsed.scheme == "file":
            return cls(scheme="file", bucket=parsed.path or "/", prefix="")
        if parsed.scheme == "":
            return cls(scheme="file", bucket=str(Path(uri).expanduser()), prefix="")
        raise ConfigError(f"Unsupported destination scheme: {parsed.scheme!r}")

    def key_for(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def uri(self, key: str = "") -> str:
        if self.scheme == "s3":
            return f"s3://{self.bucket}/{key}" if key else f"s3://{self.bucket}"
        base = Path(self.bucket)
        return (base / key).as_uri() if key else base.as_uri()


@dataclass(frozen=True, slots=True)
class PutOptions:
    content_type: Optional[str] = None
    sha256: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    cancel: Optional[CancelToken] = None


@dataclass(frozen=True, slots=True)
class PutResult:
    """What the destination reports back after a transfer."""

    location: str
    key: str
    bytes: int
    sha256: Optional[str] = None
    etag: Optional[str] = None


@runtime_checkable
class ObjectStore(Protocol):
    """
    Transfers one local file to `key`. Raises TransientUploadError for failures
    worth retrying; anything else is treated as permanent.
    """

    def put(self, local_path: Path, key: str, options: PutOptions) -> PutResult: ...


@dataclass(frozen=True, slots=True)
class UploadReceipt:
    location: str
    key: str
    bytes: int
    sha256: str
    attempts: int
    uploaded_at_utc: str
    etag: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "key": self.key,
            "bytes": self.bytes,
            "sha256": self.sha256,
            "etag": self.etag,
            "attempts": self.attempts,
            "uploaded_at_utc": self.uploaded_at_utc,
        }
