from .artifacts import Artifact
from .cancel import CancelToken
from .config import Settings, load_settings
from .errors import (
    ArchiveError,
    CancelledError,
    ConfigError,
    EncodeError,
    ETLError,
    IllegalTransition,
    MappingError,
    SourceError,
    StageError,
    StageTimeoutError,
    TransientError,
    TransientUploadError,
    UploadError,
    VerificationError,
    stage_error_from_exc,
)
from .fs import (
    atomic_replace,
    atomic_write_text,
    fsync_file,
    remove_tree,
    safe_unlink,
    tmp_path_for,
)
from .hashing import FileDigest, sha256_bytes, sha256_file
from .json import atomic_write_json, read_json, stable_json_dumps
from .logging import ILogger, bind, configure_logging, get_logger
from .provenance import RunProvenance, new_run_id
from .time import monotonic_ms, utc_now_iso

__all__ = [
    "ArchiveError",
    "Artifact",
    "CancelToken",
    "CancelledError",
    "ConfigError",
    "ETLError",
    "EncodeError",
    "FileDigest",
    "ILogger",
    "IllegalTransition",
    "MappingError",
    "RunProvenance",
    "Settings",
    "SourceError",
    "StageError",
    "StageTimeoutError",
    "TransientError",
    "TransientUploadError",
    "UploadError",
    "VerificationError",
    "atomic_replace",
    "atomic_write_json",
    "atomic_write_text",
    "bind",
    "configure_logging",
    "fsync_file",
    "get_logger",
    "load_settings",
    "monotonic_ms",
    "new_run_id",
    "read_json",
    "remove_tree",
    "safe_unlink",
    "sha256_bytes",
    "sha256_file",
    "stable_json_dumps",
    "stage_error_from_exc",
    "tmp_path_for",
    "utc_now_iso",
]
