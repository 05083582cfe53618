from __future__ import annotations

import hashlib
import os
from pathlib import Path

from batch_export.core import (
    CancelledError,
    CancelToken,
    TransientUploadError,
    atomic_replace,
    safe_unlink,
    tmp_path_for,
)

from .types import PutOptions, PutResult

CHUNK_BYTES = 1024 * 1024


class LocalObjectStore:
    """
    Directory-backed object store: keys map to paths under `root`.
    The digest it reports is computed from the bytes actually written.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _target(self, key: str) -> Path:
        target = (self.root / key).resolve()
        root = self.root.resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"Key escapes the store root: {key!r}")
        return target

    def put(self, local_path: Path, key: str, options: PutOptions) -> PutResult:
        target = self._target(key)
        cancel = options.cancel or CancelToken()
        tmp = tmp_path_for(target)
        h = hashlib.sha256()
        total = 0
        try:
            with Path(local_path).open("rb") as src, tmp.open("wb") as dst:
                while True:
                    cancel.check()
                    chunk = src.read(CHUNK_BYTES)
                    if not chunk:
                        break
                    dst.write(chunk)
                    h.update(chunk)
                    total += len(chunk)
                dst.flush()
                os.fsync(dst.fileno())
            atomic_replace(tmp, target)
        except CancelledError:
            safe_unlink(tmp)
            raise
        except (TimeoutError, InterruptedError) as e:
            safe_unlink(tmp)
            raise TransientUploadError(str(e)) from e
        except OSError:
            safe_unlink(tmp)
            raise

        return PutResult(
            location=target.as_uri(),
            key=key,
            bytes=total,
            sha256=h.hexdigest(),
        )
