from __future__ import annotations

import tarfile
import zipfile
from enum import StrEnum
from pathlib import Path
from typing import BinaryIO, Sequence

import structlog
from batch_export.core import (
    ArchiveError,
    Artifact,
    CancelledError,
    CancelToken,
    atomic_replace,
    safe_unlink,
    tmp_path_for,
)

log = structlog.get_logger(__name__)

CHUNK_BYTES = 1024 * 1024


class ArchiveFormat(StrEnum):
    ZIP = "zip"
    TAR_GZ = "tar.gz"


CONTENT_TYPES: dict[ArchiveFormat, str] = {
    ArchiveFormat.ZIP: "application/zip",
    ArchiveFormat.TAR_GZ: "application/gzip",
}


def archive_name(stem: str, fmt: ArchiveFormat | str) -> str:
    return f"{stem}.{ArchiveFormat(fmt).value}"


def _copy_chunks(src: BinaryIO, dst: BinaryIO, cancel: CancelToken) -> int:
    total = 0
    while True:
        cancel.check()
        chunk = src.read(CHUNK_BYTES)
        if not chunk:
            return total
        dst.write(chunk)
        total += len(chunk)


class _CheckedReader:
    """File wrapper that hits the cancellation checkpoint on every read."""

    def __init__(self, f: BinaryIO, cancel: CancelToken) -> None:
        self._f = f
        self._cancel = cancel

    def read(self, size: int = -1) -> bytes:
        self._cancel.check()
        return self._f.read(size)


def _write_zip(artifacts: Sequence[Artifact], out: Path, cancel: CancelToken) -> None:
    with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for art in artifacts:
            info = zipfile.ZipInfo.from_file(art.path, arcname=art.name)
            info.compress_type = zipfile.ZIP_DEFLATED
            with art.path.open("rb") as src, zf.open(info, "w", force_zip64=True) as dst:
                _copy_chunks(src, dst, cancel)


def _write_tar_gz(
    artifacts: Sequence[Artifact], out: Path, cancel: CancelToken
) -> None:
    with tarfile.open(out, "w:gz") as tf:
        for art in artifacts:
            info = tf.gettarinfo(str(art.path), arcname=art.name)
            with art.path.open("rb") as src:
                tf.addfile(info, _CheckedReader(src, cancel))


_WRITERS = {
    ArchiveFormat.ZIP: _write_zip,
    ArchiveFormat.TAR_GZ: _write_tar_gz,
}


def archive(
    artifacts: Sequence[Artifact],
    output_path: Path,
    *,
    fmt: ArchiveFormat | str = ArchiveFormat.ZIP,
    cancel: CancelToken | None = None,
) -> Artifact:
    """
    Pack `artifacts` into one compressed container, one entry per artifact named
    by its relative name. Entry contents are streamed in chunks. The container
    is written under a temp name and renamed once complete; on failure nothing
    is left behind.
    """
    fmt = ArchiveFormat(fmt)
    cancel = cancel or CancelToken()
    output_path = Path(output_path)

    if not artifacts:
        raise ArchiveError("Nothing to archive")
    names = [a.name for a in artifacts]
    if len(names) != len(set(names)):
        raise ArchiveError(f"Duplicate entry names: {sorted(names)}")

    tmp = tmp_path_for(output_path)
    try:
        _WRITERS[fmt](artifacts, tmp, cancel)
        atomic_replace(tmp, output_path)
    except CancelledError:
        safe_unlink(tmp)
        safe_unlink(output_path)
        raise
    except Exception as e:
        safe_unlink(tmp)
        safe_unlink(output_path)
        raise ArchiveError(f"Failed to write {output_path.name}: {e}") from e

    art = Artifact.from_path(
        output_path,
        name=output_path.name,
        rows=sum(a.rows or 0 for a in artifacts),
        content_type=CONTENT_TYPES[fmt],
    )
    log.info(
        "archive.written",
        file=art.name,
        entries=len(artifacts),
        bytes=art.bytes,
        format=fmt.value,
    )
    return art
