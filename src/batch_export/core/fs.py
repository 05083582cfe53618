import os
import tempfile
from pathlib import Path


def safe_unlink(path: os.PathLike[str] | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        return


def fsync_dir(parent: Path) -> None:
    """
    Ensure directory entry durability after atomic rename.
    """
    fd: int | None = None
    try:
        fd = os.open(parent, os.O_RDONLY)
        os.fsync(fd)
    finally:
        if fd is not None:
            os.close(fd)


def fsync_file(path: Path) -> None:
    try:
        with path.open("rb") as f:
            os.fsync(f.fileno())
    except OSError:
        return


def tmp_path_for(final_path: Path) -> Path:
    """
    Reserve a hidden temp file next to `final_path` (same filesystem) so the
    finished file can be renamed into place atomically.
    """
    final_path = Path(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{final_path.name}.",
        suffix=".tmp",
        dir=str(final_path.parent),
    )
    os.close(fd)
    return Path(tmp_name)


def atomic_replace(tmp_path: Path, final_path: Path) -> None:
    fsync_file(tmp_path)
    os.replace(tmp_path, final_path)
    fsync_dir(final_path.parent)


def atomic_write_text(
    path: Path,
    text: str,
    *,
    encoding: str = "utf-8",
    newline: str = "\n",
) -> None:
    """
    Atomically write text to `path`.

    Guarantees:
      - readers either see the old complete file or the new complete file
      - no partial/truncated file on crash
      - temp file written in the same directory (atomic replace works)
    """
    path = Path(path)
    tmp_path = tmp_path_for(path)
    try:
        with tmp_path.open("w", encoding=encoding, newline=newline) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        atomic_replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            safe_unlink(tmp_path)


def remove_tree(path: Path) -> list[str]:
    """
    Remove a directory tree. Returns the paths that could not be removed so the
    caller can report them instead of silently leaking artifacts.
    """
    path = Path(path)
    if not path.exists():
        return []

    leftovers: list[str] = []
    for p in sorted(path.rglob("*"), reverse=True):
        try:
            if p.is_dir() and not p.is_symlink():
                p.rmdir()
            else:
                p.unlink(missing_ok=True)
        except OSError:
            leftovers.append(str(p))
    try:
        path.rmdir()
    except OSError:
        leftovers.append(str(path))
    return leftovers
