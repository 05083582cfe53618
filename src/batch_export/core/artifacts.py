from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .hashing import sha256_file


@dataclass(frozen=True, slots=True)
class Artifact:
    """
    A finished local file produced by a stage. Exactly one stage owns it at a
    time; handing it to the next stage transfers ownership.
    """

    path: Path
    name: str
    bytes: int
    sha256: str
    rows: Optional[int] = None
    content_type: Optional[str] = None

    @classmethod
    def from_path(
        cls,
        path: Path,
        *,
        name: str | None = None,
        rows: int | None = None,
        content_type: str | None = None,
    ) -> Artifact:
        p = Path(path)
        digest = sha256_file(p)
        return cls(
            path=p,
            name=name or p.name,
            bytes=digest.bytes,
            sha256=digest.sha256,
            rows=rows,
            content_type=content_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "bytes": self.bytes,
            "sha256": self.sha256,
            "rows": self.rows,
            "content_type": self.content_type,
        }
