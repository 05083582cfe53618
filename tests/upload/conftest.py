from __future__ import annotations

from pathlib import Path

import pytest
from batch_export.core import Artifact


@pytest.fixture
def artifact(tmp_path: Path) -> Artifact:
    p = tmp_path / "work" / "export.parquet"
    p.parent.mkdir(parents=True)
    p.write_bytes(b"PAR1" + b"x" * 2048 + b"PAR1")
    return Artifact.from_path(p, rows=10, content_type="application/vnd.apache.parquet")
