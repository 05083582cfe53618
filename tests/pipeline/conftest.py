from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
from batch_export.core import get_logger
from batch_export.pipeline import ExportConfig, ExportPipeline
from batch_export.source import IterableCursor
from batch_export.upload import Destination, LocalObjectStore, ObjectStore

PEOPLE_SCHEMA = {
    "fields": [
        {"name": "name", "type": "STRING", "nullable": False},
        {"name": "age", "type": "INT32"},
        {"name": "isStudent", "type": "BOOL"},
    ]
}


@pytest.fixture
def dest_dir(tmp_path: Path) -> Path:
    return tmp_path / "dest"


@pytest.fixture
def make_pipeline(tmp_path: Path, dest_dir: Path) -> Callable[..., ExportPipeline]:
    def _make(
        rows: list[dict[str, Any]],
        *,
        store: ObjectStore | None = None,
        **config: Any,
    ) -> ExportPipeline:
        cfg = ExportConfig.model_validate({"schema": PEOPLE_SCHEMA, **config})
        return ExportPipeline(
            cfg,
            open_cursor=lambda: IterableCursor(rows),
            store=store or LocalObjectStore(dest_dir),
            destination=Destination.parse(str(dest_dir)),
            work_root=tmp_path / "work",
            run_root=tmp_path / "runs",
            logger=get_logger("test"),
            sleep=lambda _: None,
        )

    return _make
