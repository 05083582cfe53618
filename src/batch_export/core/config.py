from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]


class Settings(BaseSettings):
    """
    Process-level settings. Everything run-specific lives in ExportConfig.
    """

    model_config = SettingsConfigDict(
        env_prefix="BATCH_EXPORT_",
        env_file=".env",
        extra="ignore",
    )

    # Transient artifacts; one subdirectory per run, removed at run end.
    work_root: Path = Field(default=Path("_work"))
    # Run reports and event logs; kept.
    run_root: Path = Field(default=Path("_runs"))
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")

    aws_region: Optional[str] = Field(default=None)
    aws_endpoint_url: Optional[str] = Field(default=None)
    aws_profile: Optional[str] = Field(default=None)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
