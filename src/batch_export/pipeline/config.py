from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Annotated, Optional

from batch_export.archive import ArchiveFormat
from batch_export.core import ConfigError, read_json
from batch_export.encode import DEFAULT_CODEC, CompressionCodec
from batch_export.mapping import TRANSFORMS, FieldRule, MappingPolicy
from batch_export.schema import Schema, SchemaDef, UnknownFieldPolicy
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

OutputName = Annotated[
    str,
    StringConstraints(min_length=1, max_length=200, pattern=r"^[A-Za-z0-9][A-Za-z0-9_\-\.]*$"),
]


class StageName(StrEnum):
    EXTRACT = "extract"
    ENCODE = "encode"
    ARCHIVE = "archive"
    UPLOAD = "upload"


class FieldRuleDef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    source: Optional[str] = None
    transforms: list[str] = Field(default_factory=list)

    @field_validator("transforms")
    @classmethod
    def _known_transforms(cls, v: list[str]) -> list[str]:
        unknown = [t for t in v if t not in TRANSFORMS]
        if unknown:
            raise ValueError(f"unknown transform(s) {unknown}; known: {sorted(TRANSFORMS)}")
        return v


class ExportConfig(BaseModel):
    """
    Run options. Keys are accepted in snake_case or camelCase
    (`row_group_size_bytes` / `rowGroupSizeBytes`).
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    schema_def: SchemaDef = Field(alias="schema")
    output_name: OutputName = "export"

    row_group_size_bytes: int = Field(default=64 * 1024 * 1024, ge=1)
    row_group_max_rows: Optional[int] = Field(default=None, ge=1)
    rows_per_file: Optional[int] = Field(default=None, ge=1)
    compression_codec: CompressionCodec = DEFAULT_CODEC
    column_codecs: dict[str, CompressionCodec] = Field(default_factory=dict)
    encoder_workers: int = Field(default=2, ge=1, le=64)

    archive_enabled: bool = False
    archive_format: ArchiveFormat = ArchiveFormat.ZIP

    mapping_policy: MappingPolicy = MappingPolicy.LENIENT
    unknown_field_policy: UnknownFieldPolicy = UnknownFieldPolicy.IGNORE
    field_rules: dict[str, FieldRuleDef] = Field(default_factory=dict)
    max_rejection_samples: int = Field(default=100, ge=0)

    fetch_batch_size: int = Field(default=1000, ge=1)

    retry_max_attempts: int = Field(default=5, ge=1)
    retry_backoff_base_ms: int = Field(default=500, ge=0)
    retry_backoff_cap_ms: int = Field(default=30_000, ge=0)

    stage_timeout_ms: dict[StageName, int] = Field(default_factory=dict)

    @field_validator("stage_timeout_ms")
    @classmethod
    def _positive_timeouts(cls, v: dict[StageName, int]) -> dict[StageName, int]:
        bad = sorted(str(k) for k, ms in v.items() if ms < 1)
        if bad:
            raise ValueError(f"stage timeouts must be >= 1 ms: {bad}")
        return v

    @model_validator(mode="after")
    def _columns_exist(self) -> "ExportConfig":
        names = {f.name for f in self.schema_def.fields}
        for label, keys in (
            ("field_rules", self.field_rules.keys()),
            ("column_codecs", self.column_codecs.keys()),
        ):
            unknown = sorted(set(keys) - names)
            if unknown:
                raise ValueError(f"{label} reference unknown field(s): {unknown}")
        return self

    def build_schema(self) -> Schema:
        return self.schema_def.to_schema()

    def build_rules(self) -> list[FieldRule]:
        return [
            FieldRule.named(name, source=d.source, transforms=tuple(d.transforms))
            for name, d in self.field_rules.items()
        ]

    def timeout_for(self, stage: StageName | str) -> int | None:
        return self.stage_timeout_ms.get(StageName(stage))


def load_export_config(path: Path) -> ExportConfig:
    try:
        return ExportConfig.model_validate(read_json(Path(path)))
    except ValidationError as e:
        raise ConfigError(f"Invalid export config {path}: {e}") from e
