from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from batch_export.core import ConfigError, read_json
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    field_validator,
)

from .types import FieldDef, FieldType, Schema

FieldName = Annotated[str, StringConstraints(min_length=1, max_length=256)]


class FieldDefModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: FieldName
    type: FieldType
    nullable: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class SchemaDef(BaseModel):
    """On-disk / config form of a Schema."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    fields: list[FieldDefModel] = Field(min_length=1)

    def to_schema(self) -> Schema:
        try:
            return Schema(
                fields=tuple(
                    FieldDef(name=f.name, type=f.type, nullable=f.nullable)
                    for f in self.fields
                )
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e


def schema_from_dict(raw: dict[str, Any]) -> Schema:
    try:
        return SchemaDef.model_validate(raw).to_schema()
    except ValidationError as e:
        raise ConfigError(f"Invalid schema definition: {e}") from e


def load_schema(path: Path) -> Schema:
    return schema_from_dict(read_json(Path(path)))
