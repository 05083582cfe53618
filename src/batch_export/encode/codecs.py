from __future__ import annotations

from enum import StrEnum
from typing import Final, Mapping


class CompressionCodec(StrEnum):
    NONE = "none"
    SNAPPY = "snappy"
    GZIP = "gzip"
    ZSTD = "zstd"
    LZ4 = "lz4"
    BROTLI = "brotli"


# Config key -> Parquet codec name understood by pyarrow.
PARQUET_CODECS: Final[dict[CompressionCodec, str]] = {
    CompressionCodec.NONE: "NONE",
    CompressionCodec.SNAPPY: "SNAPPY",
    CompressionCodec.GZIP: "GZIP",
    CompressionCodec.ZSTD: "ZSTD",
    CompressionCodec.LZ4: "LZ4",
    CompressionCodec.BROTLI: "BROTLI",
}

DEFAULT_CODEC: Final = CompressionCodec.SNAPPY


def parquet_codec(codec: CompressionCodec | str) -> str:
    return PARQUET_CODECS[CompressionCodec(codec)]


def column_compression(
    columns: tuple[str, ...],
    default: CompressionCodec | str,
    overrides: Mapping[str, CompressionCodec | str] | None = None,
) -> dict[str, str]:
    """
    Resolve the per-column codec map once, before the first row group is written.
    """
    overrides = dict(overrides or {})
    unknown = sorted(set(overrides) - set(columns))
    if unknown:
        raise KeyError(f"Codec override for unknown column(s): {unknown}")
    return {c: parquet_codec(overrides.get(c, default)) for c in columns}
