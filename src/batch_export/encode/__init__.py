from .codecs import DEFAULT_CODEC, CompressionCodec, column_compression, parquet_codec
from .reader import (
    ArtifactFooter,
    RowGroupInfo,
    iter_records,
    read_footer,
    read_frame,
    read_records,
)
from .rowgroup import RowGroup, build_table, estimate_record_bytes
from .writer import PARQUET_CONTENT_TYPE, ColumnarEncoder

__all__ = [
    "ArtifactFooter",
    "ColumnarEncoder",
    "CompressionCodec",
    "DEFAULT_CODEC",
    "PARQUET_CONTENT_TYPE",
    "RowGroup",
    "RowGroupInfo",
    "build_table",
    "column_compression",
    "estimate_record_bytes",
    "iter_records",
    "parquet_codec",
    "read_footer",
    "read_frame",
    "read_records",
]
