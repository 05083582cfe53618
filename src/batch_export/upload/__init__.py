from .local import LocalObjectStore
from .s3 import S3ObjectStore, is_transient, make_s3_client
from .types import (
    Destination,
    ObjectStore,
    PutOptions,
    PutResult,
    UploadReceipt,
)
from .uploader import DeterministicExponentialBackoff, Uploader

__all__ = [
    "DeterministicExponentialBackoff",
    "Destination",
    "LocalObjectStore",
    "ObjectStore",
    "PutOptions",
    "PutResult",
    "S3ObjectStore",
    "UploadReceipt",
    "Uploader",
    "is_transient",
    "make_s3_client",
]
