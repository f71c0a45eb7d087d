"""
Storage module for the workflow's key-value and blob stores.

Provides abstract contracts and concrete backends: SQL-backed key-value
documents, local filesystem blobs and S3-compatible bucket blobs.
"""

from .base import BlobStore, KeyValueStore
from .cloud import S3BlobStore
from .kv import SqlKeyValueStore
from .local import LocalBlobStore

__all__ = [
    "BlobStore",
    "KeyValueStore",
    "LocalBlobStore",
    "S3BlobStore",
    "SqlKeyValueStore",
]
