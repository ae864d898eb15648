"""
Object storage integration for session artifacts.

Supports MinIO and other S3-compatible stores via boto3.
Includes an in-memory mode for local development without a store.
"""

from .client import (
    MemoryObjectStore,
    ObjectStoreConfig,
    S3ObjectStore,
    create_object_store,
)

__all__ = [
    "MemoryObjectStore",
    "ObjectStoreConfig",
    "S3ObjectStore",
    "create_object_store",
]
