"""
Object storage client for session artifacts.

Supports MinIO and any other S3-compatible store through boto3, with an
in-memory mode for local development and tests.

boto3 is synchronous, so every backend call runs in a worker thread via
asyncio.to_thread. The boto3 client itself is created once and shared:
its configuration is fixed at startup and it is safe for concurrent use
from multiple threads.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, BinaryIO, Iterator, Optional

from ...core.sessions.models import ObjectInfo
from ...core.sessions.store import (
    NOT_FOUND_CODES,
    BackendError,
    ObjectNotFoundError,
    ObjectStore,
    OpenedObject,
    RemoveError,
    StorageError,
)

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request.
MAX_DELETE_BATCH = 1000


@dataclass
class ObjectStoreConfig:
    """
    Connection settings for an S3-compatible store.

    endpoint is a bare host name (MinIO style); port and use_ssl build
    the URL so deployments can share the same variables as the MinIO server.
    """
    endpoint: str
    access_key: str
    secret_key: str
    bucket_name: str
    port: int = 9000
    use_ssl: bool = False
    region: str = "us-east-1"

    @property
    def endpoint_url(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.endpoint}:{self.port}"


def _error_code(exc: Exception) -> Optional[str]:
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return None
    code = response.get("Error", {}).get("Code")
    return str(code) if code is not None else None


def translate_error(exc: Exception, key: str) -> StorageError:
    """Classify a boto3/botocore exception as not-found or backend failure."""
    if _error_code(exc) in NOT_FOUND_CODES:
        return ObjectNotFoundError(key)
    return BackendError(str(exc))


class S3ObjectStore:
    """
    S3-compatible object store backed by boto3.

    Uses path-style addressing and v4 signatures, which MinIO requires.
    Uploads go through boto3's managed transfer: large bodies become
    multipart uploads, and a failed upload is aborted rather than left
    half-visible.
    """

    def __init__(self, config: ObjectStoreConfig, s3_client: Optional[Any] = None) -> None:
        """
        Args:
            config: Connection settings
            s3_client: Pre-built boto3 S3 client; built from config when omitted
        """
        import boto3
        from boto3.s3.transfer import TransferConfig
        from botocore.config import Config

        self._config = config
        self.bucket_name = config.bucket_name

        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
        )

        self._s3_client = s3_client or boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            config=boto_config,
        )
        # Transfer threads would read the inbound pipe out of order.
        self._transfer_config = TransferConfig(use_threads=False)

        logger.info(
            "Initialized S3 object store client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    async def bucket_exists(self) -> bool:
        try:
            await asyncio.to_thread(self._s3_client.head_bucket, Bucket=self.bucket_name)
            return True
        except Exception as e:
            error = translate_error(e, self.bucket_name)
            if isinstance(error, ObjectNotFoundError):
                return False
            raise error from e

    async def make_bucket(self) -> None:
        kwargs: dict[str, Any] = {"Bucket": self.bucket_name}
        # us-east-1 rejects an explicit location constraint.
        if self._config.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._config.region}
        try:
            await asyncio.to_thread(self._s3_client.create_bucket, **kwargs)
        except Exception as e:
            if _error_code(e) in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            raise translate_error(e, self.bucket_name) from e

    async def put_object_from_stream(
        self,
        key: str,
        fileobj: BinaryIO,
        length: Optional[int] = None,
    ) -> None:
        # boto3 sizes the transfer from the stream itself; length is
        # checked by the caller against the bytes actually received.
        try:
            await asyncio.to_thread(
                self._s3_client.upload_fileobj,
                fileobj,
                self.bucket_name,
                key,
                ExtraArgs={"ContentType": "application/gzip"},
                Config=self._transfer_config,
            )
        except Exception as e:
            raise translate_error(e, key) from e

    async def put_object_from_path(self, key: str, path: str) -> None:
        try:
            await asyncio.to_thread(
                self._s3_client.upload_file,
                path,
                self.bucket_name,
                key,
                ExtraArgs={"ContentType": "application/gzip"},
            )
        except Exception as e:
            raise translate_error(e, key) from e

    async def get_object_as_stream(self, key: str) -> OpenedObject:
        try:
            response = await asyncio.to_thread(
                self._s3_client.get_object,
                Bucket=self.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise translate_error(e, key) from e
        return OpenedObject(body=response['Body'], size=response.get('ContentLength'))

    async def stat_object(self, key: str) -> ObjectInfo:
        try:
            response = await asyncio.to_thread(
                self._s3_client.head_object,
                Bucket=self.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise translate_error(e, key) from e
        return ObjectInfo(
            name=key,
            size=response.get('ContentLength'),
            last_modified=response.get('LastModified'),
        )

    async def list_objects(self, prefix: str = "", recursive: bool = True) -> AsyncIterator[ObjectInfo]:
        """
        Yield objects page by page.

        Only one page (at most 1000 entries) is held at a time, so a
        bucket with many sessions never has to fit in memory.
        """
        paginator = self._s3_client.get_paginator('list_objects_v2')
        params: dict[str, Any] = {"Bucket": self.bucket_name, "Prefix": prefix}
        if not recursive:
            params["Delimiter"] = "/"

        pages = iter(paginator.paginate(**params))
        while True:
            try:
                page = await asyncio.to_thread(next, pages, None)
            except Exception as e:
                raise translate_error(e, prefix or self.bucket_name) from e
            if page is None:
                return
            for obj in page.get('Contents', []):
                yield ObjectInfo(
                    name=obj['Key'],
                    size=obj.get('Size'),
                    last_modified=obj.get('LastModified'),
                )

    async def remove_object(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self._s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise translate_error(e, key) from e

    async def remove_objects(self, keys: list[str]) -> list[RemoveError]:
        errors: list[RemoveError] = []
        for start in range(0, len(keys), MAX_DELETE_BATCH):
            batch = keys[start:start + MAX_DELETE_BATCH]
            try:
                response = await asyncio.to_thread(
                    self._s3_client.delete_objects,
                    Bucket=self.bucket_name,
                    Delete={
                        'Objects': [{'Key': key} for key in batch],
                        'Quiet': True,
                    },
                )
            except Exception as e:
                raise translate_error(e, self.bucket_name) from e

            for error in response.get('Errors', []):
                errors.append(RemoveError(
                    key=error.get('Key', ''),
                    code=str(error.get('Code', '')),
                    message=error.get('Message', ''),
                ))
        return errors


# ---------------------------------------------------------------------------
# In-memory store for local development
# ---------------------------------------------------------------------------

class MemoryBody:
    """Minimal StreamingBody stand-in over a bytes snapshot."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self.closed = False

    def iter_chunks(self, chunk_size: int = 1024) -> Iterator[bytes]:
        for start in range(0, len(self._data), chunk_size):
            if self.closed:
                raise ValueError("I/O operation on closed body")
            yield self._data[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True


class MemoryObjectStore:
    """
    In-memory object store.

    Enables running the full API without provisioning MinIO. Objects live
    in a dict keyed by object key; writes become visible only once the
    whole body has been read, matching S3's all-or-nothing PUT.

    Not suitable for production: contents vanish with the process.
    """

    def __init__(self, bucket_name: str = "sessions", create_bucket: bool = False) -> None:
        self.bucket_name = bucket_name
        self._bucket_created = create_bucket
        self._objects: dict[str, tuple[bytes, datetime]] = {}
        self._lock = threading.Lock()
        logger.info("Initialized in-memory object store", extra={"bucket": bucket_name})

    def _require_bucket(self) -> None:
        if not self._bucket_created:
            raise ObjectNotFoundError(self.bucket_name)

    async def bucket_exists(self) -> bool:
        return self._bucket_created

    async def make_bucket(self) -> None:
        self._bucket_created = True

    def _store(self, key: str, data: bytes) -> None:
        with self._lock:
            self._objects[key] = (data, datetime.now(timezone.utc))

    @staticmethod
    def _read_all(fileobj: BinaryIO, chunk_size: int = 64 * 1024) -> bytes:
        parts = []
        while True:
            chunk = fileobj.read(chunk_size)
            if not chunk:
                break
            parts.append(chunk)
        return b"".join(parts)

    async def put_object_from_stream(
        self,
        key: str,
        fileobj: BinaryIO,
        length: Optional[int] = None,
    ) -> None:
        self._require_bucket()
        try:
            data = await asyncio.to_thread(self._read_all, fileobj)
        except Exception as e:
            raise BackendError(f"Reading upload body failed: {e}") from e
        self._store(key, data)

    async def put_object_from_path(self, key: str, path: str) -> None:
        self._require_bucket()

        def read_file() -> bytes:
            with open(path, "rb") as f:
                return f.read()

        self._store(key, await asyncio.to_thread(read_file))

    async def get_object_as_stream(self, key: str) -> OpenedObject:
        self._require_bucket()
        with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(key)
            data, _ = self._objects[key]
        return OpenedObject(body=MemoryBody(data), size=len(data))

    async def stat_object(self, key: str) -> ObjectInfo:
        self._require_bucket()
        with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(key)
            data, modified = self._objects[key]
        return ObjectInfo(name=key, size=len(data), last_modified=modified)

    async def list_objects(self, prefix: str = "", recursive: bool = True) -> AsyncIterator[ObjectInfo]:
        self._require_bucket()
        with self._lock:
            snapshot = sorted(self._objects.items())
        for key, (data, modified) in snapshot:
            if not key.startswith(prefix):
                continue
            if not recursive and "/" in key[len(prefix):]:
                continue
            yield ObjectInfo(name=key, size=len(data), last_modified=modified)

    async def remove_object(self, key: str) -> None:
        self._require_bucket()
        with self._lock:
            self._objects.pop(key, None)

    async def remove_objects(self, keys: list[str]) -> list[RemoveError]:
        self._require_bucket()
        with self._lock:
            for key in keys:
                self._objects.pop(key, None)
        return []


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_object_store(
    config: Optional[ObjectStoreConfig] = None,
    mock_mode: bool = False,
) -> ObjectStore:
    """
    Create an object store based on configuration.

    Args:
        config: Connection settings (required if not mock_mode)
        mock_mode: If True, return the in-memory store

    Returns:
        ObjectStore implementation (S3 or in-memory)
    """
    if mock_mode:
        bucket = config.bucket_name if config is not None else "sessions"
        return MemoryObjectStore(bucket_name=bucket)

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return S3ObjectStore(config)
