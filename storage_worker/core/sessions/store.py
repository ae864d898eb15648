"""
The object-store capability set the session layer depends on.

Defined here (not next to the boto3 client) so the orchestrator can be
tested against any implementation without importing infrastructure code.
"""

from dataclasses import dataclass
from typing import AsyncIterator, BinaryIO, Iterator, Optional, Protocol

from .models import ObjectInfo

# Backend error codes that mean "no such object" (or bucket).
NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class ObjectNotFoundError(StorageError):
    """Raised when the backend reports a missing object or bucket."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


class BackendError(StorageError):
    """Raised for every backend failure that is not a not-found."""
    pass


@dataclass(frozen=True)
class RemoveError:
    """A per-key failure reported by a batched delete."""
    key: str
    code: str
    message: str

    @property
    def is_not_found(self) -> bool:
        return self.code in NOT_FOUND_CODES


class ObjectBody(Protocol):
    """Readable object body; botocore's StreamingBody satisfies this."""

    def iter_chunks(self, chunk_size: int = ...) -> Iterator[bytes]:
        ...

    def close(self) -> None:
        ...


@dataclass(frozen=True)
class OpenedObject:
    """An open object body plus the size of that exact version."""
    body: ObjectBody
    size: Optional[int] = None


class ObjectStore(Protocol):
    """
    Protocol for object storage operations.

    Every method may raise ObjectNotFoundError for a missing object or
    bucket, and BackendError for anything else. Implementations are
    shared by all concurrent requests and must not need per-call locking.
    """

    bucket_name: str

    async def bucket_exists(self) -> bool:
        ...

    async def make_bucket(self) -> None:
        ...

    async def put_object_from_stream(
        self,
        key: str,
        fileobj: BinaryIO,
        length: Optional[int] = None,
    ) -> None:
        """Write a possibly non-seekable stream. Reads from fileobj block."""
        ...

    async def put_object_from_path(self, key: str, path: str) -> None:
        ...

    async def get_object_as_stream(self, key: str) -> OpenedObject:
        """Open the current version; size describes this body, not an earlier stat."""
        ...

    async def stat_object(self, key: str) -> ObjectInfo:
        ...

    def list_objects(self, prefix: str = "", recursive: bool = True) -> AsyncIterator[ObjectInfo]:
        """Lazily enumerate objects; never materializes the full listing."""
        ...

    async def remove_object(self, key: str) -> None:
        ...

    async def remove_objects(self, keys: list[str]) -> list[RemoveError]:
        """Delete keys in batches; returns per-key failures."""
        ...
