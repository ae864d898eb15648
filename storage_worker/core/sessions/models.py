"""
Value objects for session artifacts.

Nothing here is persisted: records are rebuilt from the object store on
every request, so they are frozen dataclasses with no identity of their own.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Iterator, Optional

from .errors import TransferError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectInfo:
    """Backend-neutral view of a stat or list entry."""
    name: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class SessionRecord:
    """
    Metadata about one stored session artifact.

    S3-compatible stores only expose a last-modified time, so created_at
    mirrors it. Overwriting a session therefore moves both timestamps.
    """
    session_id: str
    created_at: datetime
    last_modified: datetime
    size: Optional[int] = None


@dataclass(frozen=True)
class UploadResult:
    """Acknowledgement of a completed upload."""
    session_id: str
    size: int


@dataclass(frozen=True)
class FailedDeletion:
    session_id: str
    reason: str


@dataclass
class BulkDeleteResult:
    """
    Per-id outcome of a bulk delete.

    A non-empty `failed` list is a partial failure: ids in `deleted`
    really are gone and should not be retried.
    """
    deleted: list[str] = field(default_factory=list)
    failed: list[FailedDeletion] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed_ids(self) -> list[str]:
        return [failure.session_id for failure in self.failed]


class SessionDownload:
    """
    An open artifact stream positioned at the first byte.

    Owns the backend response body until closed. Chunks are pulled from the
    body in a worker thread so a slow store never blocks the event loop, and
    only one chunk is held in memory at a time.
    """

    def __init__(
        self,
        session_id: str,
        body: Any,
        size: Optional[int],
        chunk_size: int,
    ) -> None:
        self.session_id = session_id
        self.size = size
        self._body = body
        self._chunk_size = chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the artifact in chunks, closing the body when done."""
        if self._closed:
            raise TransferError(f"Download stream for session {self.session_id} is closed")

        chunks: Iterator[bytes] = self._body.iter_chunks(self._chunk_size)
        sent = 0
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(next, chunks, None)
                except Exception as e:
                    raise TransferError(
                        f"Reading session {self.session_id} failed after {sent} bytes: {e}"
                    ) from e
                if chunk is None:
                    break
                sent += len(chunk)
                yield chunk
        finally:
            # Runs on cancellation too, so it must not await.
            self._release()

        if self.size is not None and sent != self.size:
            raise TransferError(
                f"Session {self.session_id} stream ended after {sent} of {self.size} bytes"
            )

    async def close(self) -> None:
        self._release()

    def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._body.close()
        except Exception as e:
            # The body is unusable either way; nothing left to release.
            logger.warning(
                "Failed to close download stream",
                extra={"session_id": self.session_id, "error": str(e)},
            )
