"""
Client for the storage worker, used by other workers.

One HTTP call per operation, mirroring the server's routes:
- upload sends the whole tarball as a single streamed request body
- download treats 404 as "not found" (False) rather than an error
- every failure raises StorageWorkerError carrying the status code and
  the id of the instance that answered

No retries happen here. Callers may retry whole operations, but an
interrupted upload always starts over from the first byte.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

import httpx

logger = logging.getLogger(__name__)

CONTAINER_ID_HEADER = "X-Container-ID"
SESSIONS_PATH = "/api/storage-worker/sessions"

DEFAULT_TIMEOUT_SECONDS = 60.0
UPLOAD_CHUNK_SIZE = 256 * 1024


class StorageWorkerError(Exception):
    """Raised when a storage worker request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        container_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.container_id = container_id


@dataclass(frozen=True)
class SessionMetadata:
    """Session metadata as returned by the storage worker."""
    session_id: str
    created_at: datetime
    last_modified: datetime
    size: Optional[int] = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "SessionMetadata":
        return cls(
            session_id=data["sessionId"],
            created_at=datetime.fromisoformat(data["createdAt"]),
            last_modified=datetime.fromisoformat(data["lastModified"]),
            size=data.get("size"),
        )


@dataclass(frozen=True)
class BulkDeleteOutcome:
    deleted: list[str]
    failed: list[str]


class StorageWorkerClient:
    """
    Async client for session storage operations.

    Use as an async context manager, or call aclose() when done:

        async with StorageWorkerClient("http://storage-worker:3000") as client:
            await client.upload_session("abc", "/tmp/abc.tar.gz")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )
        logger.info("StorageWorkerClient initialized", extra={"base_url": self.base_url})

    async def __aenter__(self) -> "StorageWorkerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def upload_session(self, session_id: str, tarball_path: Union[str, Path]) -> int:
        """Upload a session tarball. Returns the size the server stored."""
        path = Path(tarball_path)
        if not path.is_file():
            raise StorageWorkerError(f"Tarball not found: {path}")
        size = path.stat().st_size

        async def body() -> AsyncIterator[bytes]:
            f = await asyncio.to_thread(path.open, "rb")
            try:
                while True:
                    chunk = await asyncio.to_thread(f.read, UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                f.close()

        response = await self._send(
            "POST",
            f"{SESSIONS_PATH}/{session_id}/upload",
            "Upload",
            content=body(),
            headers={
                "Content-Type": "application/gzip",
                "Content-Length": str(size),
            },
        )
        self._raise_for_status(response, "Upload")
        return response.json().get("size", size)

    async def download_session(self, session_id: str, destination_path: Union[str, Path]) -> bool:
        """
        Download a session tarball to destination_path.

        Returns True if the session was found and written, False if the
        worker has no such session. A partially written file is removed.
        """
        destination = Path(destination_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        url = f"{SESSIONS_PATH}/{session_id}/download"

        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code == 404:
                    await response.aread()
                    if self._is_session_not_found(response):
                        return False
                    self._raise_for_status(response, "Download")
                if response.status_code != 200:
                    await response.aread()
                    self._raise_for_status(response, "Download")

                expected = response.headers.get("Content-Length")
                written = 0
                try:
                    f = await asyncio.to_thread(destination.open, "wb")
                    try:
                        async for chunk in response.aiter_bytes():
                            await asyncio.to_thread(f.write, chunk)
                            written += len(chunk)
                    finally:
                        f.close()
                    if expected is not None and written != int(expected):
                        raise StorageWorkerError(
                            f"Download truncated: received {written} of {expected} bytes",
                            status_code=response.status_code,
                            container_id=response.headers.get(CONTAINER_ID_HEADER),
                        )
                except BaseException:
                    self._remove_partial(destination)
                    raise
        except httpx.TimeoutException as e:
            raise StorageWorkerError("Download request timed out") from e
        except httpx.HTTPError as e:
            raise StorageWorkerError(f"Download request failed: {e}") from e

        return True

    async def list_sessions(self) -> list[SessionMetadata]:
        response = await self._send("GET", SESSIONS_PATH, "List")
        self._raise_for_status(response, "List")
        try:
            sessions = response.json().get("sessions") or []
            return [SessionMetadata.from_json(item) for item in sessions]
        except (ValueError, KeyError) as e:
            raise StorageWorkerError("Failed to parse response") from e

    async def get_session_metadata(self, session_id: str) -> Optional[SessionMetadata]:
        response = await self._send("GET", f"{SESSIONS_PATH}/{session_id}", "Get metadata")
        if response.status_code == 404 and self._is_session_not_found(response):
            return None
        self._raise_for_status(response, "Get metadata")
        try:
            return SessionMetadata.from_json(response.json())
        except (ValueError, KeyError) as e:
            raise StorageWorkerError("Failed to parse response") from e

    async def session_exists(self, session_id: str) -> bool:
        response = await self._send("HEAD", f"{SESSIONS_PATH}/{session_id}", "Session exists")
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise StorageWorkerError(
            f"Session exists check failed with status {response.status_code}",
            status_code=response.status_code,
            container_id=response.headers.get(CONTAINER_ID_HEADER),
        )

    async def delete_session(self, session_id: str) -> None:
        response = await self._send("DELETE", f"{SESSIONS_PATH}/{session_id}", "Delete")
        self._raise_for_status(response, "Delete")

    async def delete_sessions(self, session_ids: list[str]) -> BulkDeleteOutcome:
        """
        Delete several sessions in one request.

        A partial failure is not raised: the outcome lists which ids
        were deleted and which failed.
        """
        response = await self._send(
            "POST",
            f"{SESSIONS_PATH}/bulk-delete",
            "Bulk delete",
            json={"sessionIds": list(session_ids)},
        )
        if response.status_code not in (200, 207):
            self._raise_for_status(response, "Bulk delete")
        data = response.json()
        return BulkDeleteOutcome(
            deleted=list(data.get("sessionIds", [])),
            failed=[item["sessionId"] for item in data.get("failed", [])],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise StorageWorkerError(f"{operation} request timed out") from e
        except httpx.HTTPError as e:
            raise StorageWorkerError(f"{operation} request failed: {e}") from e

    @staticmethod
    def _is_session_not_found(response: httpx.Response) -> bool:
        """True for a missing session, false for an unknown endpoint."""
        try:
            return response.json().get("error") == "session_not_found"
        except ValueError:
            return True

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.status_code == 200:
            return
        message = f"{operation} failed with status {response.status_code}"
        try:
            message = response.json().get("message") or message
        except ValueError:
            pass
        raise StorageWorkerError(
            message,
            status_code=response.status_code,
            container_id=response.headers.get(CONTAINER_ID_HEADER),
        )

    @staticmethod
    def _remove_partial(path: Path) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
