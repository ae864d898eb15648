"""
Transfer orchestration for session artifacts.

Translates each session operation into object-store calls:
- upload:    inbound byte stream -> store (through a bounded pipe, or a
             temporary staging file for stores that need a path)
- download:  store -> live chunk stream handed back to the caller
- list_all:  lazy enumeration -> one record per session
- delete / delete_many: idempotent removal with per-id failure reporting

The orchestrator holds no per-session state. Concurrent uploads to the same
session race at the store and the last writer wins.
"""

import asyncio
import logging
import os
import tempfile
from typing import AsyncIterator, Iterable, Literal, Optional

from .errors import (
    ConfigurationError,
    InvalidSessionIdError,
    SessionStoreError,
    StoreNotReadyError,
    TransferError,
)
from .models import (
    BulkDeleteResult,
    FailedDeletion,
    SessionDownload,
    SessionRecord,
    UploadResult,
)
from .naming import (
    object_key_for,
    session_id_from_object_key,
    to_session_record,
)
from .pipe import ChunkPipe, PipeClosedError
from .store import ObjectNotFoundError, ObjectStore

logger = logging.getLogger(__name__)

UploadMode = Literal["stream", "staged"]

DEFAULT_CHUNK_SIZE = 256 * 1024
DEFAULT_PIPE_DEPTH = 8


class TransferOrchestrator:
    """
    Moves session artifacts between request boundaries and the object store.

    Lifecycle is {constructed} -> initialize() -> {ready}. The store handle
    is injected once and shared by every request; data operations fail fast
    with StoreNotReadyError until initialize() has ensured the bucket.
    """

    def __init__(
        self,
        store: ObjectStore,
        upload_mode: UploadMode = "stream",
        staging_dir: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pipe_depth: int = DEFAULT_PIPE_DEPTH,
    ) -> None:
        if upload_mode not in ("stream", "staged"):
            raise ValueError(f"Unknown upload mode: {upload_mode}")
        self._store = store
        self._upload_mode = upload_mode
        self._staging_dir = staging_dir
        self._chunk_size = chunk_size
        self._pipe_depth = pipe_depth
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def bucket_name(self) -> str:
        return self._store.bucket_name

    async def initialize(self) -> None:
        """Ensure the bucket exists. Idempotent; safe to call again."""
        bucket = self._store.bucket_name
        try:
            if await self._store.bucket_exists():
                logger.info("Using existing bucket", extra={"bucket": bucket})
            else:
                await self._store.make_bucket()
                logger.info("Created bucket", extra={"bucket": bucket})
        except Exception as e:
            logger.error(
                "Failed to initialize bucket",
                extra={"bucket": bucket, "error": str(e)},
            )
            raise ConfigurationError(f"Could not prepare bucket {bucket}: {e}") from e
        self._ready = True

    async def check_ready(self) -> bool:
        """Probe the backend; used by the readiness endpoint."""
        if not self._ready:
            return False
        return await self._store.bucket_exists()

    def _require_ready(self) -> None:
        if not self._ready:
            raise StoreNotReadyError()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        session_id: str,
        chunks: AsyncIterator[bytes],
        content_length: Optional[int] = None,
    ) -> UploadResult:
        """
        Write an inbound stream to the session's object.

        The stream is consumed fully before success is reported. A known
        content_length must match the bytes received; a mismatch or an
        inbound error fails the upload before the object is committed,
        so the session never shows a truncated artifact.
        """
        self._require_ready()
        key = object_key_for(session_id)

        logger.info(
            "Uploading session",
            extra={
                "session_id": session_id,
                "content_length": content_length,
                "mode": self._upload_mode,
            }
        )

        try:
            if self._upload_mode == "staged":
                size = await self._upload_staged(session_id, key, chunks, content_length)
            else:
                size = await self._upload_streaming(session_id, key, chunks, content_length)
        except SessionStoreError as e:
            logger.error(
                "Failed to upload session",
                extra={"session_id": session_id, "operation": "upload", "error": str(e)},
            )
            raise

        logger.info("Uploaded session", extra={"session_id": session_id, "size_bytes": size})
        return UploadResult(session_id=session_id, size=size)

    async def _pump(
        self,
        session_id: str,
        chunks: AsyncIterator[bytes],
        content_length: Optional[int],
        sink,
    ) -> int:
        """Copy inbound chunks into sink, enforcing content_length."""
        received = 0
        try:
            async for chunk in chunks:
                received += len(chunk)
                if content_length is not None and received > content_length:
                    raise TransferError(
                        f"Session {session_id} upload exceeded declared length {content_length}"
                    )
                await sink(chunk)
        except (TransferError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise TransferError(
                f"Upload stream for session {session_id} failed after {received} bytes: {e}"
            ) from e

        if content_length is not None and received != content_length:
            raise TransferError(
                f"Session {session_id} upload truncated: received {received} "
                f"of {content_length} bytes"
            )
        return received

    async def _upload_streaming(
        self,
        session_id: str,
        key: str,
        chunks: AsyncIterator[bytes],
        content_length: Optional[int],
    ) -> int:
        pipe = ChunkPipe(max_chunks=self._pipe_depth)
        put = asyncio.ensure_future(
            self._store.put_object_from_stream(key, pipe, content_length)
        )
        put.add_done_callback(lambda _: pipe.close())

        try:
            received = await self._pump(session_id, chunks, content_length, pipe.write)
            await pipe.finish()
        except PipeClosedError:
            # The store gave up first; its error is the one worth reporting.
            await self._await_put(put, key)
            raise
        except BaseException as e:
            pipe.fail(e)
            await asyncio.gather(put, return_exceptions=True)
            raise

        await self._await_put(put, key)
        return received

    async def _await_put(self, put: "asyncio.Future[None]", key: str) -> None:
        try:
            await put
        except ObjectNotFoundError as e:
            raise ConfigurationError(f"Bucket missing while writing {key}") from e
        except SessionStoreError:
            raise
        except Exception as e:
            raise TransferError(f"Writing {key} failed: {e}") from e

    async def _upload_staged(
        self,
        session_id: str,
        key: str,
        chunks: AsyncIterator[bytes],
        content_length: Optional[int],
    ) -> int:
        with tempfile.NamedTemporaryFile(
            prefix=f"{session_id}-",
            suffix=".tar.gz",
            dir=self._staging_dir,
            delete=False,
        ) as tmp:
            staging_path = tmp.name
        try:
            with open(staging_path, "wb") as staging_file:
                async def write(chunk: bytes) -> None:
                    await asyncio.to_thread(staging_file.write, chunk)

                received = await self._pump(session_id, chunks, content_length, write)

            put = asyncio.ensure_future(self._store.put_object_from_path(key, staging_path))
            await self._await_put(put, key)
            return received
        finally:
            try:
                os.unlink(staging_path)
            except FileNotFoundError:
                pass

    # ------------------------------------------------------------------
    # Download / existence / metadata
    # ------------------------------------------------------------------

    async def download(self, session_id: str) -> Optional[SessionDownload]:
        """
        Open the session's artifact for reading.

        Returns None when the session does not exist. The caller owns the
        returned handle and must close it (iterating to the end does).

        The stat only answers "does it exist". The size comes from the
        opened body, so a session overwritten between the two calls is
        served whole as the newer version.
        """
        self._require_ready()
        key = object_key_for(session_id)

        if await self.get_metadata(session_id) is None:
            return None

        try:
            opened = await self._store.get_object_as_stream(key)
        except ObjectNotFoundError:
            # Deleted between the stat and the fetch.
            logger.debug("Session vanished before download", extra={"session_id": session_id})
            return None
        except Exception as e:
            logger.error(
                "Failed to open session stream",
                extra={"session_id": session_id, "operation": "download", "error": str(e)},
            )
            raise

        logger.info(
            "Streaming session",
            extra={"session_id": session_id, "size_bytes": opened.size},
        )
        return SessionDownload(
            session_id=session_id,
            body=opened.body,
            size=opened.size,
            chunk_size=self._chunk_size,
        )

    async def exists(self, session_id: str) -> bool:
        return await self.get_metadata(session_id) is not None

    async def get_metadata(self, session_id: str) -> Optional[SessionRecord]:
        """Stat the session's object; None when absent."""
        self._require_ready()
        key = object_key_for(session_id)
        try:
            info = await self._store.stat_object(key)
        except ObjectNotFoundError:
            logger.debug("Session not found", extra={"session_id": session_id})
            return None
        except Exception as e:
            logger.error(
                "Failed to stat session",
                extra={"session_id": session_id, "operation": "stat", "error": str(e)},
            )
            raise
        return to_session_record(session_id, info)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_all(self) -> AsyncIterator[SessionRecord]:
        """
        Yield one record per stored session.

        Enumeration is lazy; only the set of session ids already seen is
        kept. When a session has several objects under its prefix, the
        first one the store returns wins.
        """
        self._require_ready()
        seen: set[str] = set()
        try:
            async for info in self._store.list_objects(prefix="", recursive=True):
                session_id = session_id_from_object_key(info.name)
                if not session_id or session_id in seen:
                    continue
                seen.add(session_id)
                yield to_session_record(session_id, info)
        except ObjectNotFoundError:
            logger.warning("Bucket missing while listing sessions", extra={"bucket": self.bucket_name})
            return

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(self, session_id: str) -> None:
        """Remove the session's artifact. Deleting an absent session succeeds."""
        self._require_ready()
        key = object_key_for(session_id)
        try:
            await self._store.remove_object(key)
        except ObjectNotFoundError:
            logger.debug("Session already absent", extra={"session_id": session_id})
            return
        except Exception as e:
            logger.error(
                "Failed to delete session",
                extra={"session_id": session_id, "operation": "delete", "error": str(e)},
            )
            raise
        logger.info("Deleted session", extra={"session_id": session_id})

    async def delete_many(self, session_ids: Iterable[str]) -> BulkDeleteResult:
        """
        Remove several sessions in batched backend calls.

        Invalid ids fail without touching the store. Backend per-key
        failures are mapped back to their session ids; not-found counts
        as deleted.
        """
        self._require_ready()
        result = BulkDeleteResult()
        keys: dict[str, str] = {}
        seen: set[str] = set()

        for session_id in session_ids:
            if session_id in seen:
                continue
            seen.add(session_id)
            try:
                keys[object_key_for(session_id)] = session_id
            except InvalidSessionIdError as e:
                result.failed.append(FailedDeletion(session_id=str(session_id), reason=str(e)))

        if keys:
            try:
                errors = await self._store.remove_objects(list(keys))
            except ObjectNotFoundError:
                errors = []
            except Exception as e:
                logger.error(
                    "Failed to bulk delete sessions",
                    extra={"count": len(keys), "operation": "delete_many", "error": str(e)},
                )
                raise

            failed_keys = set()
            for error in errors:
                if error.is_not_found or error.key not in keys:
                    continue
                failed_keys.add(error.key)
                result.failed.append(FailedDeletion(
                    session_id=keys[error.key],
                    reason=f"{error.code}: {error.message}",
                ))
            result.deleted = [sid for key, sid in keys.items() if key not in failed_keys]

        if result.failed:
            logger.warning(
                "Bulk delete partially failed",
                extra={"deleted": len(result.deleted), "failed": result.failed_ids},
            )
        else:
            logger.info("Bulk deleted sessions", extra={"count": len(result.deleted)})
        return result
