"""
Bounded byte pipe between the event loop and a blocking reader.

The request body arrives as an async iterator on the event loop, while
boto3 wants a file object it can read() from in a worker thread. ChunkPipe
joins the two with a queue of at most `max_chunks` chunks, so the writer
waits whenever the store falls behind and memory use depends on the chunk
size, never on the artifact size.

Either side can fail the pipe:
- fail() on the writer side makes the reader's next read() raise, which
  aborts the in-flight upload before anything is committed.
- close() on the reader side makes pending and future writes raise
  PipeClosedError so the writer stops pumping.
"""

import asyncio
import queue
import threading
from typing import Optional

from .errors import TransferError

_EOF = object()

# How often a blocked writer re-checks whether the reader went away.
_PUT_POLL_SECONDS = 0.1


class PipeClosedError(TransferError):
    """Raised to the writer when the reader has stopped consuming."""
    pass


class ChunkPipe:
    """Read side is a minimal binary file object; write side is async."""

    def __init__(self, max_chunks: int = 8) -> None:
        if max_chunks < 1:
            raise ValueError("max_chunks must be at least 1")
        self._queue: queue.Queue = queue.Queue(maxsize=max_chunks)
        self._buffer = bytearray()
        self._eof = False
        self._error: Optional[BaseException] = None
        self._reader_closed = threading.Event()

    # -- writer side (event loop) ------------------------------------------

    async def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        await asyncio.to_thread(self._put, bytes(chunk))

    async def finish(self) -> None:
        """Signal end of stream; the reader sees EOF after draining."""
        await asyncio.to_thread(self._put, _EOF)

    def fail(self, error: BaseException) -> None:
        """Poison the pipe; never blocks, so it is safe in except blocks."""
        self._error = error
        # Wake a reader blocked on an empty queue.
        try:
            self._queue.put_nowait(_EOF)
        except queue.Full:
            pass

    def _put(self, item: object) -> None:
        while True:
            if self._reader_closed.is_set():
                raise PipeClosedError("Object store stopped reading the upload stream")
            try:
                self._queue.put(item, timeout=_PUT_POLL_SECONDS)
                return
            except queue.Full:
                continue

    # -- reader side (worker thread) ---------------------------------------

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        while not self._eof and (size is None or size < 0 or len(self._buffer) < size):
            self._raise_if_failed()
            item = self._queue.get()
            if item is _EOF:
                self._raise_if_failed()
                self._eof = True
            else:
                self._buffer.extend(item)

        if size is None or size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data

    def close(self) -> None:
        self._reader_closed.set()

    @property
    def closed(self) -> bool:
        return self._reader_closed.is_set()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise TransferError(f"Upload stream aborted: {self._error}") from self._error
