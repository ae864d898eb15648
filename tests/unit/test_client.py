"""
Tests for StorageWorkerClient.

Most tests drive the real app in-process through httpx's ASGI transport.
ASGITransport does not run the lifespan, so the app gets an already
initialized orchestrator installed on its state.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from storage_worker.client import StorageWorkerClient, StorageWorkerError
from storage_worker.main import create_app

BASE_URL = "http://storage-worker"


@pytest_asyncio.fixture
async def worker(settings, orchestrator):
    app = create_app(settings=settings, orchestrator=orchestrator)
    app.state.orchestrator = orchestrator
    client = StorageWorkerClient(BASE_URL, transport=httpx.ASGITransport(app=app))
    yield client
    await client.aclose()


@pytest.fixture
def tarball(tmp_path):
    path = tmp_path / "in.tar.gz"
    path.write_bytes(b"\x1f\x8b" + bytes(range(256)) * 64)
    return path


# ---------------------------------------------------------------------------
# Upload / Download
# ---------------------------------------------------------------------------

class TestTransfer:

    @pytest.mark.asyncio
    async def test_upload_then_download(self, worker, tarball, tmp_path):
        size = await worker.upload_session("abc", tarball)

        destination = tmp_path / "out" / "abc.tar.gz"
        found = await worker.download_session("abc", destination)

        assert size == tarball.stat().st_size
        assert found is True
        assert destination.read_bytes() == tarball.read_bytes()

    @pytest.mark.asyncio
    async def test_file_io_runs_off_the_event_loop(self, worker, tarball, tmp_path, monkeypatch):
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(getattr(func, "__name__", ""))
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

        await worker.upload_session("abc", tarball)
        await worker.download_session("abc", tmp_path / "abc.tar.gz")

        assert "read" in offloaded
        assert "write" in offloaded

    @pytest.mark.asyncio
    async def test_download_missing_session_returns_false(self, worker, tmp_path):
        destination = tmp_path / "missing.tar.gz"

        found = await worker.download_session("nope", destination)

        assert found is False
        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_upload_missing_file_raises(self, worker, tmp_path):
        with pytest.raises(StorageWorkerError, match="Tarball not found"):
            await worker.upload_session("abc", tmp_path / "nothing.tar.gz")

    @pytest.mark.asyncio
    async def test_upload_invalid_session_id_raises_with_status(self, worker, tarball):
        with pytest.raises(StorageWorkerError) as exc_info:
            await worker.upload_session("-bad", tarball)

        assert exc_info.value.status_code == 400
        assert exc_info.value.container_id == "test-container"

    @pytest.mark.asyncio
    async def test_truncated_download_removes_partial_file(self, tmp_path):
        """A body shorter than Content-Length is an error, not a short file."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Length": "10"}, content=b"abc")

        destination = tmp_path / "abc.tar.gz"
        async with StorageWorkerClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StorageWorkerError, match="truncated"):
                await client.download_session("abc", destination)

        assert not destination.exists()


# ---------------------------------------------------------------------------
# Queries and deletion
# ---------------------------------------------------------------------------

class TestQueries:

    @pytest.mark.asyncio
    async def test_exists_and_metadata(self, worker, tarball):
        assert await worker.session_exists("abc") is False
        assert await worker.get_session_metadata("abc") is None

        await worker.upload_session("abc", tarball)

        assert await worker.session_exists("abc") is True
        metadata = await worker.get_session_metadata("abc")
        assert metadata.session_id == "abc"
        assert metadata.size == tarball.stat().st_size

    @pytest.mark.asyncio
    async def test_list_sessions(self, worker, tarball):
        await worker.upload_session("a", tarball)
        await worker.upload_session("b", tarball)

        sessions = await worker.list_sessions()

        assert sorted(s.session_id for s in sessions) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_session(self, worker, tarball):
        await worker.upload_session("abc", tarball)

        await worker.delete_session("abc")
        await worker.delete_session("abc")

        assert await worker.session_exists("abc") is False

    @pytest.mark.asyncio
    async def test_delete_sessions_reports_partial_failure(self, worker, tarball):
        await worker.upload_session("a", tarball)

        outcome = await worker.delete_sessions(["a", "../x"])

        assert outcome.deleted == ["a"]
        assert outcome.failed == ["../x"]

    @pytest.mark.asyncio
    async def test_server_error_carries_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                500,
                json={"error": "list_failed", "message": "backend down", "containerId": "w-1"},
                headers={"X-Container-ID": "w-1"},
            )

        async with StorageWorkerClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StorageWorkerError, match="backend down") as exc_info:
                await client.list_sessions()

        assert exc_info.value.status_code == 500
        assert exc_info.value.container_id == "w-1"

    @pytest.mark.asyncio
    async def test_connection_failure_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with StorageWorkerClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StorageWorkerError, match="request failed"):
                await client.session_exists("abc")
