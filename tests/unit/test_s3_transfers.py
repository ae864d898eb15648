"""
Transfer tests for the boto3 object store against an in-process S3 (moto).

These run the orchestrator over S3ObjectStore, so the real boto3 managed
transfer reads from ChunkPipe: single PUTs below the 8 MB multipart
threshold, multipart uploads above it, and aborted uploads on failure.
"""

import os
from typing import AsyncIterator, Iterable

import boto3
import pytest
from moto import mock_aws

from storage_worker.core.sessions.errors import TransferError
from storage_worker.core.sessions.orchestrator import TransferOrchestrator
from storage_worker.infrastructure.storage.client import ObjectStoreConfig, S3ObjectStore

BUCKET = "sessions"
CHUNK = 256 * 1024
MULTIPART_SIZE = 10 * 1024 * 1024 + 123


async def chunked(data: bytes, chunk_size: int = CHUNK) -> AsyncIterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


async def dropped_after(chunks: Iterable[bytes], error: Exception) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk
    raise error


async def read_all(orchestrator: TransferOrchestrator, session_id: str) -> bytes:
    download = await orchestrator.download(session_id)
    assert download is not None
    return b"".join([chunk async for chunk in download.iter_chunks()])


@pytest.fixture
def s3():
    with mock_aws():
        yield boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )


@pytest.fixture
def s3_store(s3) -> S3ObjectStore:
    config = ObjectStoreConfig(
        endpoint="minio",
        access_key="testing",
        secret_key="testing",
        bucket_name=BUCKET,
    )
    return S3ObjectStore(config, s3_client=s3)


def pending_multipart_uploads(s3) -> list:
    return s3.list_multipart_uploads(Bucket=BUCKET).get("Uploads", [])


# ---------------------------------------------------------------------------
# Streamed uploads
# ---------------------------------------------------------------------------

class TestStreamedUpload:
    """Uploads piped straight into upload_fileobj."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, 1000, MULTIPART_SIZE])
    async def test_round_trip_is_byte_identical(self, s3_store, s3, size):
        orchestrator = TransferOrchestrator(s3_store, chunk_size=CHUNK, pipe_depth=4)
        await orchestrator.initialize()
        data = os.urandom(size)

        result = await orchestrator.upload("abc", chunked(data), content_length=size)

        assert result.size == size
        assert await read_all(orchestrator, "abc") == data
        assert pending_multipart_uploads(s3) == []

    @pytest.mark.asyncio
    async def test_truncated_multipart_upload_leaves_nothing(self, s3_store, s3):
        orchestrator = TransferOrchestrator(s3_store, chunk_size=CHUNK, pipe_depth=4)
        await orchestrator.initialize()
        data = os.urandom(MULTIPART_SIZE)

        with pytest.raises(TransferError, match="truncated"):
            await orchestrator.upload("abc", chunked(data), content_length=12 * 1024 * 1024)

        assert not await orchestrator.exists("abc")
        assert pending_multipart_uploads(s3) == []

    @pytest.mark.asyncio
    async def test_dropped_client_keeps_previous_artifact(self, s3_store, s3):
        orchestrator = TransferOrchestrator(s3_store, chunk_size=CHUNK, pipe_depth=4)
        await orchestrator.initialize()
        await orchestrator.upload("abc", chunked(b"version-1"))
        partial = [os.urandom(CHUNK) for _ in range(40)]

        with pytest.raises(TransferError, match="client went away"):
            await orchestrator.upload(
                "abc", dropped_after(partial, ConnectionResetError("client went away"))
            )

        assert await read_all(orchestrator, "abc") == b"version-1"
        assert pending_multipart_uploads(s3) == []


# ---------------------------------------------------------------------------
# Staged uploads and downloads
# ---------------------------------------------------------------------------

class TestStagedUploadAndDownload:

    @pytest.mark.asyncio
    async def test_staged_multipart_round_trip(self, s3_store, s3, tmp_path):
        orchestrator = TransferOrchestrator(
            s3_store, upload_mode="staged", staging_dir=str(tmp_path), chunk_size=CHUNK
        )
        await orchestrator.initialize()
        data = os.urandom(MULTIPART_SIZE)

        await orchestrator.upload("abc", chunked(data), content_length=len(data))

        assert await read_all(orchestrator, "abc") == data
        assert list(tmp_path.iterdir()) == []
        assert pending_multipart_uploads(s3) == []

    @pytest.mark.asyncio
    async def test_opened_object_reports_its_own_length(self, s3_store, s3):
        await s3_store.make_bucket()
        s3.put_object(Bucket=BUCKET, Key="abc/session.tar.gz", Body=b"12345")

        opened = await s3_store.get_object_as_stream("abc/session.tar.gz")
        try:
            assert opened.size == 5
            assert b"".join(opened.body.iter_chunks(2)) == b"12345"
        finally:
            opened.body.close()
