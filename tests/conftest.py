"""
Shared fixtures.

All tests run against the in-memory object store; nothing here needs
MinIO or network access.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from storage_worker.config.settings import Settings
from storage_worker.core.sessions.orchestrator import TransferOrchestrator
from storage_worker.infrastructure.storage.client import MemoryObjectStore
from storage_worker.main import create_app


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore(bucket_name="sessions")


@pytest_asyncio.fixture
async def orchestrator(store: MemoryObjectStore) -> TransferOrchestrator:
    orchestrator = TransferOrchestrator(store, chunk_size=4, pipe_depth=2)
    await orchestrator.initialize()
    return orchestrator


@pytest.fixture
def settings() -> Settings:
    return Settings(
        object_store_mock_mode=True,
        container_id="test-container",
        minio_bucket="sessions",
        transfer_chunk_size=8,
        transfer_pipe_depth=2,
    )


@pytest.fixture
def client(settings: Settings):
    """TestClient with the lifespan running, so the bucket is ensured."""
    app = create_app(settings=settings)
    with TestClient(app) as test_client:
        yield test_client
