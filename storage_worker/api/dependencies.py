"""
FastAPI dependency injection.

Dependencies provide the orchestrator, settings, and instance identity
to route handlers. Using dependency injection means:
- Routes don't build their own storage clients (easier to test)
- The single process-wide orchestrator is created once in the lifespan
  and handed out explicitly instead of living in a module global
- Tests can install an orchestrator over the in-memory store
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request

from ..config.settings import Settings, get_settings
from ..core.sessions.errors import StoreNotReadyError
from ..core.sessions.orchestrator import TransferOrchestrator
from ..infrastructure.storage.client import (
    ObjectStoreConfig,
    create_object_store,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def build_orchestrator(settings: Settings) -> TransferOrchestrator:
    """
    Build the orchestrator and its object store from settings.

    Called once per process from the application lifespan. The returned
    orchestrator still needs initialize() before it serves requests.
    """
    config: Optional[ObjectStoreConfig] = None
    if settings.minio_endpoint:
        config = ObjectStoreConfig(
            endpoint=settings.minio_endpoint,
            port=settings.minio_port,
            use_ssl=settings.minio_use_ssl,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            bucket_name=settings.minio_bucket,
            region=settings.minio_region,
        )

    store = create_object_store(
        config=config,
        mock_mode=settings.object_store_mock_mode,
    )

    return TransferOrchestrator(
        store,
        upload_mode=settings.upload_mode,
        staging_dir=settings.staging_dir,
        chunk_size=settings.transfer_chunk_size,
        pipe_depth=settings.transfer_pipe_depth,
    )


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_orchestrator(request: Request) -> TransferOrchestrator:
    """
    Provide the process-wide orchestrator.

    Raises StoreNotReadyError if the lifespan has not installed one,
    which the app reports as 503.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise StoreNotReadyError()
    return orchestrator


def get_container_id(
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    return settings.container_id


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
OrchestratorDep = Annotated[TransferOrchestrator, Depends(get_orchestrator)]
ContainerIdDep = Annotated[str, Depends(get_container_id)]
