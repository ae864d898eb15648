"""
Liveness and readiness probes.

- /health answers as long as the process is up and never touches the store
- /health/ready probes the session bucket

Swarm restarts on failed liveness but only drains traffic on failed
readiness, so a store outage must not fail /health.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..dependencies import ContainerIdDep, OrchestratorDep

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "storage-worker"


class HealthResponse(BaseModel):
    """Liveness body; carries the instance id like every other response."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str
    service: str
    container_id: str
    timestamp: str


class ReadinessResponse(BaseModel):
    """Readiness check response with details."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str  # "ready" or "not_ready"
    bucket: str
    container_id: str
    error: str | None = None


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the service is running. Does not check the object store.",
)
async def health_check(container_id: ContainerIdDep) -> HealthResponse:
    """Report the process as alive."""
    return HealthResponse(
        status="ok",
        service=SERVICE_NAME,
        container_id=container_id,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns 200 if the bucket is reachable.",
    responses={
        503: {
            "description": "Service not ready",
            "model": ReadinessResponse,
        }
    },
)
async def readiness_check(
    orchestrator: OrchestratorDep,
    container_id: ContainerIdDep,
):
    """
    Readiness check - can we serve traffic?

    Returns 503 if the bucket cannot be reached, which tells load
    balancers not to route traffic here.
    """
    error = None
    try:
        ready = await orchestrator.check_ready()
        if not ready:
            error = f"Bucket {orchestrator.bucket_name} is not available"
    except Exception as e:
        logger.error("Object store readiness check failed", extra={"error": str(e)})
        ready = False
        error = str(e)

    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        bucket=orchestrator.bucket_name,
        container_id=container_id,
        error=error,
    )

    if not ready:
        logger.warning(
            "Readiness check failed",
            extra={"bucket": orchestrator.bucket_name, "error": error},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(by_alias=True),
        )

    return response
