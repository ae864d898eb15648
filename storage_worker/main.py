"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Tests can inject an orchestrator over the in-memory store

For local development:
    uvicorn storage_worker.main:app --reload

For production:
    python -m storage_worker.main
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import build_orchestrator
from .api.errors import CONTAINER_ID_HEADER, register_exception_handlers
from .api.routes import health, sessions
from .config.settings import Settings, get_settings
from .core.sessions.orchestrator import TransferOrchestrator

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[TransferOrchestrator] = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Overrides the environment-loaded settings (tests)
        orchestrator: Pre-built orchestrator; otherwise one is built from
            settings during startup
    """
    overridden = settings is not None
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup ensures the bucket exists before any request is served.
        If that fails the exception propagates and the server refuses
        to start rather than running half-initialized.
        """
        logger.info(
            "Storage worker starting",
            extra={
                "container_id": settings.container_id,
                "bucket": settings.minio_bucket,
                "endpoint": settings.minio_endpoint,
                "mock_mode": settings.object_store_mock_mode,
            }
        )

        missing_fields = settings.validate_required_fields()
        if missing_fields:
            logger.error(
                "Missing required configuration",
                extra={"missing_fields": missing_fields}
            )
            raise RuntimeError(
                f"Missing required configuration: {', '.join(missing_fields)}"
            )

        instance = orchestrator or build_orchestrator(settings)
        await instance.initialize()
        app.state.orchestrator = instance

        yield

        logger.info(
            "Storage worker shutting down",
            extra={"container_id": settings.container_id},
        )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Session artifact storage backed by MinIO / S3-compatible storage.

        Workers upload a session tarball, fetch it back later, and manage
        stored sessions. Every response carries the `X-Container-ID`
        header identifying the instance that served it.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    if overridden:
        app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CONTAINER_ID_HEADER],
    )

    @app.middleware("http")
    async def add_container_id(request: Request, call_next):
        response = await call_next(request)
        response.headers[CONTAINER_ID_HEADER] = settings.container_id
        return response

    register_exception_handlers(app, settings.container_id)

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        sessions.router,
        prefix="/api/storage-worker/sessions",
        tags=["Sessions"],
    )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    uvicorn.run(
        "storage_worker.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


# Create the application instance
# This is what uvicorn will import
app = create_app()


if __name__ == "__main__":
    run()
