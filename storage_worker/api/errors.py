"""
Error responses for the HTTP API.

Every error body has the same shape, `{error, message, containerId}`,
so callers can branch on `error` without parsing messages.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.sessions.errors import (
    ConfigurationError,
    InvalidSessionIdError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

CONTAINER_ID_HEADER = "X-Container-ID"

AVAILABLE_ENDPOINTS = [
    "GET    /health",
    "GET    /health/ready",
    "POST   /api/storage-worker/sessions/:sessionId/upload",
    "GET    /api/storage-worker/sessions/:sessionId/download",
    "GET    /api/storage-worker/sessions",
    "GET    /api/storage-worker/sessions/:sessionId",
    "HEAD   /api/storage-worker/sessions/:sessionId",
    "DELETE /api/storage-worker/sessions/:sessionId",
    "POST   /api/storage-worker/sessions/bulk-delete",
]


class ApiError(Exception):
    """Raised by routes to return a structured error response."""

    def __init__(self, status_code: int, error: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message


def error_response(
    status_code: int,
    error: str,
    message: str,
    container_id: str,
    **extra,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            **extra,
            "containerId": container_id,
        },
        headers={CONTAINER_ID_HEADER: container_id},
    )


def register_exception_handlers(app: FastAPI, container_id: str) -> None:
    """Install handlers mapping exceptions to the error body shape."""

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return error_response(exc.status_code, exc.error, exc.message, container_id)

    @app.exception_handler(InvalidSessionIdError)
    async def invalid_session_id_handler(request: Request, exc: InvalidSessionIdError):
        return error_response(
            status.HTTP_400_BAD_REQUEST, "invalid_session_id", str(exc), container_id
        )

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return error_response(
            status.HTTP_404_NOT_FOUND, "session_not_found", str(exc), container_id
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(
            "Storage unavailable",
            extra={"path": request.url.path, "error": str(exc)},
        )
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, "storage_unavailable", str(exc), container_id
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "invalid_request",
            "; ".join(str(err.get("msg", "")) for err in exc.errors()) or "Invalid request",
            container_id,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return error_response(
                exc.status_code,
                "not_found",
                f"Endpoint not found: {request.method} {request.url.path}",
                container_id,
                availableEndpoints=AVAILABLE_ENDPOINTS,
            )
        return error_response(exc.status_code, "http_error", str(exc.detail), container_id)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        We log the full error server-side and return the original message
        so callers can decide whether to retry.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", str(exc), container_id
        )
