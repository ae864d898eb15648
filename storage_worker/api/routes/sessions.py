"""
Session artifact API endpoints.

Other workers park session state here between invocations:
- upload a tarball as a raw request body
- download it back as a stream
- list, stat, check and delete sessions

Bodies are never buffered whole: uploads are pumped into the store as
they arrive and downloads are relayed chunk by chunk.
"""

import logging
from contextlib import contextmanager
from typing import Annotated, Iterator, Optional

from fastapi import APIRouter, Header, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.background import BackgroundTask

from ...core.sessions.errors import (
    ConfigurationError,
    InvalidSessionIdError,
    SessionNotFoundError,
    SessionStoreError,
    TransferError,
)
from ...core.sessions.models import SessionRecord
from ...core.sessions.store import StorageError
from ..dependencies import ContainerIdDep, OrchestratorDep
from ..errors import ApiError

logger = logging.getLogger(__name__)

router = APIRouter()

ACCEPTED_CONTENT_TYPES = ("application/octet-stream", "application/gzip", "application/x-gzip")


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    """Serializes to camelCase, the wire format other workers expect."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionMetadataResponse(CamelModel):
    """Metadata for one stored session."""
    session_id: str = Field(description="Session identifier")
    created_at: str = Field(description="When the artifact was stored (ISO format)")
    last_modified: str = Field(description="Last modification time (ISO format)")
    size: Optional[int] = Field(None, description="Artifact size in bytes")
    container_id: str = Field(description="Instance that served the request")

    @classmethod
    def from_record(cls, record: SessionRecord, container_id: str) -> "SessionMetadataResponse":
        return cls(
            session_id=record.session_id,
            created_at=record.created_at.isoformat(),
            last_modified=record.last_modified.isoformat(),
            size=record.size,
            container_id=container_id,
        )


class SessionItem(CamelModel):
    """Single entry in a session listing."""
    session_id: str
    created_at: str
    last_modified: str
    size: Optional[int] = None


class SessionListResponse(CamelModel):
    sessions: list[SessionItem] = Field(description="One entry per stored session")
    count: int = Field(description="Number of sessions")
    container_id: str


class UploadResponse(CamelModel):
    session_id: str
    uploaded: bool
    size: int = Field(description="Bytes written")
    container_id: str


class DeleteResponse(CamelModel):
    session_id: str
    deleted: bool
    container_id: str


class BulkDeleteRequest(CamelModel):
    session_ids: list[str] = Field(description="Sessions to delete")


class FailedDeletionItem(CamelModel):
    session_id: str
    reason: str


class BulkDeleteResponse(CamelModel):
    deleted_count: int
    session_ids: list[str] = Field(description="Sessions that were deleted")
    failed: list[FailedDeletionItem] = Field(description="Sessions that could not be deleted")
    container_id: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@contextmanager
def operation(name: str, session_id: Optional[str] = None) -> Iterator[None]:
    """
    Turn storage failures into `{name}_failed` error responses.

    Invalid ids and configuration errors pass through to their own handlers.
    """
    try:
        yield
    except (InvalidSessionIdError, SessionNotFoundError, ConfigurationError, ApiError):
        raise
    except TransferError as e:
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "transfer_failed", str(e)) from e
    except (SessionStoreError, StorageError) as e:
        logger.error(
            "Session operation failed",
            extra={"operation": name, "session_id": session_id, "error": str(e)},
        )
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, f"{name}_failed", str(e)) from e


def _parse_content_length(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        length = int(value)
    except ValueError:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "invalid_request", "Invalid Content-Length header")
    if length < 0:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "invalid_request", "Invalid Content-Length header")
    return length


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/bulk-delete",
    response_model=BulkDeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete several sessions",
    description="Returns 207 with the failed ids when some deletions fail",
    responses={207: {"model": BulkDeleteResponse, "description": "Partial failure"}},
)
async def bulk_delete_sessions(
    request: BulkDeleteRequest,
    orchestrator: OrchestratorDep,
    container_id: ContainerIdDep,
):
    with operation("bulk_delete"):
        result = await orchestrator.delete_many(request.session_ids)

    response = BulkDeleteResponse(
        deleted_count=len(result.deleted),
        session_ids=result.deleted,
        failed=[
            FailedDeletionItem(session_id=f.session_id, reason=f.reason)
            for f in result.failed
        ],
        container_id=container_id,
    )
    if result.ok:
        return response

    return JSONResponse(
        status_code=status.HTTP_207_MULTI_STATUS,
        content=response.model_dump(by_alias=True),
    )


@router.post(
    "/{session_id}/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload a session tarball",
    description="Send the archive as the raw body (application/gzip or application/octet-stream)",
)
async def upload_session(
    session_id: str,
    request: Request,
    orchestrator: OrchestratorDep,
    container_id: ContainerIdDep,
    content_type: Annotated[Optional[str], Header()] = None,
    content_length: Annotated[Optional[str], Header()] = None,
) -> UploadResponse:
    """
    Store the request body as the session's artifact.

    The body is streamed to the store; success is only reported once the
    last byte is durable. A connection dropped mid-body leaves the previous
    artifact (or none) in place.
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type not in ACCEPTED_CONTENT_TYPES:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            "invalid_content_type",
            "Expected application/octet-stream or application/gzip content type",
        )
    length = _parse_content_length(content_length)

    with operation("upload", session_id):
        result = await orchestrator.upload(session_id, request.stream(), content_length=length)

    return UploadResponse(
        session_id=session_id,
        uploaded=True,
        size=result.size,
        container_id=container_id,
    )


@router.get(
    "/{session_id}/download",
    summary="Download a session tarball",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"application/gzip": {}}},
        404: {"description": "Session not found"},
    },
)
async def download_session(
    session_id: str,
    orchestrator: OrchestratorDep,
) -> StreamingResponse:
    with operation("download", session_id):
        download = await orchestrator.download(session_id)

    if download is None:
        raise SessionNotFoundError(session_id)

    headers = {"Content-Disposition": f'attachment; filename="{session_id}.tar.gz"'}
    if download.size is not None:
        headers["Content-Length"] = str(download.size)

    # A read failure mid-body aborts the connection, so the client sees a
    # short body against Content-Length rather than a silent truncation.
    return StreamingResponse(
        download.iter_chunks(),
        media_type="application/gzip",
        headers=headers,
        background=BackgroundTask(download.close),
    )


@router.get(
    "",
    response_model=SessionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List sessions",
)
async def list_sessions(
    orchestrator: OrchestratorDep,
    container_id: ContainerIdDep,
) -> SessionListResponse:
    with operation("list"):
        sessions = [
            SessionItem(
                session_id=record.session_id,
                created_at=record.created_at.isoformat(),
                last_modified=record.last_modified.isoformat(),
                size=record.size,
            )
            async for record in orchestrator.list_all()
        ]

    return SessionListResponse(
        sessions=sessions,
        count=len(sessions),
        container_id=container_id,
    )


@router.get(
    "/{session_id}",
    response_model=SessionMetadataResponse,
    status_code=status.HTTP_200_OK,
    summary="Get session metadata",
    responses={404: {"description": "Session not found"}},
)
async def get_session_metadata(
    session_id: str,
    orchestrator: OrchestratorDep,
    container_id: ContainerIdDep,
) -> SessionMetadataResponse:
    with operation("metadata", session_id):
        record = await orchestrator.get_metadata(session_id)

    if record is None:
        raise SessionNotFoundError(session_id)
    return SessionMetadataResponse.from_record(record, container_id)


@router.head(
    "/{session_id}",
    summary="Check whether a session exists",
    responses={404: {"description": "Session not found"}},
)
async def session_exists(
    session_id: str,
    orchestrator: OrchestratorDep,
) -> Response:
    try:
        exists = await orchestrator.exists(session_id)
    except InvalidSessionIdError:
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    except ConfigurationError:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    except (SessionStoreError, StorageError) as e:
        logger.error(
            "Session operation failed",
            extra={"operation": "exists", "session_id": session_id, "error": str(e)},
        )
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(status_code=status.HTTP_200_OK if exists else status.HTTP_404_NOT_FOUND)


@router.delete(
    "/{session_id}",
    response_model=DeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete a session",
    description="Deleting a session that does not exist succeeds",
)
async def delete_session(
    session_id: str,
    orchestrator: OrchestratorDep,
    container_id: ContainerIdDep,
) -> DeleteResponse:
    with operation("delete", session_id):
        await orchestrator.delete(session_id)

    return DeleteResponse(session_id=session_id, deleted=True, container_id=container_id)
