"""
Catalog import API routes.

Upload a file, review and edit the draft, validate, then commit or
discard. Row-level problems come back as data on the session (`issues`);
only unusable files, lock contention and invalid state transitions are
returned as errors.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse, Response
import structlog

from exceptions import AppError
from models.actor import Actor
from models.import_session import (
    DraftPatch,
    ImportSession,
    ImportSessionListResponse,
    ImportSessionStatus,
    ImportSessionSummary,
)
from routes.dependencies import get_current_actor
from services.import_pipeline_service import get_import_pipeline_service
from services.import_report_service import REPORT_CONTENT_TYPES

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ROUTES
# ===================

@router.post("/parse", response_model=ImportSession, status_code=201)
async def parse_import(
    file: UploadFile = File(..., description="CSV/TSV file or ZIP archive"),
    entity_type: str = Form(..., description="category, item, modifier_group, modifier or size"),
    scope_id: str = Form(..., description="Business to import into"),
    actor: Actor = Depends(get_current_actor),
):
    """
    Upload a file and open an import session.

    The draft is validated immediately; the session comes back as
    `validated` when it has no errors and `draft` otherwise.
    """
    try:
        content = await file.read()
        service = get_import_pipeline_service()
        return service.parse(
            actor,
            content,
            entity_type,
            scope_id,
            filename=file.filename,
        )
    except Exception as e:
        return handle_error(e)


@router.get("/sessions", response_model=ImportSessionListResponse)
async def list_sessions(
    scope_id: Optional[str] = Query(None, description="Filter by business"),
    status: Optional[ImportSessionStatus] = Query(None, description="Filter by status"),
    actor: Actor = Depends(get_current_actor),
):
    """List import sessions (without draft payloads), newest first."""
    try:
        service = get_import_pipeline_service()
        sessions = service.list_sessions(actor, scope_id=scope_id, status=status)
        return ImportSessionListResponse(
            data=[ImportSessionSummary.from_session(s) for s in sessions],
            total=len(sessions),
        )
    except Exception as e:
        return handle_error(e)


@router.get("/sessions/{session_id}", response_model=ImportSession)
async def get_session(session_id: str, actor: Actor = Depends(get_current_actor)):
    """Get one session with its draft and issues."""
    try:
        return get_import_pipeline_service().get_session(actor, session_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/sessions/{session_id}/draft", response_model=ImportSession)
async def edit_draft(
    session_id: str,
    patch: DraftPatch,
    actor: Actor = Depends(get_current_actor),
):
    """
    Edit a session's draft.

    Applies field updates, then row removals, then new rows. The session
    returns to `draft` until it is validated again.
    """
    try:
        return get_import_pipeline_service().edit_draft(actor, session_id, patch)
    except Exception as e:
        return handle_error(e)


@router.post("/sessions/{session_id}/validate", response_model=ImportSession)
async def validate_session(session_id: str, actor: Actor = Depends(get_current_actor)):
    """Re-run validation and replace the session's issues."""
    try:
        return get_import_pipeline_service().validate(actor, session_id)
    except Exception as e:
        return handle_error(e)


@router.post("/sessions/{session_id}/commit", response_model=ImportSession)
async def commit_session(session_id: str, actor: Actor = Depends(get_current_actor)):
    """
    Commit a session's draft to the catalog.

    A failed write is reverted and reported in the session's errors
    (status stays `validated`); the commit can be retried.
    """
    try:
        return get_import_pipeline_service().commit(actor, session_id)
    except Exception as e:
        return handle_error(e)


@router.post("/sessions/{session_id}/discard", status_code=204)
async def discard_session(session_id: str, actor: Actor = Depends(get_current_actor)):
    """Discard an open session. Nothing is written to the catalog."""
    try:
        get_import_pipeline_service().discard(actor, session_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str, actor: Actor = Depends(get_current_actor)):
    """Delete a confirmed or discarded session from history."""
    try:
        get_import_pipeline_service().delete_session(actor, session_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


@router.delete("/sessions", status_code=204)
async def clear_history(
    scope_id: Optional[str] = Query(None, description="Only this business"),
    actor: Actor = Depends(get_current_actor),
):
    """Delete the caller's finished sessions."""
    try:
        deleted = get_import_pipeline_service().clear_history(actor, scope_id=scope_id)
        logger.info("import_history_cleared_via_api", actor_id=actor.id, deleted=deleted)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


@router.get("/sessions/{session_id}/report")
async def export_report(
    session_id: str,
    format: str = Query("csv", pattern="^(csv|xlsx)$", description="csv or xlsx"),
    actor: Actor = Depends(get_current_actor),
):
    """Download the session's errors and warnings."""
    try:
        content = get_import_pipeline_service().export_report(actor, session_id, fmt=format)
        return Response(
            content=content,
            media_type=REPORT_CONTENT_TYPES[format],
            headers={
                "Content-Disposition": f'attachment; filename="import_{session_id}_issues.{format}"'
            },
        )
    except Exception as e:
        return handle_error(e)
