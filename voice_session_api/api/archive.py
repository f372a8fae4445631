"""Archival status and manual retry endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from ..core import SessionController
from ..models import ArchiveStatusResponse, SessionRecord
from ..storage import Database, get_db
from .sessions import get_controller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/archive", tags=["archive"])


@router.get("/status", response_model=ArchiveStatusResponse)
async def get_archive_status(
    controller: SessionController = Depends(get_controller),
) -> ArchiveStatusResponse:
    """Get the caller's archival state, including the last archival error."""
    return ArchiveStatusResponse(archive=controller.reconciler.status())


@router.post("/retry", response_model=ArchiveStatusResponse)
async def retry_archive(
    controller: SessionController = Depends(get_controller),
) -> ArchiveStatusResponse:
    """Run the archival pipeline once more and wait for it to finish.

    Archives the conversation id reported by the last unarchived session.
    Without one, matches against that session's start time, or takes the most
    recent conversation not held by another user.
    """
    conversation_id = await controller.reconciler.schedule()
    if conversation_id:
        message = f"Archived conversation {conversation_id}"
    elif controller.reconciler.last_archive_error:
        message = "Archival failed"
    else:
        message = "Nothing to archive"
    logger.info(f"Manual archival for user {controller.user_id}: {message}")
    return ArchiveStatusResponse(archive=controller.reconciler.status(), message=message)


@router.get("/records", response_model=list[SessionRecord])
async def list_archived_sessions(
    controller: SessionController = Depends(get_controller),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Database = Depends(get_db),
) -> list[SessionRecord]:
    """List the caller's archived session records, newest first."""
    return await db.list_session_records(controller.user_id, limit=limit, offset=offset)
