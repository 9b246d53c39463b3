"""
HD Notes Backend: Notes Route Handlers
========================================

What:  CRUD for the signed-in user's notes.
How:   Every handler depends on require_session and passes the resolved
       user id to NoteService as the owner.
Who:   The SPA dashboard (list, create, delete) and note editor (get, update).

Caching:
    Note data is private and mutable: responses carry `Cache-Control:
    private, no-store`.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import require_session
from app.schemas.common import ErrorResponse, MessageResponse
from app.schemas.note import (
    NoteEnvelope,
    NoteListResponse,
    NoteMutationResponse,
    NoteWriteRequest,
)
from app.services.note_service import note_service
from app.services.session_service import AuthContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notes"])

_UNAUTHORIZED = {401: {"description": "Not signed in", "model": ErrorResponse}}
_NOT_FOUND = {404: {"description": "No such note for this user", "model": ErrorResponse}}


def _private(response: Response) -> None:
    response.headers["Cache-Control"] = "private, no-store"


@router.get(
    "/notes",
    response_model=NoteListResponse,
    responses={**_UNAUTHORIZED, 400: {"description": "Bad sort or cursor", "model": ErrorResponse}},
    summary="List the user's notes",
    description=(
        "Cursor-paginated, newest first by default. The total number of the "
        "user's notes is also returned in the X-Total-Count header."
    ),
)
async def list_notes(
    response: Response,
    limit: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    cursor: Optional[str] = Query(
        default=None,
        description="nextCursor from the previous page. Omit for the first page.",
    ),
    sort: str = Query(
        default="created_at_desc",
        description="'created_at_desc' (newest first) or 'created_at_asc' (oldest first)",
    ),
    auth: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db_session),
) -> NoteListResponse:
    """
    Example (infinite scroll):
        Page 1: GET /api/notes?limit=20
        Page 2: GET /api/notes?limit=20&cursor=2026-01-15T12:00:00+00:00
    """
    result = await note_service.list_notes(
        db, owner_id=auth.user_id, limit=limit, cursor=cursor, sort=sort
    )
    response.headers["X-Total-Count"] = str(result.total_count)
    _private(response)
    return result


@router.post(
    "/notes",
    response_model=NoteMutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**_UNAUTHORIZED, 400: {"description": "Blank title or content", "model": ErrorResponse}},
    summary="Create a note",
)
async def create_note(
    body: NoteWriteRequest,
    auth: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db_session),
) -> NoteMutationResponse:
    note = await note_service.create_note(
        db, owner_id=auth.user_id, title=body.title, content=body.content
    )
    return NoteMutationResponse(message="Note created successfully", note=note)


@router.get(
    "/notes/{note_id}",
    response_model=NoteEnvelope,
    responses={**_UNAUTHORIZED, **_NOT_FOUND},
    summary="Get one note",
)
async def get_note(
    note_id: UUID,
    response: Response,
    auth: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db_session),
) -> NoteEnvelope:
    note = await note_service.get_note(db, owner_id=auth.user_id, note_id=note_id)
    _private(response)
    return NoteEnvelope(note=note)


@router.put(
    "/notes/{note_id}",
    response_model=NoteMutationResponse,
    responses={
        **_UNAUTHORIZED,
        **_NOT_FOUND,
        400: {"description": "Blank title or content", "model": ErrorResponse},
    },
    summary="Replace a note's title and content",
)
async def update_note(
    note_id: UUID,
    body: NoteWriteRequest,
    auth: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db_session),
) -> NoteMutationResponse:
    note = await note_service.update_note(
        db, owner_id=auth.user_id, note_id=note_id, title=body.title, content=body.content
    )
    return NoteMutationResponse(message="Note updated successfully", note=note)


@router.delete(
    "/notes/{note_id}",
    response_model=MessageResponse,
    responses={**_UNAUTHORIZED, **_NOT_FOUND},
    summary="Delete a note",
)
async def delete_note(
    note_id: UUID,
    auth: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await note_service.delete_note(db, owner_id=auth.user_id, note_id=note_id)
    return MessageResponse(message="Note deleted successfully")
