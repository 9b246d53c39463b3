"""
HD Notes Backend: Note Service
================================

What:  Owner-scoped CRUD for notes.
How:   Every query is filtered by the authenticated user's id; a note owned
       by someone else is indistinguishable from one that does not exist.
Who:   Called by the /api/notes route handlers with the AuthContext user id.

Listing (GET /api/notes):
    ┌────────────────────┐    ┌──────────────────────┐    ┌──────────────┐
    │ WHERE user_id = me │───▶│ created_at < cursor  │───▶│ LIMIT n + 1  │
    │                    │    │ (> for ascending)    │    │ has_more?    │
    └────────────────────┘    └──────────────────────┘    └──────────────┘

    Served by idx_notes_user_created_at. The extra row decides has_more
    without a second query; total_count is a separate COUNT(*) for the owner.

NoteService is stateless apart from its clock; the database session is
passed in per call.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, NotFoundError, ValidationError
from app.models.note import Note
from app.schemas.note import SORT_OPTIONS, NoteListResponse, NoteResponse
from app.timeutil import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_PAGE_SIZE = 100


def _to_response(note: Note) -> NoteResponse:
    return NoteResponse(
        id=note.id,
        title=note.title,
        content=note.content,
        created_at=as_utc(note.created_at),
        updated_at=as_utc(note.updated_at),
    )


def _clean_fields(title: Optional[str], content: Optional[str]) -> Tuple[str, str]:
    title = (title or "").strip()
    content = (content or "").strip()
    if not title:
        raise ValidationError(message="Title is required.", field="title")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            message=f"Title must be at most {MAX_TITLE_LENGTH} characters.", field="title"
        )
    if not content:
        raise ValidationError(message="Content is required.", field="content")
    return title, content


class NoteService:
    """
    Business logic for notes.

    Error Handling Strategy:
        Not-found and validation failures raise their own exceptions.
        SQLAlchemy errors are logged and wrapped in DatabaseError so the
        client only ever sees a generic message.
    """

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    async def list_notes(
        self,
        db: AsyncSession,
        owner_id: UUID,
        limit: int = 20,
        cursor: Optional[str] = None,
        sort: str = "created_at_desc",
    ) -> NoteListResponse:
        """
        One page of the owner's notes, newest first by default.

        Args:
            owner_id: authenticated user id
            limit:    page size, clamped to 1..100
            cursor:   ISO created_at of the last note on the previous page
            sort:     'created_at_desc' or 'created_at_asc'

        Raises:
            ValidationError: unknown sort option or malformed cursor
            DatabaseError:   query failed
        """
        if sort not in SORT_OPTIONS:
            raise ValidationError(
                message=f"sort must be one of: {', '.join(sorted(SORT_OPTIONS))}",
                field="sort",
            )
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        cursor_dt: Optional[datetime] = None
        if cursor:
            try:
                cursor_dt = as_utc(datetime.fromisoformat(cursor))
            except ValueError as e:
                raise ValidationError(message="Invalid pagination cursor.", field="cursor") from e

        query = select(Note).where(Note.user_id == owner_id)
        if cursor_dt is not None:
            if sort == "created_at_desc":
                query = query.where(Note.created_at < cursor_dt)
            else:
                query = query.where(Note.created_at > cursor_dt)

        if sort == "created_at_asc":
            query = query.order_by(asc(Note.created_at), asc(Note.id))
        else:
            query = query.order_by(desc(Note.created_at), desc(Note.id))
        query = query.limit(limit + 1)

        try:
            result = await db.execute(query)
            notes = list(result.scalars().all())

            count_result = await db.execute(
                select(func.count(Note.id)).where(Note.user_id == owner_id)
            )
            total_count = count_result.scalar() or 0
        except SQLAlchemyError as e:
            logger.error("Database error listing notes: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve notes. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        has_more = len(notes) > limit
        if has_more:
            notes = notes[:limit]

        next_cursor = None
        if has_more and notes:
            next_cursor = as_utc(notes[-1].created_at).isoformat()

        return NoteListResponse(
            notes=[_to_response(note) for note in notes],
            total_count=total_count,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def get_note(self, db: AsyncSession, owner_id: UUID, note_id: UUID) -> NoteResponse:
        """
        Raises:
            NotFoundError: no such note for this owner (→ 404)
        """
        note = await self._load_owned(db, owner_id, note_id)
        return _to_response(note)

    async def create_note(
        self, db: AsyncSession, owner_id: UUID, title: str, content: str
    ) -> NoteResponse:
        title, content = _clean_fields(title, content)
        now = self.clock()
        note = Note(
            user_id=owner_id,
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
        )
        db.add(note)
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error creating note: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not save the note. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e
        logger.info("Note %s created by user %s", note.id, owner_id)
        return _to_response(note)

    async def update_note(
        self, db: AsyncSession, owner_id: UUID, note_id: UUID, title: str, content: str
    ) -> NoteResponse:
        """Replace title and content and bump updated_at."""
        title, content = _clean_fields(title, content)
        note = await self._load_owned(db, owner_id, note_id)
        note.title = title
        note.content = content
        note.updated_at = self.clock()
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error updating note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not update the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e
        return _to_response(note)

    async def delete_note(self, db: AsyncSession, owner_id: UUID, note_id: UUID) -> None:
        note = await self._load_owned(db, owner_id, note_id)
        try:
            await db.delete(note)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error deleting note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e
        logger.info("Note %s deleted by user %s", note_id, owner_id)

    async def _load_owned(self, db: AsyncSession, owner_id: UUID, note_id: UUID) -> Note:
        try:
            result = await db.execute(
                select(Note).where(Note.id == note_id, Note.user_id == owner_id)
            )
            note = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e

        if note is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        return note


# Stateless apart from the clock; shared by all requests
note_service = NoteService()
