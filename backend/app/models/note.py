"""
HD Notes Backend: Note Model
==============================

What:  The `notes` table: free-text notes, each owned by exactly one user.
Who:   NoteService; every query it runs is filtered by `user_id`.

Index on (user_id, created_at DESC) serves the only listing pattern:
"my notes, newest first", paginated by created_at cursor.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.timeutil import utcnow


class Note(Base):
    """
    A user's note.

    Lifecycle:
        1. Created by POST /api/notes (created_at = updated_at = now)
        2. Edited by PUT /api/notes/{id} (updated_at bumped)
        3. Deleted by DELETE /api/notes/{id}, or with its owner (ON DELETE CASCADE)
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owner; only this user may read or modify the note",
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_notes_user_created_at", "user_id", created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, user_id={self.user_id}, title='{self.title[:20]}')>"
