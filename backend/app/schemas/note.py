"""
HD Notes Backend: Note Schemas
================================

What:  API contract for /api/notes.
Who:   The SPA dashboard reads `notes` from the list response and `note`
       from create/update responses.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.schemas.common import CamelModel

SORT_OPTIONS = {"created_at_desc", "created_at_asc"}


class NoteWriteRequest(CamelModel):
    """Body of POST /api/notes and PUT /api/notes/{id}."""
    title: str = Field(max_length=200)
    content: str = Field(max_length=100_000)


class NoteResponse(CamelModel):
    id: uuid.UUID = Field(description="Note identifier")
    title: str
    content: str
    created_at: datetime = Field(description="Creation time (UTC ISO 8601)")
    updated_at: datetime = Field(description="Last edit time (UTC ISO 8601)")


class NoteEnvelope(CamelModel):
    note: NoteResponse


class NoteMutationResponse(CamelModel):
    message: str
    note: NoteResponse


class NoteListResponse(CamelModel):
    """
    One page of the caller's notes.

    next_cursor is the created_at of the last item on this page; pass it
    back as `cursor` for the next page. Null when there are no more pages.
    """
    notes: List[NoteResponse] = Field(description="Notes on this page")
    total_count: int = Field(description="Total number of the caller's notes")
    next_cursor: Optional[str] = Field(default=None)
    has_more: bool

