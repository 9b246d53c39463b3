"""
HD Notes Backend: User Model
==============================

What:  The `users` table: one row per registered email address.
When:  Inserted by the OTP verifier on the first successful signup; read on
       signin and by the profile endpoint.

Emails are stored lower-cased and stripped, so the unique index is
effectively case-insensitive.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.timeutil import utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
        index=True,
        comment="Normalized (lower-case) email address",
    )

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)

    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
