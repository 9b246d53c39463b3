"""
HD Notes Backend: OTP Challenge Model
=======================================

What:  The `otp_challenges` table: the outstanding one-time code for an
       (email, purpose) pair.
How:   A unique constraint on (email, purpose) makes issuance an upsert:
       a new code overwrites the previous row, so at most one challenge per
       pair can ever be active.

Lifecycle:
    issued      consumed=False, attempt_count=0
    verifying   attempt_count incremented atomically on every submission
    consumed    consumed=True after the first matching submission
    exhausted   attempt_count > otp_max_attempts; rejected until re-issued
    expired     now > expires_at; rejected until re-issued, swept later

Only an HMAC of the code is stored (see OtpService.hash_code).
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.timeutil import utcnow

PURPOSE_SIGNUP = "signup"
PURPOSE_SIGNIN = "signin"
PURPOSES = (PURPOSE_SIGNUP, PURPOSE_SIGNIN)


class OtpChallenge(Base):
    __tablename__ = "otp_challenges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(String(320), nullable=False)

    purpose: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="signup or signin",
    )

    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    salt: Mapped[str] = mapped_column(String(32), nullable=False)

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    consumed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    attempt_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    # Pending profile submitted with a signup request
    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("email", "purpose", name="uq_otp_challenges_email_purpose"),
        Index("idx_otp_challenges_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OtpChallenge(email='{self.email}', purpose='{self.purpose}', "
            f"consumed={self.consumed}, attempts={self.attempt_count})>"
        )
