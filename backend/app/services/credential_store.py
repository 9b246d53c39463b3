"""
HD Notes Backend: Credential Store
====================================

What:  Every database operation behind authentication: users, one-time-code
       challenges and sessions.
How:   Each operation that must be race-free is a single SQL statement:

           issue code      INSERT ... ON CONFLICT (email, purpose) DO UPDATE
           count attempt   UPDATE ... SET attempt_count = attempt_count + 1 RETURNING
           consume code    UPDATE ... WHERE consumed = false AND code_hash = :h RETURNING
           revoke session  DELETE ... RETURNING

       Two concurrent issuers therefore leave exactly one challenge (last
       writer wins), and two concurrent verifiers cannot both consume one.
Who:   OtpService, SessionService and the sweeper.

The store is stateless; callers pass the request's AsyncSession.
Supported dialects: PostgreSQL (production) and SQLite (tests, local).
"""

import logging
import uuid
from datetime import date, datetime
from typing import Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, DatabaseError
from app.models.otp_challenge import OtpChallenge
from app.models.session import UserSession
from app.models.user import User

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class CredentialStore:
    """Persistence for users, OTP challenges and sessions."""

    # ── Users ─────────────────────────────────────────────────────────────

    async def get_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def get_user(self, db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
        return await db.get(User, user_id)

    async def create_user(
        self,
        db: AsyncSession,
        email: str,
        full_name: str,
        date_of_birth: date,
        created_at: datetime,
    ) -> User:
        """
        Insert a user. The unique index on email is the final arbiter when two
        signups for the same address race.

        Raises:
            ConflictError: a user with this email already exists.
        """
        user = User(
            email=email,
            full_name=full_name,
            date_of_birth=date_of_birth,
            created_at=created_at,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError(
                message="An account with this email already exists.",
                context={"constraint": "users.email"},
            ) from e
        return user

    # ── OTP Challenges ────────────────────────────────────────────────────

    async def get_challenge(
        self, db: AsyncSession, email: str, purpose: str
    ) -> Optional[OtpChallenge]:
        # populate_existing: the row may have been rewritten by a bulk
        # statement earlier in this session
        result = await db.execute(
            select(OtpChallenge)
            .where(OtpChallenge.email == email, OtpChallenge.purpose == purpose)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_challenge(
        self,
        db: AsyncSession,
        *,
        email: str,
        purpose: str,
        code_hash: str,
        salt: str,
        issued_at: datetime,
        expires_at: datetime,
        full_name: Optional[str] = None,
        date_of_birth: Optional[date] = None,
    ) -> None:
        """
        Store a fresh challenge for (email, purpose), superseding any previous
        one: new hash and salt, attempt counter reset, consumed cleared.
        """
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise DatabaseError(context={"unsupported_dialect": dialect})

        values = {
            "code_hash": code_hash,
            "salt": salt,
            "issued_at": issued_at,
            "expires_at": expires_at,
            "consumed": False,
            "attempt_count": 0,
            "full_name": full_name,
            "date_of_birth": date_of_birth,
        }
        stmt = insert(OtpChallenge).values(
            id=uuid.uuid4(), email=email, purpose=purpose, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["email", "purpose"],
            set_={name: getattr(stmt.excluded, name) for name in values},
        )
        await db.execute(stmt)

    async def register_attempt(self, db: AsyncSession, challenge_id: uuid.UUID) -> Optional[int]:
        """
        Atomically count one verification attempt.

        Returns the new attempt count, or None when the challenge is gone or
        already consumed.
        """
        result = await db.execute(
            update(OtpChallenge)
            .where(OtpChallenge.id == challenge_id, OtpChallenge.consumed.is_(False))
            .values(attempt_count=OtpChallenge.attempt_count + 1)
            .returning(OtpChallenge.attempt_count)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def consume_challenge(
        self, db: AsyncSession, challenge_id: uuid.UUID, code_hash: str
    ) -> bool:
        """
        Compare-and-swap consumed False → True.

        The hash is part of the predicate so a code that was superseded
        between read and write cannot be consumed. Returns True for the one
        caller that flipped the flag.
        """
        result = await db.execute(
            update(OtpChallenge)
            .where(
                OtpChallenge.id == challenge_id,
                OtpChallenge.consumed.is_(False),
                OtpChallenge.code_hash == code_hash,
            )
            .values(consumed=True)
            .returning(OtpChallenge.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    # ── Sessions ──────────────────────────────────────────────────────────

    async def create_session(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: uuid.UUID,
        issued_at: datetime,
        expires_at: datetime,
    ) -> UserSession:
        record = UserSession(
            id=session_id,
            user_id=user_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        db.add(record)
        await db.flush()
        return record

    async def get_session(self, db: AsyncSession, session_id: str) -> Optional[UserSession]:
        result = await db.execute(
            select(UserSession)
            .where(UserSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def delete_session(self, db: AsyncSession, session_id: str) -> bool:
        result = await db.execute(
            delete(UserSession)
            .where(UserSession.id == session_id)
            .returning(UserSession.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    # ── Housekeeping ──────────────────────────────────────────────────────

    async def delete_expired(self, db: AsyncSession, now: datetime) -> Tuple[int, int]:
        """
        Remove challenges and sessions whose expiry has passed.

        Returns (challenges_deleted, sessions_deleted).
        """
        challenges = await db.execute(
            delete(OtpChallenge)
            .where(OtpChallenge.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        sessions = await db.execute(
            delete(UserSession)
            .where(UserSession.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return challenges.rowcount or 0, sessions.rowcount or 0


credential_store = CredentialStore()
