"""
HD Notes Backend: Session Service
===================================

What:  Issues, resolves and revokes login sessions.
How:   A session credential is an opaque random token
       (`secrets.token_urlsafe(32)`, 256 bits). The store keys sessions by
       the token's SHA-256 digest; only the client ever holds the token.
Who:   OtpService (issue after a verified code), the session guard
       dependency (authenticate) and the logout route.

Resolution:
    no token                    → SessionError(no_credential)
    digest not in store         → SessionError(invalid_credential)
    now > expires_at            → SessionError(session_expired), row deleted
    otherwise                   → AuthContext(user_id, ...)
"""

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import SessionError
from app.services.credential_store import CredentialStore, credential_store
from app.timeutil import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """A freshly minted credential. `token` goes into the cookie."""
    token: str
    user_id: uuid.UUID
    expires_at: datetime


@dataclass(frozen=True)
class AuthContext:
    """The identity a protected request runs as."""
    user_id: uuid.UUID
    session_id: str
    expires_at: datetime


def digest_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionService:
    def __init__(
        self,
        store: CredentialStore = credential_store,
        clock: Clock = utcnow,
        ttl_seconds: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds

    async def issue(self, db: AsyncSession, user_id: uuid.UUID) -> IssuedSession:
        now = self.clock()
        token = secrets.token_urlsafe(32)
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        await self.store.create_session(
            db,
            session_id=digest_token(token),
            user_id=user_id,
            issued_at=now,
            expires_at=expires_at,
        )
        logger.info("Session issued for user %s (expires %s)", user_id, expires_at.isoformat())
        return IssuedSession(token=token, user_id=user_id, expires_at=expires_at)

    async def authenticate(self, db: AsyncSession, credential: Optional[str]) -> AuthContext:
        """
        Resolve a session credential to the user it authorizes.

        Raises:
            SessionError: missing, unknown or expired credential.
        """
        if not credential:
            raise SessionError(SessionError.NO_CREDENTIAL)

        session_id = digest_token(credential)
        record = await self.store.get_session(db, session_id)
        if record is None:
            raise SessionError(SessionError.INVALID_CREDENTIAL)

        expires_at = as_utc(record.expires_at)
        if self.clock() > expires_at:
            await self.store.delete_session(db, session_id)
            # The guard's exception is about to roll the request back; make
            # the eviction stick regardless.
            await db.commit()
            raise SessionError(SessionError.EXPIRED, context={"user_id": str(record.user_id)})

        return AuthContext(user_id=record.user_id, session_id=session_id, expires_at=expires_at)

    async def logout(self, db: AsyncSession, credential: Optional[str]) -> bool:
        """Revoke the session behind `credential`. Returns False when there was none."""
        if not credential:
            return False
        removed = await self.store.delete_session(db, digest_token(credential))
        if removed:
            logger.info("Session revoked")
        return removed


session_service = SessionService()
