"""
HD Notes Backend: Request Dependencies
========================================

What:  FastAPI dependencies shared by the routers: service providers and the
       session guard.
How:   Routes declare `Depends(require_session)`; when the guard raises, the
       handler never runs and the SessionError handler answers 401.
Who:   routes/auth.py, routes/notes.py. Tests replace the providers through
       `app.dependency_overrides`.

Credential lookup order:
    1. Cookie `settings.session_cookie_name` (browser clients)
    2. `Authorization: Bearer <token>` header (API clients)
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session
from app.services.mail_base import Notifier
from app.services.mail_service import build_notifier
from app.services.otp_service import OtpService
from app.services.session_service import AuthContext, SessionService, session_service


@lru_cache
def get_notifier() -> Notifier:
    return build_notifier()


def get_session_service() -> SessionService:
    return session_service


@lru_cache
def _default_otp_service() -> OtpService:
    return OtpService(notifier=get_notifier(), sessions=session_service)


def get_otp_service() -> OtpService:
    return _default_otp_service()


def read_credential(request: Request) -> Optional[str]:
    """The raw session token carried by the request, if any."""
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    scheme, _, value = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


async def require_session(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    sessions: SessionService = Depends(get_session_service),
) -> AuthContext:
    """
    Session guard for protected routes.

    Raises:
        SessionError: no credential, unknown credential or expired session.
    """
    context = await sessions.authenticate(db, read_credential(request))
    request.state.user_id = context.user_id
    return context
