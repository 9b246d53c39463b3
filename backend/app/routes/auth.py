"""
HD Notes Backend: Authentication Route Handlers
=================================================

What:  Passwordless signup / signin by emailed one-time code, logout and the
       current user's profile.
How:   Thin handlers over OtpService and SessionService. A successful verify
       sets the session cookie; logout and any session failure clear it.
Who:   The SPA's signup and signin pages and its app shell (profile).

Flow:
    send-otp ──▶ email with code ──▶ verify-otp ──▶ Set-Cookie: session_token
                                                         │
                                   GET /api/auth/profile ◀┘ (cookie sent back)

Sign-in never reveals whether an email is registered: send-otp answers the
same for every address and every rejected code is reported as
`invalid_code`.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session
from app.dependencies import (
    get_otp_service,
    get_session_service,
    read_credential,
    require_session,
)
from app.exceptions import AuthChallengeError, SessionError
from app.models.otp_challenge import PURPOSE_SIGNIN, PURPOSE_SIGNUP
from app.schemas.auth import (
    AuthResponse,
    OtpSentResponse,
    ProfileResponse,
    SigninSendOtpRequest,
    SigninVerifyOtpRequest,
    SignupSendOtpRequest,
    SignupVerifyOtpRequest,
    UserResponse,
)
from app.schemas.common import ErrorResponse, MessageResponse
from app.services.credential_store import credential_store
from app.services.otp_service import OtpService
from app.services.session_service import AuthContext, IssuedSession, SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

CODE_SENT_MESSAGE = "If the email can receive it, a verification code is on its way."


# ── Cookie helpers ────────────────────────────────────────────────────────

def _cookie_settings() -> Dict[str, Any]:
    return {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": settings.cookie_samesite,
        "path": "/",
    }


def set_session_cookie(response: Response, session: IssuedSession) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.token,
        max_age=settings.session_ttl_seconds,
        **_cookie_settings(),
    )


def clear_session_cookie(response: Response) -> None:
    # Browsers only drop the cookie when the attributes match the ones it was set with
    response.delete_cookie(settings.session_cookie_name, **_cookie_settings())


# ── Signup ────────────────────────────────────────────────────────────────

@router.post(
    "/signup/send-otp",
    response_model=OtpSentResponse,
    responses={
        400: {"description": "Invalid email or incomplete profile", "model": ErrorResponse},
        409: {"description": "Email already registered", "model": ErrorResponse},
        429: {"description": "Resend cooldown active", "model": ErrorResponse},
        503: {"description": "Email could not be sent", "model": ErrorResponse},
    },
    summary="Email a signup verification code",
)
async def signup_send_otp(
    body: SignupSendOtpRequest,
    db: AsyncSession = Depends(get_db_session),
    otp: OtpService = Depends(get_otp_service),
) -> OtpSentResponse:
    await otp.request_code(
        db,
        email=body.email,
        purpose=PURPOSE_SIGNUP,
        full_name=body.full_name,
        date_of_birth=body.date_of_birth,
    )
    return OtpSentResponse(message=CODE_SENT_MESSAGE, expires_in_seconds=otp.ttl_seconds)


@router.post(
    "/signup/verify-otp",
    response_model=AuthResponse,
    responses={
        400: {"description": "Invalid email or incomplete profile", "model": ErrorResponse},
        401: {"description": "Code rejected; `error` carries the reason", "model": ErrorResponse},
        409: {"description": "Email already registered", "model": ErrorResponse},
    },
    summary="Verify a signup code, create the account and start a session",
)
async def signup_verify_otp(
    body: SignupVerifyOtpRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    otp: OtpService = Depends(get_otp_service),
) -> AuthResponse:
    login = await otp.verify_code(
        db,
        email=body.email,
        purpose=PURPOSE_SIGNUP,
        code=body.code,
        full_name=body.full_name,
        date_of_birth=body.date_of_birth,
    )
    set_session_cookie(response, login.session)
    return AuthResponse(
        message="Account created successfully",
        user=UserResponse.model_validate(login.user),
    )


# ── Signin ────────────────────────────────────────────────────────────────

@router.post(
    "/signin/send-otp",
    response_model=OtpSentResponse,
    responses={
        400: {"description": "Invalid email", "model": ErrorResponse},
        429: {"description": "Resend cooldown active", "model": ErrorResponse},
        503: {"description": "Email could not be sent", "model": ErrorResponse},
    },
    summary="Email a signin code",
    description="Responds identically whether or not the email is registered.",
)
async def signin_send_otp(
    body: SigninSendOtpRequest,
    db: AsyncSession = Depends(get_db_session),
    otp: OtpService = Depends(get_otp_service),
) -> OtpSentResponse:
    await otp.request_code(db, email=body.email, purpose=PURPOSE_SIGNIN)
    return OtpSentResponse(message=CODE_SENT_MESSAGE, expires_in_seconds=otp.ttl_seconds)


@router.post(
    "/signin/verify-otp",
    response_model=AuthResponse,
    responses={
        400: {"description": "Invalid email", "model": ErrorResponse},
        401: {"description": "Invalid or expired code", "model": ErrorResponse},
    },
    summary="Verify a signin code and start a session",
)
async def signin_verify_otp(
    body: SigninVerifyOtpRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    otp: OtpService = Depends(get_otp_service),
) -> AuthResponse:
    try:
        login = await otp.verify_code(db, email=body.email, purpose=PURPOSE_SIGNIN, code=body.code)
    except AuthChallengeError as e:
        logger.info("Sign-in code rejected: %s", e.reason)
        raise AuthChallengeError(
            AuthChallengeError.INVALID_CODE, context={"cause": e.reason}
        ) from e
    set_session_cookie(response, login.session)
    return AuthResponse(
        message="Signed in successfully",
        user=UserResponse.model_validate(login.user),
    )


# ── Session ───────────────────────────────────────────────────────────────

@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="End the current session",
    description="Always succeeds; the session cookie is cleared either way.",
)
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    sessions: SessionService = Depends(get_session_service),
) -> MessageResponse:
    await sessions.logout(db, read_credential(request))
    clear_session_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/profile",
    response_model=ProfileResponse,
    responses={401: {"description": "Not signed in", "model": ErrorResponse}},
    summary="The signed-in user's profile",
)
async def profile(
    auth: AuthContext = Depends(require_session),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileResponse:
    user = await credential_store.get_user(db, auth.user_id)
    if user is None:
        raise SessionError(SessionError.INVALID_CREDENTIAL)
    return ProfileResponse(user=UserResponse.model_validate(user))
