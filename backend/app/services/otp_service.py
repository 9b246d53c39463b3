"""
HD Notes Backend: OTP Service (Issuer + Verifier)
===================================================

What:  Passwordless authentication by emailed one-time code.
How:   request_code() stores a salted HMAC of a random code and emails the
       code; verify_code() checks a submission against the stored challenge
       and, on success, creates (signup) or loads (signin) the user and
       issues a session.
Who:   Called by the /api/auth routes.

Verification order (first failing check wins):

    ┌────────────┐   ┌──────────┐   ┌─────────┐   ┌───────────┐   ┌─────────┐   ┌─────────┐
    │ challenge? │──▶│ consumed?│──▶│ expired?│──▶│ attempt++ │──▶│ hash ok?│──▶│ consume │
    └────────────┘   └──────────┘   └─────────┘   │ > ceiling?│   └─────────┘   │  (CAS)  │
     no_challenge    already_        expired      └───────────┘    mismatch     └─────────┘
                     consumed                     too_many_attempts             already_consumed

Failed attempts are committed before the error propagates, otherwise the
request rollback would erase the attempt counter.

Policy constants (settings):
    code       6 digits from `secrets`
    storage    HMAC-SHA256(secret_key, "<salt>:<code>"), 16-byte random salt per challenge
    validity   otp_ttl_seconds (600)
    attempts   otp_max_attempts (5)
    resend     otp_resend_cooldown_seconds (30) per (email, purpose), registered or not
"""

import asyncio
import hashlib
import hmac
import logging
import math
import re
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import (
    AuthChallengeError,
    ConflictError,
    DatabaseError,
    RateLimitExceededError,
    ValidationError,
)
from app.models.otp_challenge import PURPOSE_SIGNIN, PURPOSE_SIGNUP, PURPOSES
from app.models.user import User
from app.services.credential_store import CredentialStore, credential_store
from app.services.mail_base import Notifier
from app.services.session_service import IssuedSession, SessionService, session_service
from app.timeutil import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)+$"
)

# Never produced by hash_code(), which returns hex only
UNUSABLE_HASH_PREFIX = "!"


def normalize_email(email: Optional[str]) -> str:
    """
    Strip and lower-case an address, validating its shape.

    Raises:
        ValidationError: empty or malformed address.
    """
    normalized = (email or "").strip().lower()
    if not normalized or len(normalized) > 320 or not EMAIL_PATTERN.match(normalized):
        raise ValidationError(message="Please enter a valid email address.", field="email")
    return normalized


@dataclass(frozen=True)
class IssuedCode:
    """
    Outcome of request_code().

    delivered:
        True   the notifier accepted the message
        False  dispatch exceeded the timeout and continues in the background
        None   nothing was sent (sign-in for an unregistered email; the
               stored challenge cannot be satisfied)
    """
    email: str
    purpose: str
    expires_at: datetime
    delivered: Optional[bool]


@dataclass(frozen=True)
class VerifiedLogin:
    user: User
    session: IssuedSession


class OtpService:
    """Issues and verifies one-time codes for signup and signin."""

    def __init__(
        self,
        notifier: Notifier,
        sessions: SessionService = session_service,
        store: CredentialStore = credential_store,
        clock: Clock = utcnow,
        *,
        ttl_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        resend_cooldown_seconds: Optional[int] = None,
        dispatch_timeout: Optional[float] = None,
        code_length: Optional[int] = None,
        secret_key: Optional[str] = None,
    ):
        self.notifier = notifier
        self.sessions = sessions
        self.store = store
        self.clock = clock
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.otp_ttl_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.otp_max_attempts
        self.resend_cooldown_seconds = (
            resend_cooldown_seconds
            if resend_cooldown_seconds is not None
            else settings.otp_resend_cooldown_seconds
        )
        self.dispatch_timeout = (
            dispatch_timeout if dispatch_timeout is not None else settings.mail_dispatch_timeout_seconds
        )
        self.code_length = code_length or settings.otp_length
        self._key = (secret_key or settings.secret_key).encode("utf-8")
        # Deliveries that outlived the request timeout
        self._background: Set[asyncio.Task] = set()

    # ── Code primitives ───────────────────────────────────────────────────

    def generate_code(self) -> str:
        return f"{secrets.randbelow(10 ** self.code_length):0{self.code_length}d}"

    def hash_code(self, code: str, salt: str) -> str:
        return hmac.new(self._key, f"{salt}:{code}".encode("utf-8"), hashlib.sha256).hexdigest()

    # ── Issuer ────────────────────────────────────────────────────────────

    async def request_code(
        self,
        db: AsyncSession,
        email: str,
        purpose: str,
        full_name: Optional[str] = None,
        date_of_birth: Optional[date] = None,
    ) -> IssuedCode:
        """
        Issue a new one-time code for (email, purpose) and email it.

        The challenge is committed before dispatch, so a code that reaches
        the user is always verifiable.

        Raises:
            ValidationError:            malformed email, or signup without profile
            ConflictError:              signup for an already registered email
            RateLimitExceededError:     previous code issued within the cooldown
            NotificationDeliveryError:  code stored but the email could not be sent
            DatabaseError:              the challenge could not be stored
        """
        purpose = self._check_purpose(purpose)
        email = normalize_email(email)
        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        existing_user = await self.store.get_user_by_email(db, email)
        if purpose == PURPOSE_SIGNUP:
            full_name, date_of_birth = self._check_profile(full_name, date_of_birth, now)
            if existing_user is not None:
                raise ConflictError(
                    message="An account with this email already exists. Please sign in.",
                    context={"purpose": purpose},
                )

        await self._enforce_cooldown(db, email, purpose, now)

        # Sign-in for an unregistered email stores a challenge no code can
        # satisfy and sends nothing. Cooldown and response match a real one.
        unregistered = purpose == PURPOSE_SIGNIN and existing_user is None
        salt = secrets.token_hex(16)
        if unregistered:
            code = None
            code_hash = UNUSABLE_HASH_PREFIX + secrets.token_hex(31)
        else:
            code = self.generate_code()
            code_hash = self.hash_code(code, salt)
        try:
            await self.store.upsert_challenge(
                db,
                email=email,
                purpose=purpose,
                code_hash=code_hash,
                salt=salt,
                issued_at=now,
                expires_at=expires_at,
                full_name=full_name if purpose == PURPOSE_SIGNUP else None,
                date_of_birth=date_of_birth if purpose == PURPOSE_SIGNUP else None,
            )
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Could not store %s challenge: %s", purpose, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not create a verification code. Please try again.",
                context={"purpose": purpose, "error_type": type(e).__name__},
            ) from e

        if unregistered:
            logger.info("Sign-in code requested for an unregistered email; nothing sent")
            return IssuedCode(email=email, purpose=purpose, expires_at=expires_at, delivered=None)

        logger.info("Issued %s code (expires %s)", purpose, expires_at.isoformat())
        delivered = await self._dispatch(email, code, purpose)
        return IssuedCode(email=email, purpose=purpose, expires_at=expires_at, delivered=delivered)

    async def _enforce_cooldown(
        self, db: AsyncSession, email: str, purpose: str, now: datetime
    ) -> None:
        if not self.resend_cooldown_seconds:
            return
        existing = await self.store.get_challenge(db, email, purpose)
        if existing is None:
            return
        elapsed = (now - as_utc(existing.issued_at)).total_seconds()
        if elapsed < self.resend_cooldown_seconds:
            wait = max(1, math.ceil(self.resend_cooldown_seconds - elapsed))
            raise RateLimitExceededError(
                retry_after=wait,
                message=f"Please wait {wait} seconds before requesting another code.",
                context={"purpose": purpose},
            )

    async def _dispatch(self, email: str, code: str, purpose: str) -> bool:
        """
        Hand the code to the notifier, waiting at most `dispatch_timeout`.

        NotificationDeliveryError from the notifier propagates. On timeout the
        send keeps running in the background and False is returned.
        """
        task = asyncio.ensure_future(
            self.notifier.send_code(email, code, purpose, self.ttl_seconds)
        )
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.dispatch_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Email dispatch exceeded %.1fs; continuing in background",
                self.dispatch_timeout,
            )
            self._background.add(task)
            task.add_done_callback(self._on_background_done)
            return False
        return True

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background email delivery failed: %s", exc)

    # ── Verifier ──────────────────────────────────────────────────────────

    async def verify_code(
        self,
        db: AsyncSession,
        email: str,
        purpose: str,
        code: str,
        full_name: Optional[str] = None,
        date_of_birth: Optional[date] = None,
    ) -> VerifiedLogin:
        """
        Check a submitted code and log the user in.

        Signup creates the user from the submitted profile, falling back to
        the profile given when the code was requested. Signin loads the
        existing user; a missing user is reported as no_challenge.

        Raises:
            ValidationError:     malformed email or incomplete signup profile
            AuthChallengeError:  no_challenge, expired, mismatch,
                                 already_consumed, too_many_attempts
            ConflictError:       signup for an email that was registered meanwhile
        """
        purpose = self._check_purpose(purpose)
        email = normalize_email(email)
        submitted = (code or "").strip()

        challenge = await self.store.get_challenge(db, email, purpose)
        if challenge is None:
            raise AuthChallengeError(AuthChallengeError.NO_CHALLENGE)
        if challenge.consumed:
            raise AuthChallengeError(AuthChallengeError.ALREADY_CONSUMED)

        now = self.clock()
        if now > as_utc(challenge.expires_at):
            raise AuthChallengeError(AuthChallengeError.EXPIRED)

        profile: Tuple[Optional[str], Optional[date]] = (None, None)
        if purpose == PURPOSE_SIGNUP:
            profile = self._check_profile(
                full_name or challenge.full_name,
                date_of_birth or challenge.date_of_birth,
                now,
            )

        attempts = await self.store.register_attempt(db, challenge.id)
        if attempts is None:
            raise AuthChallengeError(AuthChallengeError.ALREADY_CONSUMED)
        if attempts > self.max_attempts:
            await db.commit()
            logger.warning("%s challenge locked after %d attempts", purpose, attempts)
            raise AuthChallengeError(
                AuthChallengeError.TOO_MANY_ATTEMPTS, context={"attempts": attempts}
            )

        if not hmac.compare_digest(self.hash_code(submitted, challenge.salt), challenge.code_hash):
            await db.commit()
            raise AuthChallengeError(AuthChallengeError.MISMATCH, context={"attempts": attempts})

        if not await self.store.consume_challenge(db, challenge.id, challenge.code_hash):
            raise AuthChallengeError(AuthChallengeError.ALREADY_CONSUMED)

        if purpose == PURPOSE_SIGNUP:
            if await self.store.get_user_by_email(db, email) is not None:
                raise ConflictError(
                    message="An account with this email already exists. Please sign in.",
                )
            full_name, date_of_birth = profile
            user = await self.store.create_user(
                db,
                email=email,
                full_name=full_name,
                date_of_birth=date_of_birth,
                created_at=now,
            )
            logger.info("User %s registered", user.id)
        else:
            user = await self.store.get_user_by_email(db, email)
            if user is None:
                raise AuthChallengeError(
                    AuthChallengeError.NO_CHALLENGE, context={"cause": "no_such_user"}
                )

        issued = await self.sessions.issue(db, user.id)
        return VerifiedLogin(user=user, session=issued)

    # ── Validation helpers ────────────────────────────────────────────────

    @staticmethod
    def _check_purpose(purpose: str) -> str:
        if purpose not in PURPOSES:
            raise ValidationError(message=f"Unknown purpose '{purpose}'", field="purpose")
        return purpose

    @staticmethod
    def _check_profile(
        full_name: Optional[str], date_of_birth: Optional[date], now: datetime
    ) -> Tuple[str, date]:
        name = (full_name or "").strip()
        if not name:
            raise ValidationError(message="Full name is required to sign up.", field="fullName")
        if date_of_birth is None:
            raise ValidationError(message="Date of birth is required to sign up.", field="dateOfBirth")
        if date_of_birth > now.date():
            raise ValidationError(
                message="Date of birth cannot be in the future.", field="dateOfBirth"
            )
        return name, date_of_birth


__all__ = [
    "IssuedCode",
    "OtpService",
    "PURPOSE_SIGNIN",
    "PURPOSE_SIGNUP",
    "VerifiedLogin",
    "normalize_email",
]
