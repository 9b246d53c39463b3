"""
HD Notes Backend: Custom Exception Hierarchy
==============================================

What:  Application exceptions carrying a user-safe message and a private
       context dict for logs.
How:   Services raise them; global handlers in main.py turn them into the
       uniform `{error, message, requestId}` JSON body.

Exception Hierarchy:
    HDNotesError (base)
    ├── ValidationError            → 400 Bad Request
    ├── AuthError                  → 401 Unauthorized
    │   ├── AuthChallengeError     (no/expired/mismatched/used/exhausted code)
    │   └── SessionError           (missing/invalid/expired session credential)
    ├── NotFoundError              → 404 Not Found
    ├── ConflictError              → 409 Conflict
    ├── RateLimitExceededError     → 429 Too Many Requests
    ├── NotificationDeliveryError  → 503 Service Unavailable
    └── DatabaseError              → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class HDNotesError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing description (safe to return in API responses)
        context:  Debug details (logged, never returned to the client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(HDNotesError):
    """
    Client input is malformed or breaks a business rule it can fix.

    Examples: invalid email format, signup without full name or date of
    birth, blank note title.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthError(HDNotesError):
    """
    Base for 401 responses. `reason` is a stable machine-readable code that
    becomes the `error` field of the response body.
    """

    reason: str = "unauthorized"

    def __init__(
        self,
        reason: Optional[str] = None,
        message: str = "Authentication failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        if reason:
            self.reason = reason
        ctx = context or {}
        ctx["reason"] = self.reason
        super().__init__(message=message, context=ctx)


class AuthChallengeError(AuthError):
    """
    A submitted one-time code was not accepted.

    Reasons:
        no_challenge       no outstanding code for this email and purpose
        expired            the code's validity window has passed
        mismatch           the code is wrong
        already_consumed   the code was already used
        too_many_attempts  the attempt ceiling was exceeded; request a new code
        invalid_code       any of the above, as reported by sign-in
    """

    NO_CHALLENGE = "no_challenge"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    ALREADY_CONSUMED = "already_consumed"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    INVALID_CODE = "invalid_code"

    MESSAGES = {
        INVALID_CODE: "Invalid or expired verification code.",
        NO_CHALLENGE: "No verification code was requested for this email.",
        EXPIRED: "The verification code has expired. Please request a new one.",
        MISMATCH: "The verification code is incorrect.",
        ALREADY_CONSUMED: "The verification code has already been used.",
        TOO_MANY_ATTEMPTS: "Too many incorrect attempts. Please request a new code.",
    }

    def __init__(
        self,
        reason: str,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            reason=reason,
            message=message or self.MESSAGES.get(reason, "Invalid verification code."),
            context=context,
        )


class SessionError(AuthError):
    """The request carries no usable session credential."""

    NO_CREDENTIAL = "no_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    EXPIRED = "session_expired"

    MESSAGES = {
        NO_CREDENTIAL: "Authentication required.",
        INVALID_CREDENTIAL: "Your session is not valid. Please sign in again.",
        EXPIRED: "Your session has expired. Please sign in again.",
    }

    def __init__(self, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            reason=reason,
            message=self.MESSAGES.get(reason, "Authentication required."),
            context=context,
        )


class NotFoundError(HDNotesError):
    """
    Requested resource does not exist, or belongs to someone else.

    Ownership failures use this too, so a note id never reveals that it
    exists for another user.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(HDNotesError):
    """The resource already exists (e.g. signing up with a registered email)."""

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(HDNotesError):
    """
    Raised when a caller must wait before retrying: per-IP request budget or
    the OTP resend cooldown for one email.
    """

    def __init__(
        self,
        retry_after: int = 60,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = message or (
            f"Rate limit exceeded. Please wait {retry_after} seconds before trying again."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class NotificationDeliveryError(HDNotesError):
    """
    The one-time code was stored but could not be emailed.

    Kept separate from every other failure so the client can tell the user
    to try again rather than to fix their input.
    """

    def __init__(
        self,
        message: str = "We could not send the verification email. Please try again shortly.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(HDNotesError):
    """
    A database operation failed unexpectedly. The client always gets a
    generic message; the context is logged server-side.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
