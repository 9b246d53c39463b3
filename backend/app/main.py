"""
HD Notes Backend: FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers; the
       lifespan configures logging, validates settings, runs the expired
       credential sweeper and disposes the engine on shutdown.
Who:   uvicorn (`uvicorn app.main:app`), and the test suite.

Application Architecture:
    ┌────────────────────────────────────────────────────────────┐
    │                        FastAPI App                         │
    │                                                            │
    │  Middleware Chain:                                         │
    │  ┌────────────┐ ┌────────────┐ ┌─────────┐ ┌────────────┐  │
    │  │ Request ID │→│ Rate Limit │→│ Logging │→│ GZip, CORS │  │
    │  └────────────┘ └────────────┘ └─────────┘ └────────────┘  │
    │                                                            │
    │  Routes:                                                   │
    │  ┌───────────────┐ ┌─────────────────┐ ┌────────────────┐  │
    │  │ /api/auth/*   │ │ /api/notes[/id] │ │ GET /api/health│  │
    │  └───────────────┘ └─────────────────┘ └────────────────┘  │
    │          session guard: Depends(require_session)           │
    │                                                            │
    │  Exception Handlers → {error, message, requestId}:         │
    │  400 validation │ 401 auth │ 404 │ 409 │ 429 │ 503 │ 500   │
    └────────────────────────────────────────────────────────────┘
"""

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import __version__
from app.config import settings
from app.database import async_session_factory, dispose_engine
from app.exceptions import (
    AuthError,
    ConflictError,
    DatabaseError,
    HDNotesError,
    NotFoundError,
    NotificationDeliveryError,
    RateLimitExceededError,
    SessionError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.routes import auth, health, notes
from app.routes.auth import clear_session_cookie
from app.services.sweeper import run_sweeper

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, at startup.

    Format: 2026-01-15T12:00:00 [INFO] app.services.otp_service: message
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # hdnotes.access already logs every request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Logging
        2. Configuration check (logged, not fatal, so /api/health still answers)
        3. Expired credential sweeper, when sweep_interval_seconds > 0
    Shutdown:
        1. Stop the sweeper
        2. Dispose the database engine
    """
    setup_logging()
    logger.info("=" * 60)
    logger.info("HD Notes Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    sweeper: Optional[asyncio.Task] = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            run_sweeper(async_session_factory, settings.sweep_interval_seconds),
            name="credential-sweeper",
        )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("HD Notes Backend shutting down...")
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _request_id(request: Request) -> str:
    return request_id_var.get("") or getattr(request.state, "request_id", "")


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """The uniform error body: {error, message, details?, requestId}."""
    content: Dict[str, Any] = {"error": error, "message": message}
    if details:
        content["details"] = details
    content["requestId"] = _request_id(request)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


_HTTP_ERROR_CODES = {
    404: "not_found",
    405: "method_not_allowed",
}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to HTTP responses.

    Handler hierarchy (most specific class wins):
        ValidationError, RequestValidationError → 400
        SessionError                            → 401, session cookie cleared
        AuthError (AuthChallengeError)          → 401, `error` is the reason
        NotFoundError                           → 404
        ConflictError                           → 409
        RateLimitExceededError                  → 429 + Retry-After
        NotificationDeliveryError               → 503
        DatabaseError, HDNotesError             → 500, generic message
        StarletteHTTPException                  → its own status
        Exception                               → 500, generic message

    Context dicts are logged, never returned, except where listed as details.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", _request_id(request), exc.message)
        details = {"field": exc.field} if exc.field else None
        return error_response(request, 400, "validation_error", exc.message, details)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %s", _request_id(request), errors)
        return error_response(
            request, 400, "validation_error", "The request is invalid.", {"errors": errors}
        )

    @app.exception_handler(SessionError)
    async def handle_session_error(request: Request, exc: SessionError):
        logger.info("[%s] Session rejected: %s", _request_id(request), exc.reason)
        response = error_response(request, 401, exc.reason, exc.message)
        if exc.reason != SessionError.NO_CREDENTIAL:
            clear_session_cookie(response)
        return response

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        logger.info("[%s] Authentication failed: %s", _request_id(request), exc.context)
        return error_response(request, 401, exc.reason, exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(request, 404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        return error_response(request, 409, "conflict", exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            request,
            429,
            "rate_limit_exceeded",
            exc.message,
            {"retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(NotificationDeliveryError)
    async def handle_delivery_error(request: Request, exc: NotificationDeliveryError):
        logger.error("[%s] Notification delivery failed: %s", _request_id(request), exc.context)
        return error_response(request, 503, "notification_delivery_failed", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s", _request_id(request), exc.message, exc.context
        )
        return error_response(
            request, 500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(HDNotesError)
    async def handle_app_error(request: Request, exc: HDNotesError):
        logger.error("[%s] Unhandled application error: %s | Context: %s",
                     _request_id(request), exc.message, exc.context)
        return error_response(
            request, 500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        error = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return error_response(
            request, exc.status_code, error, str(exc.detail), headers=exc.headers
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", _request_id(request), str(exc), exc_info=True)
        return error_response(
            request,
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="HD Notes API",
        description=(
            "Notes backend with passwordless email sign-in. Request a one-time "
            "code, verify it to receive a session cookie, then manage your notes."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RequestID → RateLimit → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(notes.router)
    app.include_router(health.router)

    return app


# uvicorn imports `app.main:app`
app = create_app()
