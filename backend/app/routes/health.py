"""
HD Notes Backend: Health Check Route
======================================

What:  Health endpoint for container probes and load balancers.
How:   Runs `SELECT 1` against the database and asks the notifier whether
       its transport is reachable.

Status levels:
    - healthy:   database and mail transport reachable (HTTP 200)
    - degraded:  mail transport unreachable; sign-in codes cannot be sent (HTTP 200)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app import __version__
from app.database import engine
from app.dependencies import get_notifier
from app.schemas.common import HealthResponse
from app.services.mail_base import Notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(
    response: Response,
    notifier: Notifier = Depends(get_notifier),
) -> HealthResponse:
    db_status = "connected"
    mail_status = notifier.kind
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if not await notifier.health_check():
        mail_status = "unavailable"
        if overall == "healthy":
            overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        mail=mail_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
