"""
HD Notes Backend: Expired Credential Sweeper
==============================================

What:  Periodically deletes expired OTP challenges and sessions.
How:   A background task started by the lifespan when
       settings.sweep_interval_seconds > 0. Each pass opens its own
       database session.

Expiry is always checked when a challenge or session is read, so the
sweeper only keeps the tables small; missing a pass is harmless.
"""

import asyncio
import logging
from typing import Callable, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.credential_store import CredentialStore, credential_store
from app.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)


async def sweep_once(
    session_factory: Callable[[], AsyncSession],
    store: CredentialStore = credential_store,
    clock: Clock = utcnow,
) -> Tuple[int, int]:
    """Run one pass. Returns (challenges_deleted, sessions_deleted)."""
    async with session_factory() as db:
        try:
            deleted = await store.delete_expired(db, clock())
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise
    if any(deleted):
        logger.info("Swept %d expired challenges and %d expired sessions", *deleted)
    return deleted


async def run_sweeper(
    session_factory: Callable[[], AsyncSession],
    interval_seconds: float,
    store: CredentialStore = credential_store,
    clock: Clock = utcnow,
) -> None:
    """Sweep every `interval_seconds` until cancelled."""
    logger.info("Expired credential sweeper started (every %ss)", interval_seconds)
    while True:
        try:
            await sweep_once(session_factory, store=store, clock=clock)
        except SQLAlchemyError as e:
            # Next pass retries; a database outage must not kill the task
            logger.error("Sweep failed: %s", str(e))
        await asyncio.sleep(interval_seconds)
