"""
HD Notes Backend: Database Session Management
===============================================

What:  Async SQLAlchemy engine, session factory, declarative base and the
       request-scoped session dependency.
How:   One AsyncSession per request; committed when the handler returns,
       rolled back when it raises.
Who:   Route handlers (via Depends), Alembic (Base.metadata), the sweeper.

Connection pooling applies to server databases only. SQLite (used by the test
suite and for quick local runs) keeps SQLAlchemy's default pool.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with the pool options appropriate for `url`."""
    return create_async_engine(url, **_engine_options(url))


engine = build_engine(settings.database_url)

# expire_on_commit=False: attributes stay readable after the dependency commits
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models; its metadata drives Alembic."""
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency providing a database session per request.

    Commits after the handler succeeds, rolls back on any exception and
    always closes the session. Services may commit earlier when an operation
    must be durable before a side effect (OTP issuance commits before the
    code is emailed); the final commit is then a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_engine() -> None:
    """Close every pooled connection. Called from the lifespan on shutdown."""
    await engine.dispose()
