"""Database engine and async session factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardio_sched.config import get_settings
from cardio_sched.core.models import Base

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    return get_settings().database_url


@lru_cache
def _get_engine():
    settings = get_settings()
    kwargs = {"echo": settings.database_echo}
    if not settings.is_sqlite:
        kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    return create_async_engine(get_database_url(), **kwargs)


@lru_cache
def _get_session_factory():
    return async_sessionmaker(_get_engine(), class_=AsyncSession, expire_on_commit=False)


def session_scope() -> AsyncSession:
    """New session outside a request, for the CLI."""
    return _get_session_factory()()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async session."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables (dev only)."""
    engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schedule tables created")


def reset_engine_cache() -> None:
    """Forget the cached engine and session factory after settings change."""
    _get_session_factory.cache_clear()
    _get_engine.cache_clear()


async def close_db() -> None:
    """Close pooled connections; the next session opens fresh ones."""
    await _get_engine().dispose()
