"""Async database engine and session management."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from linkcast.config import get_settings

# Lazy initialization: engine created on first use, not at import time.
# This prevents alembic (which runs synchronously) from crashing when
# other modules import from here at the module level.
_engine = None
_async_session = None


def _get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs = {"pool_pre_ping": True, "echo": settings.debug}
        # SQLite (tests, local dev) runs without a sized connection pool
        if not settings.database_url.startswith("sqlite"):
            kwargs.update(pool_size=20, max_overflow=10)
        _engine = create_async_engine(settings.database_url, **kwargs)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _async_session
    if _async_session is None:
        _async_session = async_sessionmaker(
            _get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session


async def dispose_engine():
    global _engine, _async_session
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session = None


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields an async session."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        yield session
