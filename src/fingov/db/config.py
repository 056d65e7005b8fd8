"""Database configuration and session management."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from fingov.config.settings import Settings, get_settings
from fingov.db.models.base import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create an async engine for the configured database URL."""
    kwargs: dict = {"echo": settings.DEBUG}
    if settings.DATABASE_URL.startswith("sqlite"):
        # SQLite does not support pool sizing
        if settings.ENVIRONMENT == "test":
            kwargs["poolclass"] = NullPool
    else:
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return create_async_engine(settings.DATABASE_URL, **kwargs)


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Get the global engine, creating it on first use.

    Args:
        settings: Settings to build the engine from (default: cached settings).
            Ignored once the engine exists.
    """
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings(settings or get_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the global session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def init_db(settings: Settings | None = None, create_tables: bool = False) -> None:
    """Initialize the database connection pool.

    Args:
        settings: Settings to build the engine from
        create_tables: Create missing tables from model metadata. Used for
            SQLite development databases; deployments run migrations instead.
    """
    async with get_engine(settings).begin() as conn:
        await conn.execute(text("SELECT 1"))
        if create_tables:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections gracefully."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
