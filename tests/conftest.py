"""Pytest fixtures for Fingov tests."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from fingov.config.settings import Settings
from fingov.core.clock import FixedClock
from fingov.core.identity import TrustedHeaderIdentityProvider
from fingov.db.models.base import Base
from fingov.db.repositories.rows import InMemoryRowRepository
from fingov.governance.engine import GovernanceEngine
from fingov.storage.blobs import InMemoryBlobStore

# 2026-01-01T00:00:00Z
START_MS = 1_767_225_600_000

USER_ID = "user_1"
OTHER_USER_ID = "user_2"


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Governance fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create settings for testing."""
    return Settings(
        ENVIRONMENT="test",
        DEBUG=True,
        log_level="DEBUG",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        RETENTION_SWEEP_ENABLED=False,
    )


@pytest.fixture
def clock() -> FixedClock:
    """A clock pinned to 2026-01-01T00:00:00Z."""
    return FixedClock(START_MS)


@pytest.fixture
def repository(clock: FixedClock) -> InMemoryRowRepository:
    """Create an in-memory row repository."""
    return InMemoryRowRepository(clock=clock)


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    """Create an in-memory blob store."""
    return InMemoryBlobStore()


@pytest.fixture
def engine(
    repository: InMemoryRowRepository,
    blobs: InMemoryBlobStore,
    test_settings: Settings,
    clock: FixedClock,
) -> GovernanceEngine:
    """Create a governance engine over in-memory storage."""
    return GovernanceEngine(repository, blobs, settings=test_settings, clock=clock)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite engine with all tables."""
    db = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with db.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield db

    async with db.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await db.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test database."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# =============================================================================
# API fixtures
# =============================================================================


@pytest.fixture
def test_app(test_settings: Settings, engine: GovernanceEngine) -> FastAPI:
    """Create a FastAPI test application over the in-memory engine.

    Callers are identified by the X-User-Id header.
    """
    from fingov.api.app import create_app

    return create_app(
        settings=test_settings,
        engine=engine,
        identity_provider=TrustedHeaderIdentityProvider("X-User-Id"),
    )


@pytest_asyncio.fixture
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with no identity."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest_asyncio.fixture
async def user_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client signed in as ``USER_ID``."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={"X-User-Id": USER_ID},
    ) as client:
        yield client
