"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fingov import __version__
from fingov.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from fingov.api.routers import downloads_router, health_router, v1_router
from fingov.config.settings import Settings, get_settings
from fingov.config.validation import format_results, has_errors, validate_configuration
from fingov.core.identity import IdentityProvider, TrustedHeaderIdentityProvider
from fingov.core.logging import get_logger, setup_logging
from fingov.governance.engine import (
    GovernanceEngine,
    initialize_governance_engine,
    reset_governance_engine,
)
from fingov.governance.scheduler import RetentionSchedulerConfig, RetentionSweepScheduler
from fingov.utils.exceptions import ConfigurationError

logger = get_logger("fingov.api")


def create_app(
    settings: Settings | None = None,
    engine: GovernanceEngine | None = None,
    identity_provider: IdentityProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override (useful for testing)
        engine: Pre-built governance engine. When omitted, the lifespan
            builds one over the configured database.
        identity_provider: How callers are identified (default: trusted
            header named by ``IDENTITY_HEADER``)

    Returns:
        Configured FastAPI application

    Example:
        # Testing
        engine = GovernanceEngine(InMemoryRowRepository(), InMemoryBlobStore())
        app = create_app(engine=engine, identity_provider=StaticIdentityProvider("u1"))

        # Run with uvicorn
        uvicorn fingov.api.app:create_app --factory
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Fingov API",
        description="Data governance for personal finance records",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=_lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.identity_provider = identity_provider or TrustedHeaderIdentityProvider(
        settings.IDENTITY_HEADER
    )
    app.state.scheduler = None

    _configure_middleware(app, settings)
    _configure_routers(app)

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Startup validates configuration, opens the database when no engine was
    injected, and starts the retention scheduler. Shutdown reverses it.
    """
    settings: Settings = app.state.settings
    setup_logging(log_level=settings.log_level)
    logger.info("Starting Fingov API", environment=settings.ENVIRONMENT)

    results = validate_configuration(settings)
    if has_errors(results):
        raise ConfigurationError(format_results(results))

    owns_database = app.state.engine is None
    if owns_database:
        from fingov.db.config import get_session_factory, init_db
        from fingov.db.repositories.rows import SqlRowRepository
        from fingov.storage.blobs import SqlBlobStore

        await init_db(settings, create_tables=settings.DATABASE_URL.startswith("sqlite"))
        session_factory = get_session_factory()
        app.state.engine = initialize_governance_engine(
            SqlRowRepository(session_factory),
            SqlBlobStore(session_factory),
            settings=settings,
        )
        logger.info("Database connection pool initialized")

    if settings.RETENTION_SWEEP_ENABLED:
        scheduler = RetentionSweepScheduler(
            app.state.engine,
            RetentionSchedulerConfig(
                interval_seconds=settings.RETENTION_SWEEP_INTERVAL_HOURS * 3600
            ),
        )
        await scheduler.start()
        app.state.scheduler = scheduler

    yield

    logger.info("Shutting down Fingov API")

    if app.state.scheduler is not None:
        await app.state.scheduler.stop()
        app.state.scheduler = None

    if owns_database:
        from fingov.db.config import close_db

        try:
            await close_db()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning("Database shutdown error", error=str(e))
        reset_governance_engine()
        app.state.engine = None


def _configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure middleware stack.

    Middleware order (outermost to innermost execution):
    1. RequestLoggingMiddleware - Assigns request ids and logs requests
    2. ErrorHandlingMiddleware - Converts exceptions to HTTP responses
    3. CORSMiddleware - Handles CORS (if configured)

    Note: Middleware is added in reverse order because Starlette
    processes them from last-added to first-added.
    """
    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware, debug=settings.DEBUG)

    app.add_middleware(RequestLoggingMiddleware)


def _configure_routers(app: FastAPI) -> None:
    """Configure API routers."""
    app.include_router(health_router)
    app.include_router(downloads_router)
    app.include_router(v1_router)
