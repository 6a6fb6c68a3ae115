"""FastAPI application factory with graceful shutdown support."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from portalfinder import __version__
from portalfinder.api.middleware import setup_middleware
from portalfinder.api.routes import create_routes
from portalfinder.cache.service import CacheService
from portalfinder.cache.stores import CacheStore, InMemoryCacheStore
from portalfinder.core.config import load_cache_config, settings
from portalfinder.core.database import Database
from portalfinder.core.exceptions import DatabaseError
from portalfinder.core.lifecycle import LifecycleManager
from portalfinder.observability.logging import configure_logging

logger = logging.getLogger(__name__)

# Global lifecycle manager for graceful shutdown
_lifecycle_manager: LifecycleManager | None = None


async def _open_database() -> Database | None:
    """Connect and bootstrap the schema, or None if unavailable."""
    if not settings.database_url:
        logger.warning(
            "DATABASE_URL not set, using in-process persistent tier (development only)"
        )
        return None

    database = Database(
        settings.database_url,
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
    )
    try:
        await database.connect()
        await database.apply_schema(seed_synonyms=False)
    except DatabaseError as e:
        logger.error(f"Database unavailable at startup: {e.message}")
        await database.disconnect()
        raise
    logger.info("Database connected and cache schema applied")
    return database


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown.

    Startup sequence:
        1. Configure logging and load cache configuration
        2. Connect to PostgreSQL and apply the cache schema
        3. Start the cache service (seed synonyms, start cleanup sweeps)
        4. Install signal handlers and register routes

    If PostgreSQL is configured but unreachable, the server still starts
    with the cache in degraded no-cache mode.

    Shutdown sequence (via LifecycleManager):
        1. Drain in-flight requests
        2. Stop cache background tasks
        3. Close database connection pool
    """
    global _lifecycle_manager

    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format or None,
        is_production=settings.is_production,
    )
    logger.info("Starting PortalFinder cache API server...")

    cache_config = load_cache_config()
    database: Database | None = None
    store: CacheStore
    degraded = False

    try:
        database = await _open_database()
    except DatabaseError:
        degraded = True

    if database is not None:
        store = database.cache_store()
    else:
        store = InMemoryCacheStore()

    service = CacheService(store, cache_config)
    if degraded:
        logger.error("Cache running in degraded no-cache mode")
        service.init_error = "persistent tier unreachable at startup"
    else:
        await service.start()

    _lifecycle_manager = LifecycleManager(
        cache_service=service,
        database=database,
        shutdown_timeout=settings.shutdown_drain_timeout,
    )

    try:
        _lifecycle_manager.install_signal_handlers()
    except (NotImplementedError, RuntimeError, ValueError) as e:
        # Not available outside the main thread (e.g. test clients)
        logger.warning(f"Could not install signal handlers: {e}")

    app.state.lifecycle_manager = _lifecycle_manager
    app.state.cache_service = service
    app.include_router(create_routes(service))

    logger.info(f"PortalFinder cache API server started (degraded={degraded})")

    yield

    logger.info("Shutting down PortalFinder cache API server...")
    await _lifecycle_manager.shutdown()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="PortalFinder Cache",
        description="Two-tier query-result cache for government portal search",
        version=__version__,
        lifespan=lifespan,
    )

    setup_middleware(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: object, exc: Exception) -> JSONResponse:
        """Handle unhandled exceptions."""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)},
        )

    return app


def get_lifecycle_manager() -> LifecycleManager | None:
    return _lifecycle_manager
