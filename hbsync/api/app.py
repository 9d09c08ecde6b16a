"""
Application Factory
Builds the FastAPI control API around a service container
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from hbsync.api.v1.routes.health import router as health_router
from hbsync.api.v1.routes.history import router as history_router
from hbsync.api.v1.routes.sync import router as sync_router
from hbsync.core.config import APP_VERSION, Settings
from hbsync.core.dependencies import ServiceContainer, build_container, close_container
from hbsync.middleware.error_handler import ErrorHandlerMiddleware
from hbsync.middleware.logging import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


def create_app(settings: Settings, container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create the control API.

    Args:
        settings: Validated settings
        container: Pre-built services (tests); otherwise the lifespan builds
            the container, starts the refresher and scheduler, and closes it
            on shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 80)
        logger.info("Starting HB Report Sync")
        logger.info("=" * 80)
        logger.info(f"Version: {APP_VERSION}")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Port: {settings.port}")

        if container is not None:
            yield
            return

        app.state.container = await build_container(settings)
        logger.info("✅ HB Report Sync started successfully")
        try:
            yield
        finally:
            logger.info("Shutting down HB Report Sync...")
            await close_container(app.state.container)
            logger.info("✅ Shutdown complete")

    app = FastAPI(
        title="HB Report Sync",
        description="Procore sync and versioned store control API",
        version=APP_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    if container is not None:
        app.state.container = container

    # Request logging, then the global error handler (added last, runs outermost)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)

    app.include_router(health_router)
    app.include_router(sync_router)
    app.include_router(history_router)

    logger.info("✅ All routes registered")
    return app
