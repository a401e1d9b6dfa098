"""
Courier - failover delivery with a durable retry ledger

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courier import database
from courier.config import Settings, settings as default_settings
from courier.dependencies.delivery import build_courier
from courier.logging_config import configure_logging, get_logger
from courier.middleware.logging import LoggingMiddleware
from courier.routes.deliveries import router as deliveries_router
from courier.routes.metrics import router as metrics_router
from courier.sentry_config import configure_sentry
from courier.services.retry_service import Sleep

logger = get_logger(component="app")


def create_app(
    settings: Settings = default_settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Sleep | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    The delivery components are built at startup; an invalid receiver
    configuration fails startup with ConfigurationError.
    """
    session_factory = session_factory or database.AsyncSessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        courier = build_courier(session_factory, settings=settings, client=client, sleep=sleep)
        app.state.courier = courier
        app.state.session_factory = session_factory
        logger.info(
            "courier_started",
            receivers=list(courier.engine.config.receivers_url),
            max_attempts=courier.engine.config.max_attempts,
            hostname=settings.HOSTNAME,
        )

        if settings.RECOVER_ON_STARTUP:
            if await database.ping(session_factory):
                await courier.recovery.run()
            else:
                logger.error("recovery_skipped", reason="database unavailable")

        yield

        await courier.aclose()
        logger.info("courier_stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Delivers payloads to failover receivers with durable, crash-recoverable retries",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)
    app.include_router(deliveries_router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Detailed health check."""
        database_ok = await database.ping(app.state.session_factory)
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": "connected" if database_ok else "unavailable"
        }

    return app


def get_app() -> FastAPI:
    """Application factory for uvicorn: `uvicorn --factory courier.main:get_app`."""
    configure_logging()
    configure_sentry()
    return create_app()
