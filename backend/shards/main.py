"""FastAPI application entry point.

The HTTP surface is limited to health; the app exists to own the
lifespan of the queue worker pool and the daily scheduler.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from shards import __version__
from shards.api.v1 import router as api_router
from shards.core.database import close_db, init_db
from shards.core.redis import close_redis
from shards.core.scheduler import start_scheduler, stop_scheduler
from shards.services.factory import get_services, reset_services

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Shards Vault Sync API", version=__version__)

    await init_db()
    logger.info("Database initialized")

    services = get_services()
    services.worker.start()

    if services.settings.enable_scheduler:
        start_scheduler(services.settings, services.vault_sync)
    else:
        logger.info("Scheduler disabled by configuration")

    yield

    # Shutdown
    logger.info("Shutting down...")
    stop_scheduler()
    await services.worker.stop()
    await close_db()
    await close_redis()
    reset_services()
    logger.info("Cleanup complete")


app = FastAPI(
    title="Shards Vault Sync API",
    description="Daily vault position sync and valuation across EVM chains",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Shards Vault Sync API",
        "version": __version__,
        "docs": "/api/docs",
        "health": "/api/v1/health",
    }
