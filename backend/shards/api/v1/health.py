"""Health check endpoint."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shards import __version__
from shards.core.database import get_db
from shards.core.redis import get_redis
from shards.core.scheduler import get_scheduler_status
from shards.schemas.common import HealthResponse, QueueStatus
from shards.services.factory import get_services

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Check health of the database, Redis, scheduler and task queue."""
    now = datetime.now(timezone.utc)
    services = get_services()

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)[:50]}"

    # Check Redis
    try:
        redis = await get_redis()
        await redis.ping()
        redis_status = "healthy"
    except Exception as e:
        redis_status = f"unhealthy: {str(e)[:50]}"

    queue_status: Optional[QueueStatus] = None
    if redis_status == "healthy":
        try:
            counts = await services.queue.counts()
            queue_status = QueueStatus(running=services.worker.running, **counts)
        except Exception:
            queue_status = None

    all_healthy = db_status == "healthy" and redis_status == "healthy"

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        timestamp=now,
        version=__version__,
        database=db_status,
        redis=redis_status,
        chain_data_provider=services.settings.chain_data_provider,
        scheduler=get_scheduler_status(),
        queue=queue_status,
    )
