"""APScheduler configuration for the daily vault sync.

Runs VaultSyncService.schedule_daily_vault_sync() once a day at the
configured UTC hour. Per-vault work runs on the task queue, not here.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from shards.core.config import Settings
from shards.services.vault_sync import VaultSyncService

logger = structlog.get_logger()

DAILY_VAULT_SYNC_JOB_ID = "daily_vault_sync"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None

# Track sync state for observability
_last_sync_result: dict = {
    "success": None,
    "timestamp": None,
    "error": None,
    "summary": None,
    "consecutive_failures": 0,
}


async def run_daily_vault_sync(service: VaultSyncService) -> None:
    """Scheduled job body. Never raises into the scheduler."""
    global _last_sync_result
    logger.info("Scheduled vault sync starting")
    try:
        summary = await service.schedule_daily_vault_sync()
    except Exception as e:
        _last_sync_result["consecutive_failures"] += 1
        _last_sync_result["error"] = str(e)
        _last_sync_result["success"] = False
        _last_sync_result["summary"] = None
        _last_sync_result["timestamp"] = datetime.now(timezone.utc).isoformat()
        logger.error("Scheduled vault sync failed", error=str(e))
        return

    # Chains that failed report an error string instead of a task count
    errors = {chain: result for chain, result in summary.items() if isinstance(result, str)}
    _last_sync_result["summary"] = summary
    _last_sync_result["timestamp"] = datetime.now(timezone.utc).isoformat()
    if errors:
        _last_sync_result["consecutive_failures"] += 1
        _last_sync_result["error"] = "; ".join(f"{chain}: {err}" for chain, err in errors.items())
        _last_sync_result["success"] = False
        logger.warning("Scheduled vault sync completed with errors", errors=errors)
    else:
        _last_sync_result["consecutive_failures"] = 0
        _last_sync_result["error"] = None
        _last_sync_result["success"] = True
        logger.info("Scheduled vault sync completed", summary=summary)


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler singleton."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def start_scheduler(settings: Settings, service: VaultSyncService) -> None:
    """Start the background scheduler with the daily vault sync job."""
    scheduler = get_scheduler()

    # Don't start twice
    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    scheduler.add_job(
        run_daily_vault_sync,
        trigger=CronTrigger(hour=settings.vault_sync_hour, minute=0, timezone="UTC"),
        id=DAILY_VAULT_SYNC_JOB_ID,
        name="Daily Vault Sync",
        kwargs={"service": service},
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Scheduler started", vault_sync_hour_utc=settings.vault_sync_hour)


def stop_scheduler() -> None:
    """Stop the background scheduler."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None


def get_scheduler_status() -> dict:
    """Get current scheduler status for health checks."""
    scheduler = get_scheduler()
    job = scheduler.get_job(DAILY_VAULT_SYNC_JOB_ID) if scheduler.running else None

    return {
        "running": scheduler.running,
        "next_sync": job.next_run_time.isoformat() if job and job.next_run_time else None,
        "job_count": len(scheduler.get_jobs()) if scheduler.running else 0,
        "last_sync": _last_sync_result.copy(),
    }
