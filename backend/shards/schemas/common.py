"""Common schemas used across the API."""

from datetime import datetime
from typing import Dict, Optional, Union

from pydantic import BaseModel


class SchedulerLastSync(BaseModel):
    """Last sync result from scheduler."""
    success: Optional[bool] = None
    timestamp: Optional[str] = None
    error: Optional[str] = None
    summary: Optional[Dict[str, Union[int, str]]] = None
    consecutive_failures: int = 0


class SchedulerStatus(BaseModel):
    """Scheduler status for health check."""
    running: bool
    next_sync: Optional[str] = None
    job_count: int = 0
    last_sync: Optional[SchedulerLastSync] = None


class QueueStatus(BaseModel):
    """Task queue depth per state."""
    running: bool
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    database: str
    redis: str
    chain_data_provider: str
    scheduler: Optional[SchedulerStatus] = None
    queue: Optional[QueueStatus] = None
