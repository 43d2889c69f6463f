from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class SyncResult(BaseModel):
    """Outcome of one synchronizer run, as returned to the cron caller."""

    success: bool
    job_type: str
    job_id: Optional[UUID] = None
    records_fetched: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    errors: int = 0
    duration_ms: int = 0
    duration: str = "0ms"
    timestamp: dt.datetime
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = {}


class SyncJobRead(BaseModel):
    id: UUID
    job_type: str
    status: str
    records_fetched: Optional[int] = 0
    records_created: Optional[int] = 0
    records_updated: Optional[int] = 0
    records_skipped: Optional[int] = 0
    errors: Optional[int] = 0
    error_message: Optional[str] = None
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    duration_ms: Optional[int] = None
    job_metadata: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class SyncStatus(BaseModel):
    scheduler_running: bool
    running_tasks: List[str]
    recent_jobs: List[SyncJobRead]
