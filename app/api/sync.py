from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.api.deps import get_scheduler, verify_cron_secret
from app.schemas.sync import SyncResult, SyncStatus
from app.services.contact_sync_service import MODE_SYNC
from app.services.scheduler_service import SYNC_JOB_TYPES, SchedulerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Sync"])


@router.get("/status", response_model=SyncStatus)
async def get_sync_status(
    limit: int = Query(20, ge=1, le=100, description="Number of recent jobs to return"),
    scheduler: SchedulerService = Depends(get_scheduler),
) -> SyncStatus:
    """Recent sync jobs and the scheduler's running tasks."""
    return await scheduler.get_sync_status(limit)


@router.post(
    "/{job_type}",
    response_model=SyncResult,
    dependencies=[Depends(verify_cron_secret)],
)
async def trigger_sync(
    job_type: str = Path(..., description="Synchronizer to run, e.g. gbp_reviews"),
    account_id: Optional[str] = Query(None),
    location_id: Optional[str] = Query(None),
    connection_id: Optional[str] = Query(None),
    mode: str = Query(MODE_SYNC, pattern="^(insert|sync|incremental)$"),
    user_id: Optional[str] = Query(None),
    scheduler: SchedulerService = Depends(get_scheduler),
) -> SyncResult:
    """Run one synchronizer to completion (cron entry point)."""
    if job_type not in SYNC_JOB_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown sync job type: {job_type}")

    if job_type == "hubspot_contacts_sync":
        params = {"mode": mode, "user_id": user_id}
    else:
        params = {"account_id": account_id, "location_id": location_id, "connection_id": connection_id}

    logger.info(f"Cron trigger for {job_type}")
    return await scheduler.trigger_manual_sync(job_type, **params)
