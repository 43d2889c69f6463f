from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Coroutine, Dict, Optional, Set

import httpx
from sqlalchemy import func, select

from app.config import Settings
from app.errors import ConfigurationError
from app.models.sync_job import SyncJob
from app.schemas.sync import SyncJobRead, SyncResult, SyncStatus
from app.services.contact_sync_service import MODE_SYNC, ContactSyncJob
from app.services.credential_resolver import DEFAULT_CONNECTION_ID
from app.services.gbp_client import create_gbp_client
from app.services.gbp_sync_service import GBP_SYNC_JOBS
from app.services.hubspot_service import create_hubspot_service
from app.services.sync_service import BaseSyncJob, SyncJobRecorder, utcnow
from app.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60

SYNC_INTERVALS = {
    "gbp_reviews": DAY,
    "gbp_analytics": DAY,
    "gbp_posts": 7 * DAY,
    "gbp_media": 7 * DAY,
    "gbp_locations": 7 * DAY,
    "hubspot_contacts_sync": DAY,
}

SYNC_JOB_TYPES = frozenset(GBP_SYNC_JOBS) | {ContactSyncJob.job_type}

# Strong references so detached tasks are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def spawn_best_effort(coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
    """Run *coro* detached. Failures are logged and never reach the caller."""
    task = asyncio.create_task(coro, name=description)
    _background_tasks.add(task)

    def _done(finished: asyncio.Task) -> None:
        _background_tasks.discard(finished)
        if finished.cancelled():
            logger.info(f"Background task cancelled: {description}")
            return
        error = finished.exception()
        if error is not None:
            logger.error(f"Background task failed ({description}): {error}")

    task.add_done_callback(_done)
    return task


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)


class SchedulerService:
    """Runs synchronizers on their intervals and sweeps stale jobs.

    External cron is the primary trigger; this loop is opt-in.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable,
        token_manager: TokenManager,
        http_client: httpx.AsyncClient,
        intervals: Optional[Dict[str, int]] = None,
        tick_seconds: float = 60,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.token_manager = token_manager
        self.http_client = http_client
        self.recorder = SyncJobRecorder(session_factory)
        self.sync_intervals = intervals if intervals is not None else dict(SYNC_INTERVALS)
        self.tick_seconds = tick_seconds
        self.running = False
        self.sync_tasks: Dict[str, asyncio.Task] = {}
        self._loop_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self.running:
            return

        self.running = True
        logger.info("Starting scheduler service")
        self._loop_task = asyncio.create_task(self._run_scheduler())

    async def stop(self) -> None:
        """Stop the loop and cancel running sync tasks."""
        self.running = False

        tasks = [t for t in self.sync_tasks.values() if not t.done()]
        if self._loop_task and not self._loop_task.done():
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Stopped scheduler service")

    async def _run_scheduler(self) -> None:
        """Main scheduler loop."""
        while self.running:
            try:
                await self.sweep_stale_jobs()
                await self.check_due_jobs()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
            await asyncio.sleep(self.tick_seconds)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def is_configured(self, job_type: str) -> bool:
        if job_type == ContactSyncJob.job_type:
            return bool(self.settings.hubspot_access_token and self.settings.sync_user_id)
        if job_type == "gbp_locations":
            return bool(self.settings.default_account_id)
        if job_type == "gbp_analytics":
            return bool(self.settings.default_location_id)
        return bool(self.settings.default_account_id and self.settings.default_location_id)

    async def _last_started(self, job_type: str) -> Optional[dt.datetime]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.max(SyncJob.started_at)).where(SyncJob.job_type == job_type)
            )
            last = result.scalar_one_or_none()
        return _as_utc(last) if last else None

    async def check_due_jobs(self) -> None:
        """Start every configured job type whose interval has elapsed."""
        now = utcnow()
        for job_type, interval in self.sync_intervals.items():
            if not self.is_configured(job_type):
                continue

            task = self.sync_tasks.get(job_type)
            if task is not None:
                if not task.done():
                    logger.debug(f"Sync already running for {job_type}")
                    continue
                del self.sync_tasks[job_type]

            last = await self._last_started(job_type)
            if last is not None and (now - last).total_seconds() < interval:
                continue

            logger.info(f"Starting scheduled sync {job_type}")
            self.sync_tasks[job_type] = asyncio.create_task(
                self._run_scheduled(job_type), name=f"sync_{job_type}"
            )

    async def _run_scheduled(self, job_type: str) -> None:
        try:
            result = await self.trigger_manual_sync(job_type)
            logger.info(f"Scheduled sync {job_type} finished: {result.records_fetched} fetched, {result.errors} errors")
        except Exception as e:
            logger.error(f"Scheduled sync {job_type} failed: {e}")

    async def sweep_stale_jobs(self) -> int:
        return await self.recorder.fail_stale(dt.timedelta(minutes=self.settings.stale_job_minutes))

    # ------------------------------------------------------------------
    # Manual triggers / status
    # ------------------------------------------------------------------

    def create_sync_job(
        self,
        job_type: str,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        mode: str = MODE_SYNC,
        user_id: Optional[str] = None,
    ) -> BaseSyncJob:
        """Build the synchronizer for *job_type* with settings-based defaults."""
        if job_type == ContactSyncJob.job_type:
            user_id = user_id or self.settings.sync_user_id
            if not user_id:
                raise ConfigurationError("SYNC_USER_ID not configured")
            hubspot = create_hubspot_service(
                self.settings.hubspot_access_token,
                http_client=self.http_client,
                timeout=self.settings.http_timeout_seconds,
            )
            return ContactSyncJob(self.session_factory, hubspot, user_id, mode=mode, recorder=self.recorder)

        job_class = GBP_SYNC_JOBS.get(job_type)
        if job_class is None:
            raise ValueError(f"Unknown sync job type: {job_type}")

        if connection_id == DEFAULT_CONNECTION_ID:
            connection_id = None
        # Token is fetched on first request, after the job row exists
        client = create_gbp_client(
            None,
            self.token_manager,
            account_id=account_id or self.settings.default_account_id,
            location_id=location_id or self.settings.default_location_id,
            connection_id=connection_id,
            http_client=self.http_client,
            timeout=self.settings.http_timeout_seconds,
        )
        return job_class(self.session_factory, client, recorder=self.recorder)

    async def trigger_manual_sync(self, job_type: str, **params: Any) -> SyncResult:
        """Run one synchronizer now and return its result."""
        job = self.create_sync_job(job_type, **params)
        return await job.run()

    async def get_sync_status(self, limit: int = 20) -> SyncStatus:
        """Recent job rows plus the scheduler's own task state."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncJob).order_by(SyncJob.started_at.desc()).limit(limit)
            )
            jobs = result.scalars().all()

        return SyncStatus(
            scheduler_running=self.running,
            running_tasks=[name for name, task in self.sync_tasks.items() if not task.done()],
            recent_jobs=[SyncJobRead.model_validate(job) for job in jobs],
        )


def create_scheduler_service(
    settings: Settings,
    session_factory: Callable,
    token_manager: TokenManager,
    http_client: httpx.AsyncClient,
) -> SchedulerService:
    return SchedulerService(settings, session_factory, token_manager, http_client)
