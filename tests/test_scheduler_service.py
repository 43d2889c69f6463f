from __future__ import annotations

import asyncio
import datetime as dt
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConfigurationError
from app.models.sync_job import JOB_COMPLETED, JOB_FAILED, JOB_RUNNING, SyncJob
from app.services.contact_sync_service import MODE_INCREMENTAL, ContactSyncJob
from app.services.gbp_sync_service import GBPAnalyticsSyncJob, GBPReviewsSyncJob
from app.services.scheduler_service import SchedulerService, spawn_best_effort
from app.services.sync_service import utcnow


def make_scheduler(settings, session_factory, **kwargs) -> SchedulerService:
    return SchedulerService(settings, session_factory, MagicMock(), MagicMock(), **kwargs)


class TestStaleJobSweep:
    """Jobs stuck in ``running``."""

    @pytest.mark.asyncio
    async def test_marks_old_running_jobs_failed(self, settings, session_factory, db_session: AsyncSession):
        old = SyncJob(job_type="gbp_reviews", status=JOB_RUNNING, started_at=utcnow() - dt.timedelta(hours=3))
        fresh = SyncJob(job_type="gbp_media", status=JOB_RUNNING, started_at=utcnow() - dt.timedelta(minutes=5))
        done = SyncJob(job_type="gbp_posts", status=JOB_COMPLETED, started_at=utcnow() - dt.timedelta(hours=5))
        db_session.add_all([old, fresh, done])
        await db_session.commit()

        swept = await make_scheduler(settings, session_factory).sweep_stale_jobs()

        assert swept == 1
        async with session_factory() as session:
            jobs = {job.job_type: job for job in (await session.execute(select(SyncJob))).scalars().all()}
        assert jobs["gbp_reviews"].status == JOB_FAILED
        assert "stale job sweep" in jobs["gbp_reviews"].error_message
        assert jobs["gbp_media"].status == JOB_RUNNING
        assert jobs["gbp_posts"].status == JOB_COMPLETED


class TestScheduling:
    """Interval checks and overlap protection."""

    @pytest.mark.asyncio
    async def test_never_overlaps_same_job_type(self, settings, session_factory):
        scheduler = make_scheduler(settings, session_factory, intervals={"gbp_reviews": 60})
        release = asyncio.Event()
        runs = []

        async def slow_sync(job_type, **params):
            runs.append(job_type)
            await release.wait()

        scheduler.trigger_manual_sync = AsyncMock(side_effect=slow_sync)

        await scheduler.check_due_jobs()
        await asyncio.sleep(0)
        await scheduler.check_due_jobs()
        await asyncio.sleep(0)

        assert runs == ["gbp_reviews"]
        release.set()
        await scheduler.sync_tasks["gbp_reviews"]

    @pytest.mark.asyncio
    async def test_skips_recent_and_unconfigured_jobs(self, settings, session_factory, db_session: AsyncSession):
        db_session.add(SyncJob(job_type="gbp_reviews", status=JOB_COMPLETED, started_at=utcnow()))
        await db_session.commit()

        settings.hubspot_access_token = None
        scheduler = make_scheduler(
            settings,
            session_factory,
            intervals={"gbp_reviews": 3600, "gbp_media": 3600, "hubspot_contacts_sync": 3600},
        )
        scheduler.trigger_manual_sync = AsyncMock()

        await scheduler.check_due_jobs()
        await asyncio.gather(*scheduler.sync_tasks.values())

        assert set(scheduler.sync_tasks) == {"gbp_media"}
        scheduler.trigger_manual_sync.assert_awaited_once_with("gbp_media")

    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings, session_factory):
        scheduler = make_scheduler(settings, session_factory, intervals={}, tick_seconds=0.01)

        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.02)
        await scheduler.stop()

        assert scheduler.running is False
        assert scheduler._loop_task.done()


class TestSyncJobFactory:
    """Building synchronizers for manual and cron triggers."""

    def test_gbp_job_uses_default_ids(self, settings):
        scheduler = make_scheduler(settings, MagicMock())

        job = scheduler.create_sync_job("gbp_reviews", connection_id="default")

        assert isinstance(job, GBPReviewsSyncJob)
        assert job.account_id == "111"
        assert job.location_id == "222"
        assert job.client.connection_id is None
        assert job.client.access_token is None

    def test_gbp_job_with_connection(self, settings):
        scheduler = make_scheduler(settings, MagicMock())

        job = scheduler.create_sync_job("gbp_analytics", location_id="999", connection_id="apn_1")

        assert isinstance(job, GBPAnalyticsSyncJob)
        assert job.location_id == "999"
        assert job.client.connection_id == "apn_1"

    def test_contact_job(self, settings):
        scheduler = make_scheduler(settings, MagicMock())

        job = scheduler.create_sync_job("hubspot_contacts_sync", mode=MODE_INCREMENTAL)

        assert isinstance(job, ContactSyncJob)
        assert job.mode == MODE_INCREMENTAL
        assert job.user_id == "user-1"

    def test_contact_job_requires_user(self, settings):
        settings.sync_user_id = None
        scheduler = make_scheduler(settings, MagicMock())

        with pytest.raises(ConfigurationError):
            scheduler.create_sync_job("hubspot_contacts_sync")

    def test_unknown_job_type(self, settings):
        with pytest.raises(ValueError):
            make_scheduler(settings, MagicMock()).create_sync_job("gbp_questions")

    @pytest.mark.asyncio
    async def test_sync_status_lists_recent_jobs(self, settings, session_factory, db_session: AsyncSession):
        db_session.add(SyncJob(job_type="gbp_reviews", status=JOB_COMPLETED, started_at=utcnow()))
        await db_session.commit()

        status = await make_scheduler(settings, session_factory).get_sync_status()

        assert status.scheduler_running is False
        assert status.running_tasks == []
        assert [job.job_type for job in status.recent_jobs] == ["gbp_reviews"]


class TestBestEffort:
    """Detached side effects."""

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        async def boom():
            raise RuntimeError("re-sync exploded")

        with caplog.at_level(logging.ERROR, logger="app.services.scheduler_service"):
            task = spawn_best_effort(boom(), "review re-sync")
            await asyncio.gather(task, return_exceptions=True)
            await asyncio.sleep(0)

        assert "review re-sync" in caplog.text
        assert "re-sync exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_result_is_available(self):
        async def work():
            return 42

        assert await spawn_best_effort(work(), "answer") == 42
