"""
Sync engine shared by every synchronizer.

A run goes ``running -> completed | failed``:

1. A ``sync_jobs`` row is written as ``running`` before any network I/O.
2. The synchronizer fetches its source records and upserts them one by one
   by natural key. Bad records are counted (skipped / errors) and the loop
   goes on; transport or database outages abort the run.
3. The job row gets exactly one terminal update with counts and duration.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import RecordError
from app.models.sync_job import JOB_COMPLETED, JOB_FAILED, JOB_RUNNING, SyncJob
from app.schemas.sync import SyncResult

logger = logging.getLogger(__name__)

MAX_GBP_PAGES = 10


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def format_duration(duration_ms: int) -> str:
    if duration_ms > 1000:
        return f"{duration_ms / 1000:.1f}s"
    return f"{duration_ms}ms"


@dataclass
class SyncCounts:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "records_fetched": self.fetched,
            "records_created": self.created,
            "records_updated": self.updated,
            "records_skipped": self.skipped,
            "errors": self.errors,
        }


# ---------------------------------------------------------------------------
# Job log
# ---------------------------------------------------------------------------


class SyncJobRecorder:
    """Writes ``sync_jobs`` rows, each step in its own short session."""

    def __init__(self, session_factory: Callable) -> None:
        self.session_factory = session_factory

    async def start(self, job_type: str, metadata: Optional[Dict[str, Any]] = None) -> UUID:
        async with self.session_factory() as session:
            job = SyncJob(
                job_type=job_type,
                status=JOB_RUNNING,
                started_at=utcnow(),
                job_metadata=metadata or {},
            )
            session.add(job)
            await session.commit()
            logger.info(f"Started sync job {job.id} ({job_type})")
            return job.id

    async def complete(
        self,
        job_id: UUID,
        counts: SyncCounts,
        duration_ms: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self.session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None:
                logger.warning(f"Sync job {job_id} disappeared before completion")
                return
            job.status = JOB_COMPLETED
            job.records_fetched = counts.fetched
            job.records_created = counts.created
            job.records_updated = counts.updated
            job.records_skipped = counts.skipped
            job.errors = counts.errors
            job.completed_at = utcnow()
            job.duration_ms = duration_ms
            if metadata:
                job.job_metadata = {**(job.job_metadata or {}), **metadata}
            await session.commit()

    async def fail(
        self,
        job_id: UUID,
        error: BaseException,
        duration_ms: int,
        counts: Optional[SyncCounts] = None,
    ) -> None:
        async with self.session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None:
                logger.warning(f"Sync job {job_id} disappeared before failure was recorded")
                return
            counts = counts or SyncCounts()
            job.status = JOB_FAILED
            job.records_fetched = counts.fetched
            job.records_created = counts.created
            job.records_updated = counts.updated
            job.records_skipped = counts.skipped
            job.errors = counts.errors + 1
            job.error_message = str(error) or type(error).__name__
            job.error_details = {"type": type(error).__name__}
            job.completed_at = utcnow()
            job.duration_ms = duration_ms
            await session.commit()

    async def fail_stale(self, max_age: dt.timedelta) -> int:
        """Mark jobs still ``running`` after *max_age* as failed."""
        cutoff = utcnow() - max_age
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncJob).where(SyncJob.status == JOB_RUNNING, SyncJob.started_at < cutoff)
            )
            stale = result.scalars().all()
            for job in stale:
                job.status = JOB_FAILED
                job.error_message = (
                    f"Job exceeded {int(max_age.total_seconds() // 60)} minutes without finishing; "
                    "marked failed by stale job sweep"
                )
                job.completed_at = utcnow()
            await session.commit()

        if stale:
            logger.warning(f"Marked {len(stale)} stale sync job(s) as failed")
        return len(stale)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def collect_pages(
    fetch_page: Callable[[Optional[str]], Awaitable[Dict[str, Any]]],
    items_key: str,
    max_pages: int = MAX_GBP_PAGES,
    label: str = "sync",
) -> List[Dict[str, Any]]:
    """Follow ``nextPageToken`` sequentially, stopping after *max_pages* pages."""
    items: List[Dict[str, Any]] = []
    page_token: Optional[str] = None
    page_count = 0

    while True:
        response = await fetch_page(page_token)
        page_items = response.get(items_key) or []
        items.extend(page_items)
        page_count += 1
        logger.info(f"[{label}] Fetched page {page_count}: {len(page_items)} {items_key}")

        page_token = response.get("nextPageToken")
        if not page_token:
            break
        if page_count >= max_pages:
            logger.warning(f"[{label}] Stopped at page cap ({max_pages}); more pages remain")
            break

    logger.info(f"[{label}] Total {items_key} fetched: {len(items)}")
    return items


async def upsert_row(
    session: AsyncSession,
    model,
    keys: Dict[str, Any],
    values: Dict[str, Any],
) -> bool:
    """Insert or update the row matching *keys*. Returns True when a row was created."""
    result = await session.execute(select(model).filter_by(**keys))
    existing = result.scalar_one_or_none()

    if existing is None:
        session.add(model(**keys, **values))
        await session.flush()
        return True

    for name, value in values.items():
        setattr(existing, name, value)
    await session.flush()
    return False


# ---------------------------------------------------------------------------
# Base synchronizer
# ---------------------------------------------------------------------------


class BaseSyncJob:
    """Template for one entity synchronizer.

    Subclasses set ``job_type`` and ``model`` and implement ``fetch``,
    ``natural_key`` and ``transform``. Streaming sources override
    ``execute`` instead of ``fetch``.
    """

    job_type: str = ""
    model = None

    def __init__(self, session_factory: Callable, recorder: Optional[SyncJobRecorder] = None) -> None:
        self.session_factory = session_factory
        self.recorder = recorder or SyncJobRecorder(session_factory)
        self.result_metadata: Dict[str, Any] = {}

    def job_metadata(self) -> Dict[str, Any]:
        return {}

    async def fetch(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def natural_key(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Return the natural key columns, or raise RecordError when the id is missing."""
        raise NotImplementedError

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def execute(self, counts: SyncCounts) -> None:
        records = await self.fetch()
        counts.fetched = len(records)
        await self.process_records(records, counts)

    async def process_records(self, records: Iterable[Dict[str, Any]], counts: SyncCounts) -> None:
        async with self.session_factory() as session:
            for record in records:
                await self.process_record(session, record, counts)

    async def process_record(
        self, session: AsyncSession, record: Dict[str, Any], counts: SyncCounts
    ) -> None:
        try:
            keys = self.natural_key(record)
            values = self.transform(record)
        except RecordError as e:
            logger.warning(f"[{self.job_type}] Skipping record: {e}")
            counts.skipped += 1
            return
        except Exception as e:
            logger.error(f"[{self.job_type}] Record transform failed: {e}")
            counts.errors += 1
            return

        await self.write_record(session, keys, values, counts)

    async def write_record(
        self,
        session: AsyncSession,
        keys: Dict[str, Any],
        values: Dict[str, Any],
        counts: SyncCounts,
    ) -> None:
        try:
            created = await upsert_row(session, self.model, keys, values)
            await session.commit()
        except (IntegrityError, DataError) as e:
            await session.rollback()
            logger.error(f"[{self.job_type}] Upsert failed for {keys}: {e}")
            counts.errors += 1
            return

        if created:
            counts.created += 1
        else:
            counts.updated += 1

    async def run(self) -> SyncResult:
        started = time.monotonic()
        job_id = await self.recorder.start(self.job_type, self.job_metadata())
        counts = SyncCounts()

        try:
            await self.execute(counts)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.exception(f"[{self.job_type}] Sync aborted: {e}")
            try:
                await self.recorder.fail(job_id, e, duration_ms, counts)
            except Exception as record_error:
                logger.error(f"[{self.job_type}] Could not mark job {job_id} failed: {record_error}")
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        await self.recorder.complete(job_id, counts, duration_ms, self.result_metadata)

        logger.info(
            f"[{self.job_type}] Complete: {counts.created} created, {counts.updated} updated, "
            f"{counts.skipped} skipped, {counts.errors} errors ({format_duration(duration_ms)})"
        )
        return SyncResult(
            success=counts.errors == 0,
            job_type=self.job_type,
            job_id=job_id,
            duration_ms=duration_ms,
            duration=format_duration(duration_ms),
            timestamp=utcnow(),
            metadata={**self.job_metadata(), **self.result_metadata},
            **counts.as_dict(),
        )
