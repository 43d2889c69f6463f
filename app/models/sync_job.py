from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from app.db import Base

JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Job details
    job_type = Column(String, nullable=False, index=True)  # 'gbp_reviews', 'hubspot_contacts_sync', ...
    status = Column(String, nullable=False, default=JOB_RUNNING)  # 'running', 'completed', 'failed'

    # Record counts
    records_fetched = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    errors = Column(Integer, default=0)

    # Timing
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    # Run parameters and summary (account/location ids, top keywords)
    job_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
