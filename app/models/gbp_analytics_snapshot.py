from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, Date, DateTime, Integer, String, UniqueConstraint, Uuid

from app.db import Base


class GBPAnalyticsSnapshot(Base):
    """One keyword-impressions snapshot per location per day."""

    __tablename__ = "gbp_analytics_snapshots"
    __table_args__ = (UniqueConstraint("location_id", "snapshot_date", name="uq_gbp_analytics_location_date"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    location_id = Column(String, nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False)

    date_range_start = Column(Date, nullable=True)
    date_range_end = Column(Date, nullable=True)
    total_impressions = Column(Integer, default=0)
    total_keywords = Column(Integer, default=0)
    keywords = Column(JSON, nullable=True)  # sorted by impressions, descending

    fetched_at = Column(DateTime(timezone=True), nullable=False)
