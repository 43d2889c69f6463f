from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, Uuid

from app.db import Base


class GBPMedia(Base):
    __tablename__ = "gbp_media"
    __table_args__ = (UniqueConstraint("location_id", "media_name", name="uq_gbp_media_location_name"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(String, nullable=False)
    location_id = Column(String, nullable=False, index=True)
    media_name = Column(String, nullable=False)

    media_format = Column(String, nullable=True)  # PHOTO or VIDEO
    location_association = Column(String, nullable=True)
    google_url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    source_url = Column(String, nullable=True)
    width_pixels = Column(Integer, nullable=True)
    height_pixels = Column(Integer, nullable=True)
    attribution_profile_name = Column(String, nullable=True)
    attribution_profile_url = Column(String, nullable=True)
    view_count = Column(Integer, default=0)
    create_time = Column(String, nullable=True)

    fetched_at = Column(DateTime(timezone=True), nullable=False)
