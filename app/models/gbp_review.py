from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, Uuid

from app.db import Base


class GBPReview(Base):
    __tablename__ = "gbp_reviews"
    __table_args__ = (UniqueConstraint("location_id", "review_id", name="uq_gbp_reviews_location_review"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(String, nullable=False)
    location_id = Column(String, nullable=False, index=True)
    review_id = Column(String, nullable=False)

    reviewer_display_name = Column(String, nullable=True)
    reviewer_profile_photo_url = Column(String, nullable=True)
    star_rating = Column(Integer, nullable=True)  # 1-5
    comment = Column(Text, nullable=True)
    reply_comment = Column(Text, nullable=True)
    reply_update_time = Column(String, nullable=True)

    # Provider timestamps (RFC 3339 strings)
    create_time = Column(String, nullable=True)
    update_time = Column(String, nullable=True)

    fetched_at = Column(DateTime(timezone=True), nullable=False)
