from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint, Uuid

from app.db import Base


class GBPPost(Base):
    __tablename__ = "gbp_posts"
    __table_args__ = (UniqueConstraint("location_id", "post_name", name="uq_gbp_posts_location_name"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(String, nullable=False)
    location_id = Column(String, nullable=False, index=True)
    post_name = Column(String, nullable=False)

    summary = Column(Text, nullable=True)
    language_code = Column(String, nullable=True)
    topic_type = Column(String, nullable=True)  # STANDARD, EVENT, OFFER, ALERT
    call_to_action_type = Column(String, nullable=True)
    call_to_action_url = Column(String, nullable=True)

    # Event / offer details
    event_title = Column(String, nullable=True)
    event_start_date = Column(String, nullable=True)  # YYYY-MM-DD
    event_end_date = Column(String, nullable=True)
    offer_coupon_code = Column(String, nullable=True)
    offer_redeem_online_url = Column(String, nullable=True)
    offer_terms_conditions = Column(Text, nullable=True)

    media_url = Column(String, nullable=True)
    media_format = Column(String, nullable=True)
    state = Column(String, nullable=True)
    create_time = Column(String, nullable=True)
    update_time = Column(String, nullable=True)

    fetched_at = Column(DateTime(timezone=True), nullable=False)
