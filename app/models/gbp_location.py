from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, String, UniqueConstraint, Uuid

from app.db import Base


class GBPLocation(Base):
    __tablename__ = "gbp_locations"
    __table_args__ = (UniqueConstraint("account_id", "location_id", name="uq_gbp_locations_account_location"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(String, nullable=False, index=True)
    location_id = Column(String, nullable=False)
    location_name = Column(String, nullable=True)  # locations/{id}
    title = Column(String, nullable=True)
    store_code = Column(String, nullable=True)

    # Storefront address
    address_lines = Column(JSON, nullable=True)
    locality = Column(String, nullable=True)
    administrative_area = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    country_code = Column(String, nullable=True)

    primary_phone = Column(String, nullable=True)
    website_uri = Column(String, nullable=True)
    primary_category_id = Column(String, nullable=True)
    primary_category_name = Column(String, nullable=True)
    additional_categories = Column(JSON, nullable=True)

    verification_state = Column(String, nullable=True)
    is_open = Column(Boolean, default=True)
    location_metadata = Column("metadata", JSON, nullable=True)

    create_time = Column(String, nullable=True)
    update_time = Column(String, nullable=True)
    fetched_at = Column(DateTime(timezone=True), nullable=False)
