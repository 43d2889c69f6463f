from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from app.db import Base


class Contact(Base):
    """HubSpot contact cache. Column names follow HubSpot property names."""

    __tablename__ = "contacts"
    __table_args__ = (UniqueConstraint("hubspot_contact_id", "user_id", name="uq_contacts_hubspot_user"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    hubspot_contact_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)

    # Core identity
    hs_object_id = Column(String, nullable=True)
    firstname = Column(String, nullable=True)
    lastname = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    mobilephone = Column(String, nullable=True)
    company = Column(String, nullable=True)

    # Address
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip = Column(String, nullable=True)
    country = Column(String, nullable=True)

    website = Column(String, nullable=True)

    # Local-only fields, never overwritten by a sync
    hubspot_company_id = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    business_category_type = Column(String, nullable=True)
    business_hours = Column(Text, nullable=True)
    active_customer = Column(Boolean, nullable=True)
    gbp_ready = Column(Boolean, nullable=True)

    # HubSpot lifecycle (stored as a label) and timestamps
    lifecyclestage = Column(String, nullable=True)
    createdate = Column(String, nullable=True)
    lastmodifieddate = Column(String, nullable=True, index=True)

    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # Sync writes record their time in synced_at only
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
