from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Uuid
from sqlalchemy.sql import func

from app.db import Base


class ConnectedAccount(Base):
    """OAuth grant saved through the broker. Token state is never stored here."""

    __tablename__ = "pipedream_connected_accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=True, index=True)

    # Broker identifiers
    pipedream_account_id = Column(String, nullable=False, unique=True, index=True)
    external_id = Column(String, nullable=True)  # external_user_id at the broker
    app_name = Column(String, nullable=False, default="google_my_business")

    account_name = Column(String, nullable=True)
    account_email = Column(String, nullable=True)
    hubspot_contact_id = Column(String, nullable=True, index=True)
    healthy = Column(Boolean, default=True)

    account_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
