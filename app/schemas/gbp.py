from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ConnectionCreate(BaseModel):
    """Connection saved after the broker OAuth flow completes."""

    pipedream_account_id: str
    external_id: Optional[str] = None
    user_id: Optional[str] = None
    app_name: str = "google_my_business"
    account_name: Optional[str] = None
    account_email: Optional[str] = None
    hubspot_contact_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    # Optional token from the OAuth callback, used to seed the cache
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: int = Field(3600, gt=0)


class ConnectionRead(BaseModel):
    id: UUID
    pipedream_account_id: str
    external_id: Optional[str] = None
    user_id: Optional[str] = None
    app_name: str
    account_name: Optional[str] = None
    account_email: Optional[str] = None
    hubspot_contact_id: Optional[str] = None
    healthy: Optional[bool] = True
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class ReviewReplyRequest(BaseModel):
    review_name: str  # accounts/{a}/locations/{l}/reviews/{r}
    comment: str = Field(..., min_length=1)
    connection_id: Optional[str] = None
