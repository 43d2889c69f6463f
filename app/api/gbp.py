from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Path

from app.api.deps import (
    get_http_client,
    get_scheduler,
    get_session_factory,
    get_settings,
    get_token_manager,
)
from app.config import Settings
from app.errors import MissingParameterError
from app.models.connected_account import ConnectedAccount
from app.schemas.gbp import ConnectionCreate, ConnectionRead, ReviewReplyRequest
from app.services.credential_resolver import find_connected_account
from app.services.gbp_client import create_gbp_client
from app.services.scheduler_service import SchedulerService, spawn_best_effort
from app.services.sync_service import upsert_row, utcnow
from app.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gbp", tags=["GBP"])


def _client(
    token_manager: TokenManager,
    settings: Settings,
    http_client: httpx.AsyncClient,
    connection_id: Optional[str],
    account_id: Optional[str] = None,
    location_id: Optional[str] = None,
):
    if connection_id == "default":
        connection_id = None
    return create_gbp_client(
        None,
        token_manager,
        account_id=account_id,
        location_id=location_id,
        connection_id=connection_id,
        http_client=http_client,
        timeout=settings.http_timeout_seconds,
    )


def _parse_review_name(review_name: str) -> Dict[str, str]:
    """Split ``accounts/{a}/locations/{l}/reviews/{r}`` into its ids."""
    parts = review_name.strip("/").split("/")
    if len(parts) != 6 or parts[0] != "accounts" or parts[2] != "locations" or parts[4] != "reviews":
        raise MissingParameterError(
            "review_name must look like accounts/{account}/locations/{location}/reviews/{review}"
        )
    return {"account_id": parts[1], "location_id": parts[3], "review_id": parts[5]}


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@router.post("/connections", response_model=ConnectionRead)
async def create_connection(
    payload: ConnectionCreate,
    session_factory: Callable = Depends(get_session_factory),
    token_manager: TokenManager = Depends(get_token_manager),
) -> ConnectedAccount:
    """Save a broker connection, optionally seeding the token cache."""
    values = {
        "external_id": payload.external_id,
        "user_id": payload.user_id,
        "app_name": payload.app_name,
        "account_name": payload.account_name,
        "account_email": payload.account_email,
        "hubspot_contact_id": payload.hubspot_contact_id,
        "account_metadata": payload.metadata,
        "healthy": True,
        "updated_at": utcnow(),
    }
    async with session_factory() as session:
        created = await upsert_row(
            session,
            ConnectedAccount,
            {"pipedream_account_id": payload.pipedream_account_id},
            values,
        )
        await session.commit()
        account = await find_connected_account(session, payload.pipedream_account_id)

    logger.info(f"{'Created' if created else 'Updated'} connection {payload.pipedream_account_id}")

    if payload.access_token:
        for key in (str(account.id), account.pipedream_account_id):
            token_manager.cache_token(
                key,
                payload.access_token,
                refresh_token=payload.refresh_token,
                expires_in=payload.expires_in,
            )
    return account


@router.delete("/connections/{connection_id}")
async def delete_connection(
    connection_id: str = Path(..., description="Connection row id or Pipedream account id"),
    session_factory: Callable = Depends(get_session_factory),
    token_manager: TokenManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """Disconnect: remove the record and drop any cached token."""
    async with session_factory() as session:
        account = await find_connected_account(session, connection_id)
        if account is None:
            raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
        keys = {connection_id, str(account.id), account.pipedream_account_id}
        await session.delete(account)
        await session.commit()

    for key in keys:
        token_manager.clear_cache(key)

    logger.info(f"Deleted connection {connection_id}")
    return {"success": True, "connection_id": connection_id}


# ---------------------------------------------------------------------------
# Locations / reviews
# ---------------------------------------------------------------------------


@router.get("/accounts/{account_id}/locations/{location_id}")
async def get_location_data(
    account_id: str,
    location_id: str,
    connection_id: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_manager: TokenManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """Location details, reviews, media, posts and feature eligibility."""
    client = _client(token_manager, settings, http_client, connection_id, account_id, location_id)
    return await client.get_full_location_data(account_id, location_id)


@router.put("/reviews/reply")
async def reply_to_review(
    payload: ReviewReplyRequest,
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_manager: TokenManager = Depends(get_token_manager),
    scheduler: SchedulerService = Depends(get_scheduler),
) -> Dict[str, Any]:
    """Post a reply, then refresh the cached reviews in the background."""
    ids = _parse_review_name(payload.review_name)
    client = _client(
        token_manager,
        settings,
        http_client,
        payload.connection_id,
        ids["account_id"],
        ids["location_id"],
    )
    reply = await client.reply_to_review(payload.review_name, payload.comment)

    spawn_best_effort(
        scheduler.trigger_manual_sync(
            "gbp_reviews",
            account_id=ids["account_id"],
            location_id=ids["location_id"],
            connection_id=payload.connection_id,
        ),
        f"review re-sync for location {ids['location_id']}",
    )
    return {"success": True, "reply": reply}
