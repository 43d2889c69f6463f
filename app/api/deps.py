from __future__ import annotations

from typing import Callable, Optional

import httpx
from fastapi import Depends, Header, HTTPException, Request

from app.config import Settings
from app.services.scheduler_service import SchedulerService
from app.services.token_manager import TokenManager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_session_factory(request: Request) -> Callable:
    return request.app.state.session_factory


def get_token_manager(request: Request) -> TokenManager:
    return request.app.state.token_manager


def get_scheduler(request: Request) -> SchedulerService:
    return request.app.state.scheduler


async def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>``."""
    if not settings.cron_secret or authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized - Invalid or missing CRON_SECRET")
