from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_http_client, get_settings
from app.config import Settings
from app.services.connection_service import ConnectionService

router = APIRouter(prefix="/health", tags=["health"])


def get_connection_service(
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> ConnectionService:
    return ConnectionService(settings, http_client)


@router.get("/")
@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "message": "Service is running"}


@router.get("/connections")
async def test_connections(
    connection_service: ConnectionService = Depends(get_connection_service),
):
    """Test all external service connections."""
    results = await connection_service.test_all_connections()
    summary = connection_service.get_connection_summary(results)

    return JSONResponse(
        content=summary,
        status_code=200 if summary["success_rate"] == 100 else 503,
    )
