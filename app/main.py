from __future__ import annotations

import logging
import os

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import config, db
from app.errors import IntegrationError

# Load environment variables early
load_dotenv()

from app.api import gbp, health, sync  # noqa: E402
from app.services.scheduler_service import create_scheduler_service  # noqa: E402
from app.services.token_manager import create_token_manager  # noqa: E402

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="GBP Sync API")

# CORS setup
origins = [os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Startup / shutdown hooks
# ---------------------------------------------------------------------------


@app.on_event("startup")
async def startup_event():
    """Build the shared HTTP client, token manager and scheduler."""
    settings = config.get_settings()
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    session_factory = db.AsyncSessionLocal

    token_manager = create_token_manager(settings, session_factory, http_client)
    scheduler = create_scheduler_service(settings, session_factory, token_manager, http_client)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.session_factory = session_factory
    app.state.token_manager = token_manager
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        await scheduler.start()
        logger.info("[Startup] Scheduler service started")
    else:
        logger.info("[Startup] Scheduler disabled; waiting for cron triggers")


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.scheduler.stop()
    await app.state.http_client.aclose()
    await db.engine.dispose()
    logger.info("[Shutdown] Services stopped")


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


@app.exception_handler(IntegrationError)
async def integration_error_handler(request: Request, exc: IntegrationError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kind = {401: "Unauthorized", 404: "NotFound"}.get(exc.status_code, "HTTPError")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": kind, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "InternalError", "message": str(exc)})


# Include API routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(gbp.router)
