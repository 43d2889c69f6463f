from __future__ import annotations

import asyncio
from typing import AsyncGenerator, Callable, Generator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from app import config, db
from app.config import GoogleOAuthSettings, PipedreamSettings, Settings
from app.db import Base, create_session_factory

# Register every table on Base.metadata
from app.models import (  # noqa: F401
    connected_account,
    contact,
    gbp_analytics_snapshot,
    gbp_location,
    gbp_media,
    gbp_post,
    gbp_review,
    sync_job,
)

CRON_SECRET = "test-cron-secret"

ENV_VARS = (
    "GBP_CLIENT_ID",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_OAUTH_CLIENT_ID",
    "GBP_CLIENT_SECRET",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_OAUTH_CLIENT_SECRET",
    "GBP_ACCESS_TOKEN",
    "GBP_REFRESH_TOKEN",
    "PIPEDREAM_PROJECT_ID",
    "PIPEDREAM_CLIENT_ID",
    "PIPEDREAM_CLIENT_SECRET",
    "PIPEDREAM_ENVIRONMENT",
    "HUBSPOT_ACCESS_TOKEN",
    "CRON_SECRET",
    "GBP_DEFAULT_ACCOUNT_ID",
    "GBP_DEFAULT_LOCATION_ID",
    "SYNC_USER_ID",
    "HTTP_TIMEOUT_SECONDS",
    "SCHEDULER_ENABLED",
    "SYNC_STALE_JOB_MINUTES",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env out of Settings()."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _make_engine(tmp_path):
    # File-backed so connections work from both the test loop and TestClient's loop
    return create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        future=True,
        poolclass=NullPool,
    )


async def _create_tables(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def settings() -> Settings:
    """Settings with a configured manager account and cron secret."""
    return Settings(
        google=GoogleOAuthSettings(
            client_id="test-client-id",
            client_secret="test-client-secret",
            refresh_token="test-refresh-token",
        ),
        pipedream=PipedreamSettings(
            project_id="proj_test",
            client_id="pd-client",
            client_secret="pd-secret",
        ),
        hubspot_access_token="hs-token",
        cron_secret=CRON_SECRET,
        default_account_id="111",
        default_location_id="222",
        sync_user_id="user-1",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[Callable, None]:
    """Session factory over a fresh SQLite database per test."""
    engine = _make_engine(tmp_path)
    await _create_tables(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def app_session_factory(tmp_path) -> Generator[Callable, None, None]:
    """Session factory for API tests, built outside any running loop."""
    engine = _make_engine(tmp_path)
    asyncio.run(_create_tables(engine))
    yield create_session_factory(engine)


@pytest.fixture
def client(monkeypatch, settings: Settings, app_session_factory) -> Generator[TestClient, None, None]:
    """Test client wired to the test database and settings."""
    from app.main import app

    monkeypatch.setattr(config, "_settings", settings)
    monkeypatch.setattr(db, "AsyncSessionLocal", app_session_factory)

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def mock_scheduler(client: TestClient) -> AsyncMock:
    """Replace the app scheduler after startup."""
    scheduler = AsyncMock()
    scheduler.running = False
    client.app.state.scheduler = scheduler
    return scheduler

