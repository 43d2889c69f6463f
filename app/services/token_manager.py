"""
GBP token manager.

Hands out valid Google access tokens per connection:

- ``default`` is the env-configured manager account (refresh-token exchange
  against Google, falling back to a static ``GBP_ACCESS_TOKEN``).
- Any other id is a broker-managed connection; Pipedream owns its refresh
  and we only read the current token.

Tokens live in an in-process cache and are treated as expired five minutes
before their real expiry. Concurrent misses for the same connection share a
single refresh.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import httpx

from app.config import Settings
from app.errors import ConfigurationError, TokenRefreshError
from app.services.credential_resolver import DEFAULT_CONNECTION_ID, CredentialResolver
from app.services.pipedream_service import PipedreamClient, create_pipedream_client
from app.services.token_service import TokenGrant, refresh_google_token

logger = logging.getLogger(__name__)

REFRESH_BUFFER = dt.timedelta(minutes=5)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class CachedToken:
    access_token: str
    expires_at: dt.datetime
    connection_id: str
    refresh_token: Optional[str] = None

    def is_valid(self, now: dt.datetime) -> bool:
        return self.expires_at - now >= REFRESH_BUFFER


class TokenManager:
    """Per-connection access tokens with caching and refresh de-duplication."""

    def __init__(
        self,
        settings: Settings,
        resolver: CredentialResolver,
        broker: PipedreamClient,
        http_client: httpx.AsyncClient,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self.broker = broker
        self.http_client = http_client
        self.clock = clock
        self._cache: Dict[str, CachedToken] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_token(self, connection_id: str) -> str:
        """Return a valid access token for *connection_id*."""
        if connection_id == DEFAULT_CONNECTION_ID:
            return await self.get_default_token()

        cached = self._get_cached(connection_id)
        if cached is not None:
            return cached

        return await self._deduplicated_refresh(
            connection_id, lambda: self._refresh_connection(connection_id)
        )

    async def get_default_token(self) -> str:
        """Return a token for the env-configured manager account."""
        cached = self._get_cached(DEFAULT_CONNECTION_ID)
        if cached is not None:
            return cached

        return await self._deduplicated_refresh(DEFAULT_CONNECTION_ID, self._refresh_default)

    def cache_token(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: int = 3600,
    ) -> None:
        """Seed the cache, e.g. right after an OAuth callback."""
        self._cache[connection_id] = CachedToken(
            access_token=access_token,
            expires_at=self.clock() + dt.timedelta(seconds=expires_in),
            connection_id=connection_id,
            refresh_token=refresh_token,
        )

    def clear_cache(self, connection_id: Optional[str] = None) -> None:
        if connection_id is None:
            self._cache.clear()
            logger.info("Cleared all cached GBP tokens")
        else:
            self._cache.pop(connection_id, None)
            logger.info(f"Cleared cached GBP token for {connection_id}")

    def invalidate(self, connection_id: str, rejected_token: Optional[str]) -> bool:
        """Drop the cached token only if it is still the one upstream rejected.

        Requests that were sent with the same stale token all report it; only
        the first one evicts, the rest pick up the token it refreshed.
        """
        cached = self._cache.get(connection_id)
        if cached is None or cached.access_token != rejected_token:
            return False
        del self._cache[connection_id]
        logger.info(f"Invalidated rejected GBP token for {connection_id}")
        return True

    def has_refresh_in_flight(self, connection_id: str) -> bool:
        return connection_id in self._in_flight

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_cached(self, connection_id: str) -> Optional[str]:
        cached = self._cache.get(connection_id)
        if cached is not None and cached.is_valid(self.clock()):
            return cached.access_token
        return None

    def _store(self, connection_id: str, grant: TokenGrant) -> None:
        self._cache[connection_id] = CachedToken(
            access_token=grant.access_token,
            expires_at=grant.expires_at,
            connection_id=connection_id,
            refresh_token=grant.refresh_token,
        )

    async def _deduplicated_refresh(
        self, connection_id: str, refresh: Callable[[], Awaitable[str]]
    ) -> str:
        task = self._in_flight.get(connection_id)
        if task is None:
            task = asyncio.ensure_future(self._run_refresh(connection_id, refresh))
            self._in_flight[connection_id] = task
        else:
            logger.debug(f"Joining in-flight token refresh for {connection_id}")

        # A cancelled waiter must not cancel the refresh other waiters share
        return await asyncio.shield(task)

    async def _run_refresh(
        self, connection_id: str, refresh: Callable[[], Awaitable[str]]
    ) -> str:
        try:
            return await refresh()
        finally:
            if self._in_flight.get(connection_id) is asyncio.current_task():
                del self._in_flight[connection_id]

    async def _refresh_connection(self, connection_id: str) -> str:
        connection = await self.resolver.resolve(connection_id)
        grant = await self.broker.get_access_token(
            connection.broker_account_id, connection.external_user_id
        )
        self._store(connection_id, grant)
        return grant.access_token

    async def _refresh_default(self) -> str:
        google = self.settings.google
        if not google.refresh_token:
            if google.access_token:
                return google.access_token
            raise ConfigurationError(
                "No GBP credentials configured (set GBP_REFRESH_TOKEN or GBP_ACCESS_TOKEN)"
            )

        try:
            grant = await refresh_google_token(
                self.http_client,
                google,
                timeout=self.settings.http_timeout_seconds,
            )
        except (TokenRefreshError, ConfigurationError) as e:
            if google.access_token:
                logger.warning(f"Default token refresh failed, using GBP_ACCESS_TOKEN: {e}")
                return google.access_token
            raise

        self._store(DEFAULT_CONNECTION_ID, grant)
        return grant.access_token


def create_token_manager(
    settings: Settings,
    session_factory: Callable,
    http_client: httpx.AsyncClient,
) -> TokenManager:
    """Wire a token manager from settings, a DB session factory and a shared HTTP client."""
    broker = create_pipedream_client(settings.pipedream, http_client, settings.http_timeout_seconds)
    return TokenManager(settings, CredentialResolver(session_factory), broker, http_client)
