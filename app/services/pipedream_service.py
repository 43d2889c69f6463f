"""
Pipedream Connect client for broker-managed OAuth credentials.

Pipedream stores each connected Google account and refreshes its OAuth
token on its side. We only read the current token:

1. Get an API token with the client-credentials grant (cached until near expiry).
2. Read the account with ``include_credentials=true``.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

import httpx

from app.config import PipedreamSettings
from app.errors import ConfigurationError, TokenRefreshError
from app.services.token_service import TokenGrant

logger = logging.getLogger(__name__)

# Renew the API token this long before Pipedream says it expires
API_TOKEN_MARGIN = dt.timedelta(minutes=1)


def _parse_timestamp(value: Any) -> Optional[dt.datetime]:
    """Parse an ISO-8601 or epoch-seconds timestamp into an aware UTC datetime."""
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)):
            return dt.datetime.fromtimestamp(value, tz=dt.timezone.utc)
        parsed = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


class PipedreamClient:
    """Minimal Pipedream Connect REST client."""

    def __init__(
        self,
        settings: PipedreamSettings,
        http_client: httpx.AsyncClient,
        timeout: float = 15.0,
    ) -> None:
        self.settings = settings
        self.http_client = http_client
        self.timeout = timeout
        self._api_token: Optional[str] = None
        self._api_token_expires_at: Optional[dt.datetime] = None

    def _require_config(self) -> None:
        if not self.settings.configured:
            raise ConfigurationError(
                "Missing Pipedream credentials (PIPEDREAM_PROJECT_ID, "
                "PIPEDREAM_CLIENT_ID or PIPEDREAM_CLIENT_SECRET)"
            )

    async def _get_api_token(self) -> str:
        now = dt.datetime.now(dt.timezone.utc)
        if (
            self._api_token
            and self._api_token_expires_at
            and self._api_token_expires_at - API_TOKEN_MARGIN > now
        ):
            return self._api_token

        try:
            response = await self.http_client.post(
                f"{self.settings.base_url}/oauth/token",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.settings.client_id,
                    "client_secret": self.settings.client_secret,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Pipedream unreachable: {e}") from e

        if response.status_code >= 400:
            raise TokenRefreshError(
                f"Pipedream authentication failed ({response.status_code}): {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenRefreshError("Malformed Pipedream token response") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise TokenRefreshError("Pipedream token response did not include an access_token")

        self._api_token = token
        self._api_token_expires_at = now + dt.timedelta(seconds=int(payload.get("expires_in") or 3600))
        return token

    async def authenticate(self) -> None:
        """Confirm the project credentials can obtain an API token."""
        self._require_config()
        await self._get_api_token()

    async def get_account(
        self, account_id: str, external_user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Fetch a connected account, credentials included."""
        self._require_config()
        api_token = await self._get_api_token()

        params = {"include_credentials": "true"}
        if external_user_id:
            params["external_user_id"] = external_user_id

        try:
            response = await self.http_client.get(
                f"{self.settings.base_url}/connect/{self.settings.project_id}/accounts/{account_id}",
                params=params,
                headers={
                    "Authorization": f"Bearer {api_token}",
                    "x-pd-environment": self.settings.environment,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Pipedream unreachable: {e}") from e

        if response.status_code >= 400:
            raise TokenRefreshError(
                f"Pipedream token fetch failed ({response.status_code}): {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenRefreshError("Malformed Pipedream account response") from e

        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise TokenRefreshError("Malformed Pipedream account response")
        return payload

    async def get_access_token(
        self, account_id: str, external_user_id: Optional[str] = None
    ) -> TokenGrant:
        """Return the current OAuth token Pipedream holds for the account."""
        logger.info(f"Fetching token from Pipedream for account {account_id}")
        account = await self.get_account(account_id, external_user_id)

        credentials = account.get("credentials") or {}
        access_token = credentials.get("oauth_access_token")
        if not access_token:
            raise TokenRefreshError("No access token found in Pipedream account response")

        expires_at = _parse_timestamp(account.get("expires_at") or credentials.get("expires_at"))
        if expires_at is None:
            return TokenGrant.from_expires_in(access_token, None)
        return TokenGrant(access_token=access_token, expires_at=expires_at)


def create_pipedream_client(
    settings: PipedreamSettings, http_client: httpx.AsyncClient, timeout: float = 15.0
) -> PipedreamClient:
    """Create a Pipedream client sharing the given HTTP client."""
    return PipedreamClient(settings, http_client, timeout)
