from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import GoogleOAuthSettings
from app.errors import ConfigurationError, TokenRefreshError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# ---------------------------------------------------------------------------
# Google OAuth helpers
# ---------------------------------------------------------------------------


@dataclass
class TokenGrant:
    """Access token returned by an OAuth endpoint or the broker."""

    access_token: str
    expires_at: dt.datetime
    refresh_token: Optional[str] = None

    @classmethod
    def from_expires_in(
        cls,
        access_token: str,
        expires_in: Optional[int],
        refresh_token: Optional[str] = None,
    ) -> "TokenGrant":
        lifetime = int(expires_in) if expires_in else DEFAULT_TOKEN_LIFETIME_SECONDS
        expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=lifetime)
        return cls(access_token=access_token, expires_at=expires_at, refresh_token=refresh_token)


async def refresh_google_token(
    client: httpx.AsyncClient,
    oauth: GoogleOAuthSettings,
    refresh_token: Optional[str] = None,
    timeout: float = 15.0,
) -> TokenGrant:
    """Exchange a Google refresh token for a fresh access token.

    Uses the env-configured refresh token unless one is passed in.
    Raises ConfigurationError when client credentials are missing and
    TokenRefreshError for any failed or malformed exchange.
    """
    refresh_token = refresh_token or oauth.refresh_token
    if not refresh_token:
        raise ConfigurationError("GBP_REFRESH_TOKEN not configured")
    if not oauth.client_id or not oauth.client_secret:
        raise ConfigurationError(
            "Google OAuth client credentials not configured "
            "(GBP_CLIENT_ID/GOOGLE_CLIENT_ID, GBP_CLIENT_SECRET/GOOGLE_CLIENT_SECRET)"
        )

    data = {
        "grant_type": "refresh_token",
        "client_id": oauth.client_id,
        "client_secret": oauth.client_secret,
        "refresh_token": refresh_token,
    }

    try:
        resp = await client.post(
            oauth.token_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        raise TokenRefreshError(f"Google token endpoint unreachable: {e}") from e

    if resp.status_code >= 400:
        raise TokenRefreshError(f"Google token refresh failed ({resp.status_code}): {resp.text[:200]}")

    try:
        payload = resp.json()
    except ValueError as e:
        raise TokenRefreshError(f"Malformed token response: {resp.text[:200]}") from e

    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not access_token:
        raise TokenRefreshError("Token response did not include an access_token")

    logger.info("Refreshed Google access token")
    return TokenGrant.from_expires_in(
        access_token,
        payload.get("expires_in"),
        payload.get("refresh_token", refresh_token),
    )
