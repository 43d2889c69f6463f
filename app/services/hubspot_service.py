from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from app.errors import (
    ConfigurationError,
    UpstreamAPIError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)

# Base HubSpot API URL (v3 CRM)
HUBSPOT_BASE_URL = "https://api.hubapi.com"

logger = logging.getLogger(__name__)

HUBSPOT_BATCH_SIZE = 100
MAX_ATTEMPTS = 3
DEFAULT_RATE_LIMIT_WAIT = 5.0

CONTACT_PROPERTIES = [
    # Core identity
    "firstname",
    "lastname",
    "email",
    "phone",
    "mobilephone",
    "company",
    "website",
    # Address
    "address",
    "city",
    "state",
    "zip",
    "country",
    # HubSpot standard
    "lifecyclestage",
    "hs_lead_status",
    "hs_object_id",
    "num_notes",
    "createdate",
    "lastmodifieddate",
    # Analytics and enrichment
    "hs_email_domain",
    "hs_analytics_source",
    "hs_analytics_num_page_views",
    "hs_analytics_num_visits",
    "industry",
    "notes_last_updated",
    "jobtitle",
    "notes_last_contacted",
    "hs_analytics_first_visit_timestamp",
    "hs_analytics_last_visit_timestamp",
    "associatedcompanyid",
]


class HubSpotService:
    """HubSpot CRM contacts API client with rate-limit handling."""

    def __init__(
        self,
        access_token: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        backoff_base: float = 1.0,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not access_token:
            raise ConfigurationError("HUBSPOT_ACCESS_TOKEN not configured")
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")
        self.access_token = access_token
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request, retrying 429s, 5xx and transport errors with exponential backoff."""
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            is_last = attempt == self.max_attempts - 1
            try:
                response = await self._client.request(
                    method,
                    f"{HUBSPOT_BASE_URL}{path}",
                    params=params,
                    json=body,
                    headers={
                        "Authorization": f"Bearer {self.access_token}",
                        "Content-Type": "application/json",
                    },
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                last_error = UpstreamTimeoutError(f"HubSpot request timed out: {method} {path}")
                last_error.__cause__ = e
            except httpx.HTTPError as e:
                last_error = UpstreamTransportError(f"HubSpot request failed: {method} {path}: {e}")
                last_error.__cause__ = e
            else:
                if response.status_code == 429:
                    last_error = UpstreamAPIError(429, "Rate limited", service="HubSpot")
                    if not is_last:
                        wait = self._retry_after(response)
                        logger.warning(f"HubSpot rate limited, waiting {wait}s (attempt {attempt + 1}/{self.max_attempts})")
                        await self._sleep(wait)
                        continue
                    break
                if response.status_code >= 500:
                    last_error = UpstreamAPIError(response.status_code, response.text[:200], service="HubSpot")
                elif response.status_code >= 400:
                    raise UpstreamAPIError(response.status_code, response.text[:200], service="HubSpot")
                else:
                    return response.json() if response.content else {}

            if not is_last:
                backoff = self.backoff_base * (2 ** attempt)
                logger.warning(f"HubSpot request failed ({last_error}), retrying in {backoff}s")
                await self._sleep(backoff)

        raise last_error

    def _retry_after(self, response: httpx.Response) -> float:
        value = response.headers.get("Retry-After")
        try:
            return float(value) if value is not None else DEFAULT_RATE_LIMIT_WAIT
        except ValueError:
            return DEFAULT_RATE_LIMIT_WAIT

    async def list_contacts_page(self, after: Optional[str] = None) -> Dict[str, Any]:
        """One page of all contacts (List API)."""
        params = {"limit": HUBSPOT_BATCH_SIZE, "properties": ",".join(CONTACT_PROPERTIES)}
        if after:
            params["after"] = after
        return await self._request("GET", "/crm/v3/objects/contacts", params=params)

    async def search_modified_contacts(self, since_ms: int, after: Optional[str] = None) -> Dict[str, Any]:
        """One page of contacts with ``lastmodifieddate >= since_ms`` (Search API)."""
        body: Dict[str, Any] = {
            "filterGroups": [
                {
                    "filters": [
                        {
                            "propertyName": "lastmodifieddate",
                            "operator": "GTE",
                            "value": str(since_ms),
                        }
                    ]
                }
            ],
            "properties": CONTACT_PROPERTIES,
            "limit": HUBSPOT_BATCH_SIZE,
            "sorts": [{"propertyName": "lastmodifieddate", "direction": "ASCENDING"}],
        }
        if after:
            body["after"] = after
        return await self._request("POST", "/crm/v3/objects/contacts/search", body=body)

    async def get_contact(self, contact_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/crm/v3/objects/contacts/{contact_id}",
            params={"properties": ",".join(CONTACT_PROPERTIES)},
        )

    async def test_connection(self) -> Dict[str, Any]:
        """Check the token against the contacts API."""
        try:
            await self._request("GET", "/crm/v3/objects/contacts", params={"limit": 1})
            return {"connected": True}
        except (UpstreamAPIError, UpstreamTransportError) as e:
            return {"connected": False, "error": str(e)}

    async def close(self) -> None:
        """Clean up resources."""
        if self._owns_client:
            await self._client.aclose()


# Factory function so callers can share one HTTP client
def create_hubspot_service(
    access_token: Optional[str],
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 15.0,
) -> HubSpotService:
    """Create a HubSpot service for the configured private-app token."""
    return HubSpotService(access_token, http_client=http_client, timeout=timeout)
