from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from app.errors import (
    MissingParameterError,
    ResponseParseError,
    TokenExpiredError,
    UpstreamAPIError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from app.services.credential_resolver import DEFAULT_CONNECTION_ID

logger = logging.getLogger(__name__)

# Google splits GBP across several APIs; reviews, media and posts are still v4
API_URLS = {
    "account_management": "https://mybusinessaccountmanagement.googleapis.com/v1",
    "business_info": "https://mybusinessbusinessinformation.googleapis.com/v1",
    "performance": "https://businessprofileperformance.googleapis.com/v1",
    "verifications": "https://mybusinessverifications.googleapis.com/v1",
    "notifications": "https://mybusinessnotifications.googleapis.com/v1",
    "place_actions": "https://mybusinessplaceactions.googleapis.com/v1",
    "legacy": "https://mybusiness.googleapis.com/v4",
}

LOCATION_DETAIL_READ_MASK = ",".join(
    [
        "name",
        "title",
        "metadata",
        "profile",
        "storefrontAddress",
        "phoneNumbers",
        "websiteUri",
        "categories",
        "regularHours",
        "latlng",
    ]
)

LOCATION_LIST_READ_MASK = ",".join(
    ["name", "title", "storefrontAddress", "phoneNumbers", "websiteUri", "categories"]
)

YearMonth = Tuple[int, int]


def previous_month(year: int, month: int) -> YearMonth:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def _is_html(text: str) -> bool:
    head = text.lstrip()[:9].lower()
    return head.startswith("<!doctype") or head.startswith("<html")


def determine_feature_eligibility(
    metadata: Optional[Dict[str, Any]], category_name: Optional[str]
) -> Dict[str, bool]:
    """Which GBP features a location can use, from its metadata and primary category."""
    category = (category_name or "").lower()
    return {
        "reviews": True,
        "media": True,
        "local_posts": True,
        "performance": True,
        "service_list": bool((metadata or {}).get("canModifyServiceList", False)),
        "food_menus": "restaurant" in category or "food" in category,
        "health_data": "doctor" in category or "medical" in category or "health" in category,
        "lodging_data": "hotel" in category or "lodging" in category,
    }


def _primary_category(location: Dict[str, Any]) -> Optional[str]:
    primary = (location.get("categories") or {}).get("primaryCategory") or {}
    return primary.get("name") or primary.get("displayName")


class GBPClient:
    """Google Business Profile API client with transparent token refresh.

    A 401, or an HTML page where JSON was expected, means the token went
    stale: the client evicts the rejected token (unless a concurrent request
    already replaced it), asks the token manager for a new one and reissues
    the request, up to ``max_retries`` times. Created without a token, the
    client asks the token manager on first request.
    """

    def __init__(
        self,
        access_token: Optional[str],
        token_manager,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self.access_token = access_token
        self.token_manager = token_manager
        self.account_id = account_id
        self.location_id = location_id
        self.connection_id = connection_id
        self.max_retries = max_retries
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    def set_access_token(self, token: str) -> None:
        self.access_token = token

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.access_token:
            await self._load_token()

        retry_count = 0
        while True:
            sent_token = self.access_token
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=body,
                    headers={
                        "Authorization": f"Bearer {sent_token}",
                        "Content-Type": "application/json",
                    },
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                raise UpstreamTimeoutError(f"GBP request timed out after {self.timeout}s: {method} {url}") from e
            except httpx.HTTPError as e:
                raise UpstreamTransportError(f"GBP request failed: {method} {url}: {e}") from e

            text = response.text

            if _is_html(text):
                if retry_count < self.max_retries:
                    retry_count += 1
                    logger.warning(
                        f"HTML response detected, refreshing token (retry {retry_count}/{self.max_retries})"
                    )
                    await self._refresh_token(sent_token)
                    continue
                raise TokenExpiredError("Invalid response - token may be expired, retries exhausted")

            try:
                data = json.loads(text) if text.strip() else {}
            except ValueError as e:
                raise ResponseParseError(f"Failed to parse response: {text[:200]}") from e

            if response.status_code == 401:
                if retry_count < self.max_retries:
                    retry_count += 1
                    logger.warning(
                        f"401 Unauthorized, refreshing token (retry {retry_count}/{self.max_retries})"
                    )
                    await self._refresh_token(sent_token)
                    continue
                raise TokenExpiredError("Unauthorized - token may be expired, retries exhausted")

            if not response.is_success:
                raise UpstreamAPIError(response.status_code, self._error_message(data, text))

            return data

    @staticmethod
    def _error_message(data: Any, text: str) -> str:
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            message = error.get("message") or error.get("status")
            if message:
                return str(message)
        return text

    async def _load_token(self) -> None:
        if self.connection_id:
            self.access_token = await self.token_manager.get_token(self.connection_id)
        else:
            self.access_token = await self.token_manager.get_default_token()

    async def _refresh_token(self, rejected_token: Optional[str]) -> None:
        self.token_manager.invalidate(self.connection_id or DEFAULT_CONNECTION_ID, rejected_token)
        await self._load_token()
        logger.info("GBP access token refreshed")

    def _account(self, account_id: Optional[str]) -> str:
        account = account_id or self.account_id
        if not account:
            raise MissingParameterError("Account ID required")
        return account

    def _location(self, location_id: Optional[str]) -> str:
        location = location_id or self.location_id
        if not location:
            raise MissingParameterError("Location ID required")
        return location

    # ------------------------------------------------------------------
    # Account management / business information
    # ------------------------------------------------------------------

    async def list_accounts(self) -> Dict[str, Any]:
        return await self._request("GET", f"{API_URLS['account_management']}/accounts")

    async def get_location(self, location_id: Optional[str] = None) -> Dict[str, Any]:
        location = self._location(location_id)
        return await self._request(
            "GET",
            f"{API_URLS['business_info']}/locations/{location}",
            params={"readMask": LOCATION_DETAIL_READ_MASK},
        )

    async def list_locations(
        self, account_id: Optional[str] = None, page_token: Optional[str] = None
    ) -> Dict[str, Any]:
        account = self._account(account_id)
        params = {"readMask": LOCATION_LIST_READ_MASK}
        if page_token:
            params["pageToken"] = page_token
        return await self._request(
            "GET", f"{API_URLS['business_info']}/accounts/{account}/locations", params=params
        )

    # ------------------------------------------------------------------
    # Legacy v4: reviews, media, posts
    # ------------------------------------------------------------------

    def _legacy_location_url(self, account_id: Optional[str], location_id: Optional[str]) -> str:
        account = account_id or self.account_id
        location = location_id or self.location_id
        if not account or not location:
            raise MissingParameterError("Account and Location IDs required")
        return f"{API_URLS['legacy']}/accounts/{account}/locations/{location}"

    async def _list_legacy(
        self,
        collection: str,
        account_id: Optional[str],
        location_id: Optional[str],
        page_token: Optional[str],
    ) -> Dict[str, Any]:
        url = f"{self._legacy_location_url(account_id, location_id)}/{collection}"
        params = {"pageToken": page_token} if page_token else None
        return await self._request("GET", url, params=params)

    async def get_reviews(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._list_legacy("reviews", account_id, location_id, page_token)

    async def reply_to_review(self, review_name: str, comment: str) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"{API_URLS['legacy']}/{review_name}/reply", body={"comment": comment}
        )

    async def delete_review_reply(self, review_name: str) -> None:
        await self._request("DELETE", f"{API_URLS['legacy']}/{review_name}/reply")

    async def get_media(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._list_legacy("media", account_id, location_id, page_token)

    async def create_media(
        self, account_id: str, location_id: str, media_data: Dict[str, Any]
    ) -> Dict[str, Any]:
        url = f"{self._legacy_location_url(account_id, location_id)}/media"
        return await self._request("POST", url, body=media_data)

    async def delete_media(self, media_name: str) -> None:
        await self._request("DELETE", f"{API_URLS['legacy']}/{media_name}")

    async def get_local_posts(
        self,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._list_legacy("localPosts", account_id, location_id, page_token)

    # ------------------------------------------------------------------
    # Performance, verifications, notifications, place actions
    # ------------------------------------------------------------------

    async def get_search_keywords(
        self,
        location_id: Optional[str] = None,
        start_month: Optional[YearMonth] = None,
        end_month: Optional[YearMonth] = None,
    ) -> Dict[str, Any]:
        """Monthly search keyword impressions; defaults to last month through this month."""
        location = self._location(location_id)
        today = dt.date.today()
        end = end_month or (today.year, today.month)
        start = start_month or previous_month(today.year, today.month)

        params = {
            "monthlyRange.startMonth.year": start[0],
            "monthlyRange.startMonth.month": start[1],
            "monthlyRange.endMonth.year": end[0],
            "monthlyRange.endMonth.month": end[1],
        }
        return await self._request(
            "GET",
            f"{API_URLS['performance']}/locations/{location}/searchkeywords/impressions/monthly",
            params=params,
        )

    async def list_verifications(self, location_id: Optional[str] = None) -> Dict[str, Any]:
        location = self._location(location_id)
        return await self._request(
            "GET", f"{API_URLS['verifications']}/locations/{location}/verifications"
        )

    async def get_notification_settings(self, account_id: Optional[str] = None) -> Dict[str, Any]:
        account = self._account(account_id)
        return await self._request(
            "GET", f"{API_URLS['notifications']}/accounts/{account}/notificationSetting"
        )

    async def update_notification_settings(
        self, account_id: str, settings: Dict[str, Any]
    ) -> Dict[str, Any]:
        account = self._account(account_id)
        return await self._request(
            "PATCH",
            f"{API_URLS['notifications']}/accounts/{account}/notificationSetting",
            body=settings,
        )

    async def list_place_action_links(self, location_id: Optional[str] = None) -> Dict[str, Any]:
        location = self._location(location_id)
        return await self._request(
            "GET", f"{API_URLS['place_actions']}/locations/{location}/placeActionLinks"
        )

    async def create_place_action_link(
        self, location_id: str, action_link: Dict[str, Any]
    ) -> Dict[str, Any]:
        location = self._location(location_id)
        return await self._request(
            "POST",
            f"{API_URLS['place_actions']}/locations/{location}/placeActionLinks",
            body=action_link,
        )

    async def delete_place_action_link(self, place_action_link_name: str) -> None:
        await self._request("DELETE", f"{API_URLS['place_actions']}/{place_action_link_name}")

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    async def get_location_with_eligibility(
        self, location_id: Optional[str] = None
    ) -> Dict[str, Any]:
        location = await self.get_location(location_id)
        eligibility = determine_feature_eligibility(
            location.get("metadata"), _primary_category(location)
        )
        return {"location": location, "eligibility": eligibility}

    async def get_full_location_data(
        self, account_id: Optional[str] = None, location_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Location, reviews, media and posts fetched concurrently."""
        account = account_id or self.account_id
        location_key = location_id or self.location_id

        location, reviews, media, posts = await asyncio.gather(
            self.get_location(location_key),
            self.get_reviews(account, location_key),
            self.get_media(account, location_key),
            self.get_local_posts(account, location_key),
        )
        eligibility = determine_feature_eligibility(
            location.get("metadata"), _primary_category(location)
        )
        return {
            "location": location,
            "reviews": reviews,
            "media": media,
            "posts": posts,
            "eligibility": eligibility,
        }


def create_gbp_client(
    access_token: Optional[str],
    token_manager,
    account_id: Optional[str] = None,
    location_id: Optional[str] = None,
    connection_id: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 15.0,
) -> GBPClient:
    """Create a GBP client bound to one connection and optional default ids."""
    return GBPClient(
        access_token,
        token_manager,
        account_id=account_id,
        location_id=location_id,
        connection_id=connection_id,
        http_client=http_client,
        timeout=timeout,
    )
