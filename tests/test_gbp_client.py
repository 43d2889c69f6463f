from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.config import Settings
from app.errors import (
    MissingParameterError,
    ResponseParseError,
    TokenExpiredError,
    UpstreamAPIError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from app.services.credential_resolver import SOURCE_BROKER, Connection
from app.services.gbp_client import (
    GBPClient,
    determine_feature_eligibility,
    previous_month,
)
from app.services.token_manager import TokenManager
from app.services.token_service import TokenGrant

HTML_PAGE = "<!DOCTYPE html><html><body>Sign in - Google Accounts</body></html>"


def make_token_manager() -> MagicMock:
    manager = MagicMock()
    tokens = iter(f"token-{i}" for i in range(1, 100))
    manager.get_default_token = AsyncMock(side_effect=lambda: next(tokens))
    manager.get_token = AsyncMock(side_effect=lambda connection_id: next(tokens))
    return manager


def make_client(handler, token_manager=None, **kwargs) -> GBPClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GBPClient(
        kwargs.pop("access_token", None),
        token_manager or make_token_manager(),
        account_id=kwargs.pop("account_id", "111"),
        location_id=kwargs.pop("location_id", "222"),
        http_client=http_client,
        **kwargs,
    )


def scripted(responses, seen=None):
    """Handler that replays *responses* in order, recording each request."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return queue.pop(0)

    return handler


class TestTokenRecovery:
    """Refresh-and-retry on stale tokens."""

    @pytest.mark.asyncio
    async def test_lazy_token_load_on_first_request(self):
        seen = []
        manager = make_token_manager()
        client = make_client(scripted([httpx.Response(200, json={"accounts": []})], seen), manager)

        assert await client.list_accounts() == {"accounts": []}
        manager.get_default_token.assert_awaited_once()
        assert seen[0].headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_html_body_with_200_triggers_refresh(self):
        seen = []
        manager = make_token_manager()
        client = make_client(
            scripted(
                [
                    httpx.Response(200, text=HTML_PAGE),
                    httpx.Response(200, json={"reviews": [{"reviewId": "r1"}]}),
                ],
                seen,
            ),
            manager,
        )

        data = await client.get_reviews()

        assert data == {"reviews": [{"reviewId": "r1"}]}
        manager.invalidate.assert_called_once_with("default", "token-1")
        assert [r.headers["Authorization"] for r in seen] == ["Bearer token-1", "Bearer token-2"]

    @pytest.mark.asyncio
    async def test_html_detection_ignores_case_and_whitespace(self):
        manager = make_token_manager()
        client = make_client(
            scripted(
                [
                    httpx.Response(200, text="\n  <HTML><head></head></HTML>"),
                    httpx.Response(200, json={"ok": True}),
                ]
            ),
            manager,
        )

        assert await client.list_accounts() == {"ok": True}
        assert manager.invalidate.call_count == 1

    @pytest.mark.asyncio
    async def test_401_refreshes_connection_token(self):
        manager = make_token_manager()
        client = make_client(
            scripted(
                [
                    httpx.Response(401, json={"error": {"code": 401, "status": "UNAUTHENTICATED"}}),
                    httpx.Response(200, json={"name": "locations/222"}),
                ]
            ),
            manager,
            connection_id="apn_1",
        )

        assert await client.get_location() == {"name": "locations/222"}
        manager.invalidate.assert_called_once_with("apn_1", "token-1")
        assert manager.get_token.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_budget_is_enforced(self):
        manager = make_token_manager()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, json={"error": {"message": "expired"}})

        client = make_client(handler, manager, max_retries=2, access_token="stale")

        with pytest.raises(TokenExpiredError):
            await client.list_accounts()

        assert manager.invalidate.call_count == 2
        assert manager.get_default_token.await_count == 2
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_html_retries_exhausted(self):
        manager = make_token_manager()
        client = make_client(
            lambda request: httpx.Response(200, text=HTML_PAGE), manager, max_retries=1
        )

        with pytest.raises(TokenExpiredError, match="retries exhausted"):
            await client.get_media()
        assert manager.invalidate.call_count == 1

    @pytest.mark.asyncio
    async def test_staggered_401s_share_one_refresh(self):
        broker = AsyncMock()

        async def slow_fetch(*args):
            await asyncio.sleep(0.005)
            return TokenGrant.from_expires_in(f"fresh-{broker.get_access_token.call_count}", 3600)

        broker.get_access_token.side_effect = slow_fetch
        resolver = AsyncMock()
        resolver.resolve.return_value = Connection("apn_1", SOURCE_BROKER, "apn_1", "ext-1")
        manager = TokenManager(Settings(), resolver, broker, AsyncMock())
        manager.cache_token("apn_1", "stale")

        delays = {"/locations/222": 0.01, "/reviews": 0.02, "/media": 0.03, "/localPosts": 0.04}
        retried = []

        async def handler(request: httpx.Request) -> httpx.Response:
            auth = request.headers["Authorization"]
            if auth == "Bearer stale":
                delay = next(d for suffix, d in delays.items() if request.url.path.endswith(suffix))
                await asyncio.sleep(delay)
                return httpx.Response(401, json={"error": {"status": "UNAUTHENTICATED"}})
            retried.append(auth)
            return httpx.Response(200, json={"name": "locations/222"})

        client = make_client(handler, manager, connection_id="apn_1")

        data = await client.get_full_location_data()

        assert data["location"] == {"name": "locations/222"}
        assert broker.get_access_token.call_count == 1
        assert retried == ["Bearer fresh-1"] * 4


class TestResponseHandling:
    """Body parsing and error mapping."""

    @pytest.mark.asyncio
    async def test_parse_error_is_not_retried(self):
        manager = make_token_manager()
        client = make_client(
            lambda request: httpx.Response(200, text="not json at all"), manager
        )

        with pytest.raises(ResponseParseError, match="not json at all"):
            await client.list_accounts()
        manager.invalidate.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self):
        client = make_client(lambda request: httpx.Response(200, text=""))
        assert await client.delete_review_reply("accounts/1/locations/2/reviews/3") is None
        assert await client.list_accounts() == {}

    @pytest.mark.asyncio
    async def test_upstream_error_uses_error_message(self):
        client = make_client(
            lambda request: httpx.Response(
                403, json={"error": {"message": "Caller lacks permission", "status": "PERMISSION_DENIED"}}
            )
        )

        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.list_accounts()
        assert exc_info.value.upstream_status == 403
        assert str(exc_info.value) == "GBP API Error (403): Caller lacks permission"
        assert exc_info.value.to_dict()["upstream_status"] == 403

    @pytest.mark.asyncio
    async def test_upstream_error_falls_back_to_status_then_text(self):
        client = make_client(
            scripted(
                [
                    httpx.Response(404, json={"error": {"status": "NOT_FOUND"}}),
                    httpx.Response(500, json={"detail": "boom"}),
                ]
            )
        )

        with pytest.raises(UpstreamAPIError, match="NOT_FOUND"):
            await client.list_accounts()
        with pytest.raises(UpstreamAPIError, match="boom"):
            await client.list_accounts()

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await client.list_accounts()
        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_connect_error_maps_to_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)

        with pytest.raises(UpstreamTransportError):
            await client.list_accounts()


class TestEndpoints:
    """URL building and parameter checks."""

    @pytest.mark.asyncio
    async def test_missing_location_raises(self):
        client = make_client(lambda request: httpx.Response(200, json={}), location_id=None)

        with pytest.raises(MissingParameterError):
            await client.get_location()
        with pytest.raises(MissingParameterError):
            await client.get_reviews()

    @pytest.mark.asyncio
    async def test_review_urls_and_pagination(self):
        seen = []
        client = make_client(scripted([httpx.Response(200, json={"reviews": []})], seen))

        await client.get_reviews(page_token="next-abc")

        assert str(seen[0].url).startswith("https://mybusiness.googleapis.com/v4/accounts/111/locations/222/reviews")
        assert seen[0].url.params["pageToken"] == "next-abc"

    @pytest.mark.asyncio
    async def test_reply_to_review_puts_comment(self):
        seen = []
        client = make_client(scripted([httpx.Response(200, json={"comment": "Thanks!"})], seen))

        reply = await client.reply_to_review("accounts/111/locations/222/reviews/r9", "Thanks!")

        assert reply == {"comment": "Thanks!"}
        assert seen[0].method == "PUT"
        assert seen[0].url.path == "/v4/accounts/111/locations/222/reviews/r9/reply"
        assert b'"comment"' in seen[0].content

    @pytest.mark.asyncio
    async def test_search_keywords_month_range(self):
        seen = []
        client = make_client(scripted([httpx.Response(200, json={"searchKeywordsCounts": []})], seen))

        await client.get_search_keywords(start_month=previous_month(2026, 1), end_month=(2026, 1))

        params = seen[0].url.params
        assert params["monthlyRange.startMonth.year"] == "2025"
        assert params["monthlyRange.startMonth.month"] == "12"
        assert params["monthlyRange.endMonth.year"] == "2026"
        assert params["monthlyRange.endMonth.month"] == "1"
        assert seen[0].url.host == "businessprofileperformance.googleapis.com"

    @pytest.mark.asyncio
    async def test_full_location_data(self):
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/locations/222") and "business" in request.url.host:
                return httpx.Response(
                    200,
                    json={
                        "name": "locations/222",
                        "metadata": {"canModifyServiceList": True},
                        "categories": {"primaryCategory": {"displayName": "Italian Restaurant"}},
                    },
                )
            if path.endswith("/reviews"):
                return httpx.Response(200, json={"reviews": [{"reviewId": "r1"}]})
            if path.endswith("/media"):
                return httpx.Response(200, json={"mediaItems": []})
            if path.endswith("/localPosts"):
                return httpx.Response(200, json={"localPosts": []})
            return httpx.Response(404, json={"error": {"message": "unexpected"}})

        client = make_client(handler)

        data = await client.get_full_location_data()

        assert data["location"]["name"] == "locations/222"
        assert data["reviews"]["reviews"] == [{"reviewId": "r1"}]
        assert data["eligibility"]["food_menus"] is True
        assert data["eligibility"]["service_list"] is True
        assert data["eligibility"]["lodging_data"] is False


class TestHelpers:
    def test_previous_month_wraps_year(self):
        assert previous_month(2026, 1) == (2025, 12)
        assert previous_month(2026, 7) == (2026, 6)

    def test_feature_eligibility_by_category(self):
        hotel = determine_feature_eligibility(None, "Boutique Hotel")
        clinic = determine_feature_eligibility({}, "Medical Clinic")

        assert hotel["lodging_data"] is True
        assert hotel["service_list"] is False
        assert clinic["health_data"] is True
        assert clinic["reviews"] is True


class TestManagementEndpoints:
    """Media, verification, notification and place action calls."""

    @pytest.mark.asyncio
    async def test_media_create_and_delete(self):
        seen = []
        client = make_client(
            scripted([httpx.Response(200, json={"name": "accounts/111/locations/222/media/m1"}), httpx.Response(200, text="")], seen)
        )

        created = await client.create_media("111", "222", {"mediaFormat": "PHOTO", "sourceUrl": "https://example.com/a.jpg"})
        await client.delete_media(created["name"])

        assert (seen[0].method, seen[0].url.path) == ("POST", "/v4/accounts/111/locations/222/media")
        assert (seen[1].method, seen[1].url.path) == ("DELETE", "/v4/accounts/111/locations/222/media/m1")

    @pytest.mark.asyncio
    async def test_verifications_and_notifications(self):
        seen = []
        client = make_client(
            scripted(
                [
                    httpx.Response(200, json={"verifications": []}),
                    httpx.Response(200, json={"notificationTypes": []}),
                    httpx.Response(200, json={"pubsubTopic": "projects/p/topics/t"}),
                ],
                seen,
            )
        )

        await client.list_verifications()
        await client.get_notification_settings()
        await client.update_notification_settings("111", {"pubsubTopic": "projects/p/topics/t"})

        assert seen[0].url.host == "mybusinessverifications.googleapis.com"
        assert seen[0].url.path == "/v1/locations/222/verifications"
        assert seen[1].url.path == "/v1/accounts/111/notificationSetting"
        assert seen[2].method == "PATCH"

    @pytest.mark.asyncio
    async def test_place_action_links(self):
        seen = []
        client = make_client(
            scripted(
                [
                    httpx.Response(200, json={"placeActionLinks": []}),
                    httpx.Response(200, json={"name": "locations/222/placeActionLinks/1"}),
                    httpx.Response(200, text=""),
                ],
                seen,
            )
        )

        await client.list_place_action_links()
        link = await client.create_place_action_link("222", {"uri": "https://book.example", "placeActionType": "APPOINTMENT"})
        await client.delete_place_action_link(link["name"])

        assert seen[0].url.path == "/v1/locations/222/placeActionLinks"
        assert seen[1].method == "POST"
        assert seen[2].url.path == "/v1/locations/222/placeActionLinks/1"

    @pytest.mark.asyncio
    async def test_location_with_eligibility_and_explicit_token(self):
        seen = []
        manager = make_token_manager()
        client = make_client(
            scripted(
                [httpx.Response(200, json={"name": "locations/222", "categories": {"primaryCategory": {"displayName": "Pizza Restaurant"}}})],
                seen,
            ),
            manager,
        )
        client.set_access_token("explicit-token")

        data = await client.get_location_with_eligibility()

        assert data["eligibility"]["food_menus"] is True
        assert seen[0].headers["Authorization"] == "Bearer explicit-token"
        manager.get_default_token.assert_not_awaited()
