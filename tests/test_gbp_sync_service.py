from __future__ import annotations

from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from app.errors import UpstreamAPIError
from app.models.gbp_analytics_snapshot import GBPAnalyticsSnapshot
from app.models.gbp_location import GBPLocation
from app.models.gbp_media import GBPMedia
from app.models.gbp_post import GBPPost
from app.models.gbp_review import GBPReview
from app.models.sync_job import JOB_COMPLETED, JOB_FAILED, SyncJob
from app.services.gbp_sync_service import (
    GBPAnalyticsSyncJob,
    GBPLocationsSyncJob,
    GBPMediaSyncJob,
    GBPPostsSyncJob,
    GBPReviewsSyncJob,
    shift_month,
)
from app.services.sync_service import MAX_GBP_PAGES


def fake_client(account_id: str = "111", location_id: str = "222") -> MagicMock:
    client = MagicMock()
    client.account_id = account_id
    client.location_id = location_id
    return client


def review(index: int) -> Dict[str, Any]:
    return {
        "name": f"accounts/111/locations/222/reviews/r{index}",
        "reviewer": {"displayName": f"Reviewer {index}"},
        "starRating": "FIVE",
        "comment": f"Great service {index}",
        "createTime": "2026-01-10T10:00:00Z",
        "updateTime": "2026-01-10T10:00:00Z",
    }


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def only_job(session_factory) -> SyncJob:
    async with session_factory() as session:
        return (await session.execute(select(SyncJob))).scalar_one()


class TestReviewsSync:
    """Reviews synchronizer."""

    @pytest.mark.asyncio
    async def test_partial_failure_skips_bad_record(self, session_factory):
        reviews: List[Dict[str, Any]] = [review(i) for i in range(1, 11)]
        reviews[3] = {"comment": "no id here", "starRating": "ONE"}
        client = fake_client()
        client.get_reviews = AsyncMock(return_value={"reviews": reviews})

        result = await GBPReviewsSyncJob(session_factory, client).run()

        assert result.success is True
        assert result.records_fetched == 10
        assert result.records_skipped == 1
        assert result.records_created == 9
        assert result.errors == 0
        assert await count_rows(session_factory, GBPReview) == 9

        job = await only_job(session_factory)
        assert job.status == JOB_COMPLETED
        assert job.records_skipped == 1
        assert job.job_metadata == {"account_id": "111", "location_id": "222"}

    @pytest.mark.asyncio
    async def test_pagination_stops_at_page_cap(self, session_factory):
        client = fake_client()
        pages = iter(range(1, 16))

        async def get_reviews(account_id, location_id, page_token):
            page = next(pages)
            return {"reviews": [review(page)], "nextPageToken": f"page-{page + 1}"}

        client.get_reviews = AsyncMock(side_effect=get_reviews)

        result = await GBPReviewsSyncJob(session_factory, client).run()

        assert client.get_reviews.await_count == MAX_GBP_PAGES
        assert result.records_fetched == MAX_GBP_PAGES
        client.get_reviews.assert_any_await("111", "222", None)
        client.get_reviews.assert_any_await("111", "222", "page-2")

    @pytest.mark.asyncio
    async def test_rerun_updates_instead_of_duplicating(self, session_factory):
        client = fake_client()
        client.get_reviews = AsyncMock(return_value={"reviews": [review(1), review(2)]})

        first = await GBPReviewsSyncJob(session_factory, client).run()
        updated = review(1)
        updated["reviewReply"] = {"comment": "Thank you!", "updateTime": "2026-01-11T00:00:00Z"}
        client.get_reviews.return_value = {"reviews": [updated, review(2)]}
        second = await GBPReviewsSyncJob(session_factory, client).run()

        assert (first.records_created, first.records_updated) == (2, 0)
        assert (second.records_created, second.records_updated) == (0, 2)
        assert await count_rows(session_factory, GBPReview) == 2

        async with session_factory() as session:
            row = (
                await session.execute(select(GBPReview).where(GBPReview.review_id == "r1"))
            ).scalar_one()
        assert row.reply_comment == "Thank you!"
        assert row.star_rating == 5

    @pytest.mark.asyncio
    async def test_unchanged_rerun_only_moves_fetched_at(self, session_factory):
        client = fake_client()
        client.get_reviews = AsyncMock(return_value={"reviews": [review(1), review(2)]})

        async def stored_reviews() -> Dict[str, Dict[str, Any]]:
            async with session_factory() as session:
                rows = (await session.execute(select(GBPReview))).scalars().all()
            return {
                row.review_id: {
                    column.key: getattr(row, column.key)
                    for column in GBPReview.__table__.columns
                    if column.key != "fetched_at"
                }
                for row in rows
            }

        await GBPReviewsSyncJob(session_factory, client).run()
        after_first = await stored_reviews()
        second = await GBPReviewsSyncJob(session_factory, client).run()

        assert second.records_updated == 2
        assert await stored_reviews() == after_first

    @pytest.mark.asyncio
    async def test_fetch_failure_marks_job_failed(self, session_factory):
        client = fake_client()
        client.get_reviews = AsyncMock(side_effect=UpstreamAPIError(503, "backend unavailable"))

        with pytest.raises(UpstreamAPIError):
            await GBPReviewsSyncJob(session_factory, client).run()

        job = await only_job(session_factory)
        assert job.status == JOB_FAILED
        assert job.errors == 1
        assert "backend unavailable" in job.error_message
        assert job.error_details == {"type": "UpstreamAPIError"}
        assert job.completed_at is not None


class TestMediaAndPostsSync:
    """Media and local posts synchronizers."""

    @pytest.mark.asyncio
    async def test_media_sync(self, session_factory):
        client = fake_client()
        client.get_media = AsyncMock(
            return_value={
                "mediaItems": [
                    {
                        "name": "accounts/111/locations/222/media/m1",
                        "mediaFormat": "PHOTO",
                        "googleUrl": "https://lh3.example/m1",
                        "dimensions": {"widthPixels": 800, "heightPixels": "600"},
                        "insights": {"viewCount": "42"},
                        "locationAssociation": {"category": "EXTERIOR"},
                    },
                    {"mediaFormat": "PHOTO"},
                ]
            }
        )

        result = await GBPMediaSyncJob(session_factory, client).run()

        assert result.records_created == 1
        assert result.records_skipped == 1
        async with session_factory() as session:
            media = (await session.execute(select(GBPMedia))).scalar_one()
        assert media.view_count == 42
        assert media.height_pixels == 600
        assert media.location_association == "EXTERIOR"

    @pytest.mark.asyncio
    async def test_posts_sync_formats_event_dates(self, session_factory):
        client = fake_client()
        client.get_local_posts = AsyncMock(
            return_value={
                "localPosts": [
                    {
                        "name": "accounts/111/locations/222/localPosts/p1",
                        "summary": "Grand opening",
                        "topicType": "EVENT",
                        "event": {
                            "title": "Opening day",
                            "schedule": {
                                "startDate": {"year": 2026, "month": 3, "day": 1},
                                "endDate": {"year": 2026, "month": 3, "day": 2},
                            },
                        },
                        "callToAction": {"actionType": "LEARN_MORE", "url": "https://example.com"},
                        "media": [{"mediaFormat": "PHOTO", "googleUrl": "https://lh3.example/p1"}],
                    }
                ]
            }
        )

        result = await GBPPostsSyncJob(session_factory, client).run()

        assert result.records_created == 1
        async with session_factory() as session:
            post = (await session.execute(select(GBPPost))).scalar_one()
        assert post.event_start_date == "2026-03-01"
        assert post.event_end_date == "2026-03-02"
        assert post.call_to_action_type == "LEARN_MORE"
        assert post.media_url == "https://lh3.example/p1"


class TestLocationsSync:
    """Locations synchronizer."""

    @pytest.mark.asyncio
    async def test_detail_failure_falls_back_to_list_payload(self, session_factory):
        client = fake_client(location_id=None)
        client.list_locations = AsyncMock(
            return_value={
                "locations": [
                    {"name": "locations/900", "title": "Downtown"},
                    {"name": "locations/901", "title": "Uptown"},
                ]
            }
        )

        async def get_location(location_id):
            if location_id == "901":
                raise UpstreamAPIError(403, "forbidden")
            return {
                "name": "locations/900",
                "title": "Downtown Store",
                "metadata": {"hasVoiceOfMerchant": True},
                "categories": {"primaryCategory": {"name": "gcid:bakery", "displayName": "Bakery"}},
                "storefrontAddress": {"locality": "Austin", "regionCode": "US"},
            }

        client.get_location = AsyncMock(side_effect=get_location)

        result = await GBPLocationsSyncJob(session_factory, client).run()

        assert result.records_created == 2
        assert result.metadata == {"account_id": "111"}
        async with session_factory() as session:
            rows = {
                row.location_id: row
                for row in (await session.execute(select(GBPLocation))).scalars().all()
            }
        assert rows["900"].title == "Downtown Store"
        assert rows["900"].verification_state == "VERIFIED"
        assert rows["900"].primary_category_name == "Bakery"
        assert rows["900"].country_code == "US"
        assert rows["901"].title == "Uptown"
        assert rows["901"].verification_state == "UNVERIFIED"


class TestAnalyticsSync:
    """Keyword snapshot synchronizer."""

    KEYWORDS = {
        "searchKeywordsCounts": [
            {"searchKeyword": "bakery near me", "insightsValue": {"value": "120"}},
            {"searchKeyword": "croissant", "insightsValue": {"value": "300"}},
            {"searchKeyword": "cake", "insightsValue": {"threshold": "15"}},
        ]
    }

    @pytest.mark.asyncio
    async def test_snapshot_sorted_and_summarized(self, session_factory):
        client = fake_client()
        client.get_search_keywords = AsyncMock(return_value=self.KEYWORDS)

        result = await GBPAnalyticsSyncJob(session_factory, client).run()

        assert result.records_created == 1
        assert result.metadata["total_keywords"] == 3
        assert result.metadata["total_impressions"] == 420
        assert [kw["keyword"] for kw in result.metadata["top_keywords"]] == [
            "croissant",
            "bakery near me",
            "cake",
        ]

        location_id, start, end = client.get_search_keywords.await_args.args
        assert location_id == "222"
        assert shift_month(end[0], end[1], -2) == start

    @pytest.mark.asyncio
    async def test_same_day_rerun_updates_snapshot(self, session_factory):
        client = fake_client()
        client.get_search_keywords = AsyncMock(return_value=self.KEYWORDS)

        await GBPAnalyticsSyncJob(session_factory, client).run()
        second = await GBPAnalyticsSyncJob(session_factory, client).run()

        assert second.records_created == 0
        assert second.records_updated == 1
        assert await count_rows(session_factory, GBPAnalyticsSnapshot) == 1

    def test_shift_month_crosses_year(self):
        assert shift_month(2026, 1, -2) == (2025, 11)
        assert shift_month(2026, 2, -2) == (2025, 12)
        assert shift_month(2025, 12, 1) == (2026, 1)
