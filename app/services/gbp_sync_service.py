from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.errors import IntegrationError, MissingParameterError, RecordError
from app.models.gbp_analytics_snapshot import GBPAnalyticsSnapshot
from app.models.gbp_location import GBPLocation
from app.models.gbp_media import GBPMedia
from app.models.gbp_post import GBPPost
from app.models.gbp_review import GBPReview
from app.services.gbp_client import GBPClient
from app.services.sync_service import (
    BaseSyncJob,
    SyncCounts,
    SyncJobRecorder,
    collect_pages,
    utcnow,
)

logger = logging.getLogger(__name__)

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

# Keyword window: this month and the two before it
ANALYTICS_MONTHS = 3


def _last_segment(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return name.rstrip("/").split("/")[-1] or None


def _to_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _format_date(value: Optional[Dict[str, Any]]) -> Optional[str]:
    """Google ``{year, month, day}`` date to ``YYYY-MM-DD``."""
    if not value:
        return None
    return f"{int(value['year']):04d}-{int(value['month']):02d}-{int(value['day']):02d}"


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


class GBPSyncJob(BaseSyncJob):
    """Base for synchronizers scoped to one GBP account/location."""

    def __init__(
        self,
        session_factory: Callable,
        client: GBPClient,
        account_id: Optional[str] = None,
        location_id: Optional[str] = None,
        recorder: Optional[SyncJobRecorder] = None,
    ) -> None:
        super().__init__(session_factory, recorder)
        self.client = client
        self.account_id = account_id or client.account_id
        self.location_id = location_id or client.location_id

    def job_metadata(self) -> Dict[str, Any]:
        return {"account_id": self.account_id, "location_id": self.location_id}

    def _require_location(self) -> None:
        if not self.account_id or not self.location_id:
            raise MissingParameterError("Account and Location IDs required")


class GBPReviewsSyncJob(GBPSyncJob):
    job_type = "gbp_reviews"
    model = GBPReview

    async def fetch(self) -> List[Dict[str, Any]]:
        self._require_location()
        return await collect_pages(
            lambda page_token: self.client.get_reviews(self.account_id, self.location_id, page_token),
            "reviews",
            label="GBP Reviews Sync",
        )

    def natural_key(self, record: Dict[str, Any]) -> Dict[str, Any]:
        # name: accounts/{a}/locations/{l}/reviews/{review_id}
        review_id = _last_segment(record.get("name")) or record.get("reviewId")
        if not review_id:
            raise RecordError("Review missing ID")
        return {"location_id": self.location_id, "review_id": review_id}

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        reviewer = record.get("reviewer") or {}
        reply = record.get("reviewReply") or {}
        return {
            "account_id": self.account_id,
            "reviewer_display_name": reviewer.get("displayName"),
            "reviewer_profile_photo_url": reviewer.get("profilePhotoUrl"),
            "star_rating": STAR_RATINGS.get(record.get("starRating")),
            "comment": record.get("comment"),
            "reply_comment": reply.get("comment"),
            "reply_update_time": reply.get("updateTime"),
            "create_time": record.get("createTime"),
            "update_time": record.get("updateTime"),
            "fetched_at": utcnow(),
        }


class GBPMediaSyncJob(GBPSyncJob):
    job_type = "gbp_media"
    model = GBPMedia

    async def fetch(self) -> List[Dict[str, Any]]:
        self._require_location()
        return await collect_pages(
            lambda page_token: self.client.get_media(self.account_id, self.location_id, page_token),
            "mediaItems",
            label="GBP Media Sync",
        )

    def natural_key(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if not record.get("name"):
            raise RecordError("Media missing name")
        return {"location_id": self.location_id, "media_name": record["name"]}

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        dimensions = record.get("dimensions") or {}
        attribution = record.get("attribution") or {}
        return {
            "account_id": self.account_id,
            "media_format": record.get("mediaFormat"),
            "location_association": (record.get("locationAssociation") or {}).get("category"),
            "google_url": record.get("googleUrl"),
            "thumbnail_url": record.get("thumbnailUrl"),
            "source_url": record.get("sourceUrl"),
            "width_pixels": _to_int(dimensions.get("widthPixels"), None),
            "height_pixels": _to_int(dimensions.get("heightPixels"), None),
            "attribution_profile_name": attribution.get("profileName"),
            "attribution_profile_url": attribution.get("profilePhotoUrl"),
            "view_count": _to_int((record.get("insights") or {}).get("viewCount")),
            "create_time": record.get("createTime"),
            "fetched_at": utcnow(),
        }


class GBPPostsSyncJob(GBPSyncJob):
    job_type = "gbp_posts"
    model = GBPPost

    async def fetch(self) -> List[Dict[str, Any]]:
        self._require_location()
        return await collect_pages(
            lambda page_token: self.client.get_local_posts(self.account_id, self.location_id, page_token),
            "localPosts",
            label="GBP Posts Sync",
        )

    def natural_key(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if not record.get("name"):
            raise RecordError("Post missing name")
        return {"location_id": self.location_id, "post_name": record["name"]}

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        call_to_action = record.get("callToAction") or {}
        event = record.get("event") or {}
        schedule = event.get("schedule") or {}
        offer = record.get("offer") or {}
        media = (record.get("media") or [{}])[0]
        return {
            "account_id": self.account_id,
            "summary": record.get("summary"),
            "language_code": record.get("languageCode"),
            "topic_type": record.get("topicType"),
            "call_to_action_type": call_to_action.get("actionType"),
            "call_to_action_url": call_to_action.get("url"),
            "event_title": event.get("title"),
            "event_start_date": _format_date(schedule.get("startDate")),
            "event_end_date": _format_date(schedule.get("endDate")),
            "offer_coupon_code": offer.get("couponCode"),
            "offer_redeem_online_url": offer.get("redeemOnlineUrl"),
            "offer_terms_conditions": offer.get("termsConditions"),
            "media_url": media.get("googleUrl") or media.get("sourceUrl"),
            "media_format": media.get("mediaFormat"),
            "state": record.get("state"),
            "create_time": record.get("createTime"),
            "update_time": record.get("updateTime"),
            "fetched_at": utcnow(),
        }


class GBPLocationsSyncJob(GBPSyncJob):
    job_type = "gbp_locations"
    model = GBPLocation

    def job_metadata(self) -> Dict[str, Any]:
        return {"account_id": self.account_id}

    async def fetch(self) -> List[Dict[str, Any]]:
        if not self.account_id:
            raise MissingParameterError("Account ID required")

        listed = await collect_pages(
            lambda page_token: self.client.list_locations(self.account_id, page_token),
            "locations",
            label="GBP Locations Sync",
        )

        detailed = []
        for location in listed:
            location_id = _last_segment(location.get("name"))
            if location_id:
                location = await self._with_details(location_id, location)
            detailed.append(location)
        return detailed

    async def _with_details(self, location_id: str, listed: Dict[str, Any]) -> Dict[str, Any]:
        try:
            details = await self.client.get_location(location_id)
        except IntegrationError as e:
            logger.warning(f"[GBP Locations Sync] Could not fetch details for {location_id}, using basic info: {e}")
            return listed
        # Keep the list name when the detail payload omits it
        return {"name": listed.get("name"), **details}

    def natural_key(self, record: Dict[str, Any]) -> Dict[str, Any]:
        location_id = _last_segment(record.get("name"))
        if not location_id:
            raise RecordError("Location missing ID")
        return {"account_id": self.account_id, "location_id": location_id}

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        address = record.get("storefrontAddress") or {}
        categories = record.get("categories") or {}
        primary = categories.get("primaryCategory") or {}
        metadata = record.get("metadata") or {}
        open_status = (record.get("openInfo") or {}).get("status")
        return {
            "location_name": record.get("name"),
            "title": record.get("title"),
            "store_code": record.get("storeCode"),
            "address_lines": address.get("addressLines"),
            "locality": address.get("locality"),
            "administrative_area": address.get("administrativeArea"),
            "postal_code": address.get("postalCode"),
            "country_code": address.get("regionCode"),
            "primary_phone": (record.get("phoneNumbers") or {}).get("primaryPhone"),
            "website_uri": record.get("websiteUri"),
            "primary_category_id": primary.get("name"),
            "primary_category_name": primary.get("displayName"),
            "additional_categories": categories.get("additionalCategories") or [],
            "verification_state": "VERIFIED" if metadata.get("hasVoiceOfMerchant") else "UNVERIFIED",
            "is_open": not open_status or open_status == "OPEN",
            "location_metadata": {
                **metadata,
                "regularHours": record.get("regularHours"),
                "latlng": record.get("latlng"),
            },
            "create_time": metadata.get("createTime"),
            "update_time": metadata.get("updateTime"),
            "fetched_at": utcnow(),
        }


class GBPAnalyticsSyncJob(GBPSyncJob):
    """Daily keyword-impressions snapshot for one location."""

    job_type = "gbp_analytics"
    model = GBPAnalyticsSnapshot

    def job_metadata(self) -> Dict[str, Any]:
        return {"location_id": self.location_id}

    async def execute(self, counts: SyncCounts) -> None:
        if not self.location_id:
            raise MissingParameterError("Location ID required")

        today = utcnow().date()
        end = (today.year, today.month)
        start = shift_month(today.year, today.month, -(ANALYTICS_MONTHS - 1))
        logger.info(f"[GBP Analytics Sync] Fetching keywords for {start[0]}-{start[1]} to {end[0]}-{end[1]}")

        response = await self.client.get_search_keywords(self.location_id, start, end)
        keywords = sorted(
            (
                {
                    "keyword": item.get("searchKeyword"),
                    "impressions": _to_int((item.get("insightsValue") or {}).get("value")),
                    "threshold": (item.get("insightsValue") or {}).get("threshold"),
                }
                for item in response.get("searchKeywordsCounts") or []
            ),
            key=lambda kw: kw["impressions"],
            reverse=True,
        )
        total_impressions = sum(kw["impressions"] for kw in keywords)
        counts.fetched = len(keywords)
        logger.info(
            f"[GBP Analytics Sync] Fetched {len(keywords)} keywords, {total_impressions} total impressions"
        )

        keys = {"location_id": self.location_id, "snapshot_date": today}
        values = {
            "date_range_start": dt.date(start[0], start[1], 1),
            "date_range_end": dt.date(end[0], end[1], 1),
            "total_impressions": total_impressions,
            "total_keywords": len(keywords),
            "keywords": keywords,
            "fetched_at": utcnow(),
        }
        async with self.session_factory() as session:
            await self.write_record(session, keys, values, counts)

        self.result_metadata = {
            "total_keywords": len(keywords),
            "total_impressions": total_impressions,
            "top_keywords": keywords[:5],
        }


GBP_SYNC_JOBS = {
    job.job_type: job
    for job in (
        GBPReviewsSyncJob,
        GBPMediaSyncJob,
        GBPPostsSyncJob,
        GBPLocationsSyncJob,
        GBPAnalyticsSyncJob,
    )
}
