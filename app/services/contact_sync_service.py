"""
HubSpot contacts -> ``contacts`` table.

Modes:

- ``insert``: only create contacts we do not have yet; existing rows are skipped.
- ``sync``: fetch-merge-upsert. Start from the existing row, overlay only
  the HubSpot fields that carry a value, keep local-only columns.
- ``incremental``: ``sync`` semantics over contacts modified since the
  start of the UTC day of our newest ``lastmodifieddate``. Falls back to
  ``sync`` when nothing has been synced yet.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import RecordError
from app.models.contact import Contact
from app.services.hubspot_service import HubSpotService
from app.services.sync_service import BaseSyncJob, SyncCounts, SyncJobRecorder, upsert_row, utcnow

logger = logging.getLogger(__name__)

MODE_INSERT = "insert"
MODE_SYNC = "sync"
MODE_INCREMENTAL = "incremental"
SYNC_MODES = (MODE_INSERT, MODE_SYNC, MODE_INCREMENTAL)

MAX_PAGES_FULL = 3000
# HubSpot Search API stops at 10k results
MAX_PAGES_INCREMENTAL = 100
REQUEST_DELAY_SECONDS = 0.15

# Standard HubSpot lifecycle stages; portals with custom stages pass their own ids
LIFECYCLE_STAGE_LABELS: Dict[str, str] = {
    "subscriber": "Subscriber",
    "lead": "Lead",
    "marketingqualifiedlead": "Marketing Qualified Lead",
    "salesqualifiedlead": "Sales Qualified Lead",
    "opportunity": "Opportunity",
    "customer": "Customer",
    "evangelist": "Evangelist",
    "other": "Other",
}

# HubSpot properties copied onto same-named columns when non-empty
OVERLAY_FIELDS = [
    "hs_object_id",
    "email",
    "firstname",
    "lastname",
    "phone",
    "mobilephone",
    "company",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "website",
    "createdate",
    "lastmodifieddate",
]

# Timestamps are left out: lastmodifieddate always moves and formats differ
CHANGE_TRACKED_FIELDS = [f for f in OVERLAY_FIELDS if f not in ("createdate", "lastmodifieddate")] + [
    "lifecyclestage"
]


def get_lifecycle_label(stage: Optional[str], labels: Optional[Dict[str, str]] = None) -> str:
    if not stage:
        return "(none)"
    return (labels or LIFECYCLE_STAGE_LABELS).get(stage, stage)


@dataclass
class FieldChange:
    field: str
    old_value: Optional[str]
    new_value: Optional[str]


def build_merged_record(
    contact: Dict[str, Any], labels: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Column values to overlay on the stored row: only fields HubSpot filled in."""
    props = contact.get("properties") or {}
    values: Dict[str, Any] = {
        field: props[field] for field in OVERLAY_FIELDS if props.get(field)
    }
    if props.get("lifecyclestage"):
        values["lifecyclestage"] = get_lifecycle_label(props["lifecyclestage"], labels)
    values["synced_at"] = utcnow()
    return values


def detect_field_changes(
    props: Dict[str, Any],
    existing: Optional[Contact],
    labels: Optional[Dict[str, str]] = None,
) -> List[FieldChange]:
    """Fields where HubSpot now has a different, non-empty value."""
    if existing is None:
        return []

    changes = []
    for field in CHANGE_TRACKED_FIELDS:
        new_value = props.get(field) or None
        if field == "lifecyclestage" and new_value:
            new_value = get_lifecycle_label(new_value, labels)
        old_value = getattr(existing, field, None)
        old_value = str(old_value) if old_value not in (None, "") else None
        if new_value is not None and new_value != old_value:
            changes.append(FieldChange(field, old_value, new_value))
    return changes


def start_of_utc_day(value: str) -> Optional[dt.datetime]:
    """Midnight UTC of an ISO timestamp or epoch-millis string."""
    try:
        if value.isdigit():
            parsed = dt.datetime.fromtimestamp(int(value) / 1000, tz=dt.timezone.utc)
        else:
            parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    parsed = parsed.astimezone(dt.timezone.utc)
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


async def _find_contact(session: AsyncSession, hubspot_contact_id: str, user_id: str) -> Optional[Contact]:
    result = await session.execute(
        select(Contact).where(
            Contact.hubspot_contact_id == hubspot_contact_id,
            Contact.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


class ContactSyncJob(BaseSyncJob):
    job_type = "hubspot_contacts_sync"
    model = Contact

    def __init__(
        self,
        session_factory: Callable,
        hubspot: HubSpotService,
        user_id: str,
        mode: str = MODE_SYNC,
        recorder: Optional[SyncJobRecorder] = None,
        request_delay: float = REQUEST_DELAY_SECONDS,
        lifecycle_labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if mode not in SYNC_MODES:
            raise ValueError(f"Unknown sync mode: {mode}")
        super().__init__(session_factory, recorder)
        self.hubspot = hubspot
        self.user_id = user_id
        self.mode = mode
        self.request_delay = request_delay
        self.lifecycle_labels = lifecycle_labels or LIFECYCLE_STAGE_LABELS

    def job_metadata(self) -> Dict[str, Any]:
        return {"mode": self.mode, "user_id": self.user_id}

    async def last_sync_cutoff(self) -> Optional[dt.datetime]:
        """Start of the UTC day of the newest stored ``lastmodifieddate``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.max(Contact.lastmodifieddate)).where(
                    Contact.user_id == self.user_id,
                    Contact.lastmodifieddate.isnot(None),
                )
            )
            newest = result.scalar_one_or_none()
        return start_of_utc_day(newest) if newest else None

    async def execute(self, counts: SyncCounts) -> None:
        effective_mode = self.mode
        since: Optional[dt.datetime] = None

        if self.mode == MODE_INCREMENTAL:
            since = await self.last_sync_cutoff()
            if since is None:
                logger.info("[Contacts Sync] No previous sync found, falling back to full sync")
                effective_mode = MODE_SYNC
            else:
                logger.info(f"[Contacts Sync] Incremental sync from {since.isoformat()} (midnight UTC)")

        max_pages = MAX_PAGES_INCREMENTAL if effective_mode == MODE_INCREMENTAL else MAX_PAGES_FULL
        seen: Set[str] = set()
        duplicates = 0
        after: Optional[str] = None
        pages = 0

        async with self.session_factory() as session:
            while pages < max_pages:
                if effective_mode == MODE_INCREMENTAL:
                    response = await self.hubspot.search_modified_contacts(
                        int(since.timestamp() * 1000), after
                    )
                else:
                    response = await self.hubspot.list_contacts_page(after)

                contacts = response.get("results") or []
                if not contacts:
                    break
                counts.fetched += len(contacts)

                for contact in contacts:
                    contact_id = contact.get("id")
                    if contact_id in seen:
                        # Cursor pagination can repeat a contact while data changes
                        duplicates += 1
                        counts.skipped += 1
                        continue
                    if contact_id:
                        seen.add(contact_id)
                    await self._process_contact(session, contact, effective_mode, counts)

                pages += 1
                if pages % 10 == 0:
                    logger.info(
                        f"[Contacts Sync] Page {pages}: {counts.fetched} fetched, "
                        f"{counts.created + counts.updated} upserted, {counts.skipped} skipped, "
                        f"{counts.errors} failed"
                    )

                after = ((response.get("paging") or {}).get("next") or {}).get("after")
                if not after:
                    break
                if self.request_delay:
                    await asyncio.sleep(self.request_delay)

        if duplicates:
            logger.info(f"[Contacts Sync] Filtered {duplicates} duplicate contact(s) from HubSpot pagination")

        self.result_metadata = {
            "mode": effective_mode,
            "pages": pages,
            "unique_contacts": len(seen),
            "duplicates_skipped": duplicates,
        }
        if since is not None:
            self.result_metadata["sync_since"] = since.isoformat()

    async def _process_contact(
        self, session: AsyncSession, contact: Dict[str, Any], mode: str, counts: SyncCounts
    ) -> None:
        try:
            keys = self.natural_key(contact)
        except RecordError as e:
            logger.warning(f"[Contacts Sync] Skipping record: {e}")
            counts.skipped += 1
            return

        existing = await _find_contact(session, keys["hubspot_contact_id"], self.user_id)
        if mode == MODE_INSERT and existing is not None:
            counts.skipped += 1
            return
        if mode == MODE_INCREMENTAL:
            self._log_contact(contact, existing)

        try:
            values = self.transform(contact)
        except Exception as e:
            logger.error(f"[Contacts Sync] Transform failed for {keys['hubspot_contact_id']}: {e}")
            counts.errors += 1
            return

        await self.write_record(session, keys, values, counts)

    def natural_key(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if not record.get("id"):
            raise RecordError("Contact missing ID")
        return {"hubspot_contact_id": str(record["id"]), "user_id": self.user_id}

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return build_merged_record(record, self.lifecycle_labels)

    def _log_contact(self, contact: Dict[str, Any], existing: Optional[Contact]) -> None:
        props = contact.get("properties") or {}
        name = f"{props.get('firstname') or ''} {props.get('lastname') or ''}".strip()
        status = "NEW" if existing is None else "UPD"
        logger.info(
            f"[Contacts Sync] {status} | ID: {contact.get('id')} | {name or props.get('email') or 'Unknown'} | "
            f"{props.get('email') or 'no-email'} | {props.get('company') or 'no-company'} | "
            f"{get_lifecycle_label(props.get('lifecyclestage'), self.lifecycle_labels)} | "
            f"Modified: {props.get('lastmodifieddate') or 'N/A'}"
        )
        for change in detect_field_changes(props, existing, self.lifecycle_labels):
            logger.info(
                f"[Contacts Sync]     {change.field}: "
                f"{(change.old_value or '(empty)')[:50]!r} -> {(change.new_value or '(empty)')[:50]!r}"
            )


async def sync_contact(
    session_factory: Callable,
    hubspot: HubSpotService,
    user_id: str,
    hubspot_contact_id: str,
    lifecycle_labels: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Refresh a single contact from HubSpot with merge semantics."""
    contact = await hubspot.get_contact(hubspot_contact_id)
    keys = {"hubspot_contact_id": str(contact.get("id") or hubspot_contact_id), "user_id": user_id}
    values = build_merged_record(contact, lifecycle_labels)

    async with session_factory() as session:
        created = await upsert_row(session, Contact, keys, values)
        await session.commit()

    logger.info(f"Synced HubSpot contact {hubspot_contact_id} ({'created' if created else 'updated'})")
    return {"hubspot_contact_id": keys["hubspot_contact_id"], "created": created}
