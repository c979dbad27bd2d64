"""Merchant history lookups: the ledger first, the record store when the ledger has no row."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any

from merchantsync.domain.model import (
    DataSource,
    InteractionType,
    MerchantData,
    MerchantProfile,
    MerchantStats,
    TimelineEntry,
)
from merchantsync.domain.records import (
    FilterKind,
    RecordFilter,
    extract_date,
    extract_number,
    extract_plain_text,
    extract_select,
    iterate_collection,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from merchantsync.domain.model import (
        InteractionRow,
        MerchantAggregateRow,
        MerchantSearchHit,
    )
    from merchantsync.domain.pages import PageLayout
    from merchantsync.domain.ports.ledger import InteractionLedger
    from merchantsync.domain.ports.record_store import RecordStore
    from merchantsync.domain.profiles import ProfileResolver
    from merchantsync.domain.records import PageRecord

log = getLogger(__name__)

MESSAGE_SUMMARY_LENGTH = 100

_FALLBACK_SUMMARIES = {
    InteractionType.CALL: "Call",
    InteractionType.MESSAGE: "Message",
    InteractionType.MAIL: "Email",
}

_OLDEST = datetime.min.replace(tzinfo=UTC)


def build_timeline(entries: Iterable[TimelineEntry]) -> list[TimelineEntry]:
    """Order entries newest first; undated entries go last."""

    return sorted(
        entries,
        key=lambda entry: (entry.occurred_at is not None, entry.occurred_at or _OLDEST),
        reverse=True,
    )


def calculate_stats(timeline: Sequence[TimelineEntry]) -> MerchantStats:
    counts = Counter(entry.interaction_type for entry in timeline)
    dated = [entry.occurred_at for entry in timeline if entry.occurred_at is not None]
    calls = [entry for entry in timeline if entry.interaction_type is InteractionType.CALL]
    sentiments = Counter(entry.sentiment for entry in calls if entry.sentiment)
    lead_scores = [entry.lead_score for entry in calls if entry.lead_score is not None]
    return MerchantStats(
        total_calls=counts[InteractionType.CALL],
        total_messages=counts[InteractionType.MESSAGE],
        total_mail=counts[InteractionType.MAIL],
        first_interaction_at=min(dated, default=None),
        last_interaction_at=max(dated, default=None),
        dominant_sentiment=sentiments.most_common(1)[0][0] if sentiments else "neutral",
        average_lead_score=sum(lead_scores) / len(lead_scores) if lead_scores else None,
    )


def profile_from_aggregate(row: MerchantAggregateRow) -> MerchantProfile:
    metadata: Mapping[str, Any] = row.metadata or {}
    tags = metadata.get("tags")
    url = metadata.get("url")
    return MerchantProfile(
        profile_id=row.profile_id,
        merchant_name=row.name,
        contact_phone=row.phone,
        contact_email=row.email,
        merchant_uuid=row.uuid,
        status=row.status,
        segment=row.segment,
        owner=row.owner,
        tags=[str(tag) for tag in tags] if isinstance(tags, list) else None,
        url=url if isinstance(url, str) else None,
        created_at=row.created_at,
    )


def entry_from_row(row: InteractionRow) -> TimelineEntry:
    return TimelineEntry(
        interaction_type=row.interaction_type,
        id=row.id,
        occurred_at=row.occurred_at,
        summary=row.summary or _FALLBACK_SUMMARIES[row.interaction_type],
        page_id=row.external_page_id,
        sentiment=row.sentiment,
        direction=row.direction,
        lead_score=row.lead_score,
        mail_thread_id=row.mail_thread_id,
    )


def _call_entry(record: PageRecord) -> TimelineEntry:
    return TimelineEntry(
        interaction_type=InteractionType.CALL,
        id=extract_plain_text(record.property("Call ID")) or record.id,
        occurred_at=extract_date(record.property("Created At")) or record.created_time,
        summary=extract_plain_text(record.property("AI Summary")) or "Call",
        page_id=record.id,
        sentiment=extract_select(record.property("AI Sentiment")),
        direction=extract_select(record.property("Direction")),
        lead_score=extract_number(record.property("Lead Score")),
    )


def _message_entry(record: PageRecord) -> TimelineEntry:
    content = extract_plain_text(record.property("Content"))
    summary = extract_plain_text(record.property("AI Summary"))
    if summary is None and content is not None:
        summary = content[:MESSAGE_SUMMARY_LENGTH]
    return TimelineEntry(
        interaction_type=InteractionType.MESSAGE,
        id=extract_plain_text(record.property("Message ID")) or record.id,
        occurred_at=extract_date(record.property("Created At")) or record.created_time,
        summary=summary or "Message",
        page_id=record.id,
        sentiment=extract_select(record.property("AI Sentiment")),
        direction=extract_select(record.property("Direction")),
        lead_score=extract_number(record.property("Lead Score")),
    )


def _mail_entry(record: PageRecord) -> TimelineEntry:
    return TimelineEntry(
        interaction_type=InteractionType.MAIL,
        id=extract_plain_text(record.property("Message ID")) or record.id,
        occurred_at=extract_date(record.property("Created At")) or record.created_time,
        summary=extract_plain_text(record.property("Subject")) or "Email",
        page_id=record.id,
        sentiment=extract_select(record.property("AI Sentiment")),
        direction=extract_select(record.property("Direction")),
        mail_thread_id=extract_plain_text(record.property("Conversation ID")),
    )


_PAGE_READERS: dict[InteractionType, Callable[[PageRecord], TimelineEntry]] = {
    InteractionType.CALL: _call_entry,
    InteractionType.MESSAGE: _message_entry,
    InteractionType.MAIL: _mail_entry,
}


class MerchantDataService:
    """Assembles a merchant's profile, interaction timeline and stats.

    The ledger answers when it holds an aggregate row for the profile. Otherwise
    the profile and every interaction page related to it are read from the
    record store. A ledger failure is logged and served from the record store;
    record store failures propagate.
    """

    def __init__(
        self,
        ledger: InteractionLedger,
        resolver: ProfileResolver,
        store: RecordStore,
        layouts: Mapping[InteractionType, PageLayout],
        *,
        page_size: int = 100,
    ) -> None:
        self._ledger = ledger
        self._resolver = resolver
        self._store = store
        self._layouts = dict(layouts)
        self._page_size = page_size

    async def by_profile(self, profile_id: str) -> MerchantData | None:
        data = await self._from_ledger(profile_id)
        if data is not None:
            log.info("Merchant %s loaded from the ledger", profile_id)
            return data
        return await self._from_record_store(profile_id)

    async def by_phone(self, phone: str) -> MerchantData | None:
        profile_id = await self._ledger_lookup(self._ledger.find_profile_by_normalized_phone, phone)
        if profile_id is None:
            profile_id = await self._resolver.find_profile_by_phone(phone)
        if profile_id is None:
            log.warning("No merchant profile for phone %s", phone)
            return None
        return await self.by_profile(profile_id)

    async def by_email(self, email: str) -> MerchantData | None:
        profile_id = await self._ledger_lookup(self._ledger.find_profile_by_normalized_email, email)
        if profile_id is None:
            profile_id = await self._resolver.find_profile_by_email(email)
        if profile_id is None:
            log.warning("No merchant profile for email %s", email)
            return None
        return await self.by_profile(profile_id)

    async def search(self, query: str, limit: int = 10) -> list[MerchantSearchHit]:
        hits = await asyncio.to_thread(self._ledger.search_merchants, query, limit)
        log.info("Merchant search for %r matched %d merchant(s)", query, len(hits))
        return hits

    async def _ledger_lookup(
        self, finder: Callable[[str | None], str | None], identifier: str
    ) -> str | None:
        try:
            return await asyncio.to_thread(finder, identifier)
        except Exception:
            log.exception("Ledger lookup failed for %s", identifier)
            return None

    async def _from_ledger(self, profile_id: str) -> MerchantData | None:
        try:
            row = await asyncio.to_thread(self._ledger.get_merchant, profile_id)
            if row is None:
                return None
            interactions = await asyncio.to_thread(
                self._ledger.interactions_for_merchant, profile_id
            )
            threads = await asyncio.to_thread(
                self._ledger.mail_threads_for_merchant, profile_id
            )
        except Exception:
            log.exception("Ledger read failed for merchant %s", profile_id)
            return None
        timeline = build_timeline(entry_from_row(row) for row in interactions)
        return MerchantData(
            profile=profile_from_aggregate(row),
            timeline=timeline,
            stats=calculate_stats(timeline),
            source=DataSource.LEDGER,
            mail_threads=threads,
        )

    async def _from_record_store(self, profile_id: str) -> MerchantData | None:
        profile = await self._resolver.get_profile(profile_id)
        if profile is None:
            log.warning("Merchant profile %s not found", profile_id)
            return None

        entries: list[TimelineEntry] = []
        for interaction_type, layout in self._layouts.items():
            reader = _PAGE_READERS[interaction_type]
            filter_ = RecordFilter(
                property=layout.relation_property,
                kind=FilterKind.RELATION_CONTAINS,
                value=profile_id,
            )
            async for record in iterate_collection(
                self._store, layout.collection_id, filter_=filter_, page_size=self._page_size
            ):
                entries.append(reader(record))

        timeline = build_timeline(entries)
        log.info(
            "Merchant %s loaded from the record store with %d interaction(s)",
            profile_id,
            len(timeline),
        )
        return MerchantData(
            profile=profile,
            timeline=timeline,
            stats=calculate_stats(timeline),
            source=DataSource.RECORD_STORE,
        )
