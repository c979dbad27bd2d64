"""Create or update the per-event pages in the calls, messages and mail collections."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any

from merchantsync.domain.records import (
    FilterKind,
    RecordFilter,
    date_property,
    email_property,
    number_property,
    phone_property,
    relation_property,
    rich_text_property,
    select_property,
    title_property,
    url_property,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from merchantsync.domain.model import (
        CallEvent,
        InteractionAnalysis,
        MailEvent,
        MerchantContext,
        MessageEvent,
    )
    from merchantsync.domain.ports.record_store import RecordStore

log = getLogger(__name__)

type PageProperties = dict[str, Mapping[str, Any]]


@dataclass(frozen=True, slots=True)
class PageLayout:
    """Where event pages live and how they are keyed."""

    collection_id: str
    resource_property: str
    resource_filter: FilterKind = FilterKind.TITLE_EQUALS
    relation_property: str = "Merchant"
    uuid_property: str = "Merchant UUID"


def call_layout(collection_id: str) -> PageLayout:
    return PageLayout(collection_id=collection_id, resource_property="Call ID")


def message_layout(collection_id: str) -> PageLayout:
    return PageLayout(collection_id=collection_id, resource_property="Message ID")


def mail_layout(collection_id: str) -> PageLayout:
    # mail pages are titled by subject, the id lives in a text column
    return PageLayout(
        collection_id=collection_id,
        resource_property="Message ID",
        resource_filter=FilterKind.TEXT_EQUALS,
    )


class InteractionPageWriter:
    """Idempotent page sync: the event id is the natural key of its page."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def find_page(self, layout: PageLayout, resource_id: str) -> str | None:
        filter_ = RecordFilter(
            property=layout.resource_property, kind=layout.resource_filter, value=resource_id
        )
        page = await self._store.query_collection(
            layout.collection_id, filter_=filter_, page_size=1
        )
        return page.results[0].id if page.results else None

    async def upsert(
        self,
        layout: PageLayout,
        resource_id: str,
        properties: Mapping[str, Mapping[str, Any]],
        merchant: MerchantContext,
    ) -> str:
        payload: PageProperties = {
            **properties,
            "Synced At": date_property(datetime.now(UTC)),
        }
        if merchant.profile_id:
            payload[layout.relation_property] = relation_property(merchant.profile_id)
        if merchant.merchant_uuid:
            payload[layout.uuid_property] = rich_text_property(merchant.merchant_uuid)

        existing = await self.find_page(layout, resource_id)
        if existing is not None:
            await self._store.update_record_properties(existing, payload)
            log.info("Updated page %s for %s", existing, resource_id)
            return existing

        record = await self._store.create_record(layout.collection_id, payload)
        log.info("Created page %s for %s", record.id, resource_id)
        return record.id


def call_page_properties(
    event: CallEvent, analysis: InteractionAnalysis | None = None
) -> PageProperties:
    properties: PageProperties = {
        "Call ID": title_property(event.id),
        "Direction": select_property(event.direction),
        "Duration": number_property(event.duration_seconds),
        "Participants": rich_text_property(", ".join(event.participants)),
        "Phone Number ID": rich_text_property(event.phone_number_id),
        "Created At": date_property(event.created_at),
        "Transcript": rich_text_property(event.transcript),
        "Recording URL": url_property(event.recording_url),
        "Voicemail URL": url_property(event.voicemail_url),
    }
    properties.update(_analysis_properties(analysis))
    return properties


def message_page_properties(
    event: MessageEvent, analysis: InteractionAnalysis | None = None
) -> PageProperties:
    properties: PageProperties = {
        "Message ID": title_property(event.id),
        "Direction": select_property(event.direction),
        "From": phone_property(event.sender),
        "To": phone_property(event.recipients[0] if event.recipients else None),
        "Content": rich_text_property(event.text),
        "Status": select_property(event.status),
        "Phone Number ID": rich_text_property(event.phone_number_id),
        "Created At": date_property(event.created_at),
        "Media URLs": rich_text_property("\n".join(event.media)),
    }
    properties.update(_analysis_properties(analysis))
    return properties


def mail_page_properties(
    event: MailEvent, analysis: InteractionAnalysis | None = None
) -> PageProperties:
    properties: PageProperties = {
        "Subject": title_property(event.subject or "(No Subject)"),
        "Message ID": rich_text_property(event.id),
        "From": email_property(event.sender),
        "To": rich_text_property(", ".join(event.recipients)),
        "CC": rich_text_property(", ".join(event.cc)),
        "BCC": rich_text_property(", ".join(event.bcc)),
        "Body": rich_text_property(event.body),
        "Conversation ID": rich_text_property(event.conversation_id()),
        "Direction": select_property(event.direction),
        "Status": select_property(event.status),
        "Created At": date_property(event.created_at),
    }
    properties.update(_analysis_properties(analysis))
    return properties


def _analysis_properties(analysis: InteractionAnalysis | None) -> PageProperties:
    if analysis is None:
        return {}
    return {
        "AI Summary": rich_text_property(analysis.summary),
        "AI Sentiment": select_property(analysis.sentiment),
        "AI Category": select_property(analysis.category),
        "AI Action Items": rich_text_property("\n".join(analysis.action_items)),
        "Lead Score": number_property(analysis.lead_score),
        "AI Keywords": rich_text_property(json.dumps(analysis.keywords)),
    }
