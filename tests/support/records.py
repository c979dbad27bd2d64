"""In-memory record store fake and record builders."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from merchantsync.domain.ports.record_store import RecordStoreError
from merchantsync.domain.records import (
    FilterKind,
    PageRecord,
    QueryPage,
    email_property,
    extract_plain_text,
    extract_relation_ids,
    extract_title,
    phone_property,
    relation_property,
    rich_text_property,
    title_property,
)

PROFILES = "profiles-db"
CANONICAL = "canonical-db"
CALLS = "calls-db"
MESSAGES = "messages-db"
MAIL = "mail-db"

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from merchantsync.domain.records import RecordFilter, SortOrder


def _text(prop: Mapping[str, Any]) -> str | None:
    return extract_plain_text(prop) if "rich_text" in prop else None


_PREDICATES: dict[FilterKind, Callable[[Mapping[str, Any], str], bool]] = {
    FilterKind.PHONE_EQUALS: lambda prop, value: prop.get("phone_number") == value,
    FilterKind.EMAIL_EQUALS: lambda prop, value: prop.get("email") == value,
    FilterKind.TITLE_EQUALS: lambda prop, value: extract_title(prop) == value,
    FilterKind.TEXT_EQUALS: lambda prop, value: _text(prop) == value,
    FilterKind.TEXT_CONTAINS: lambda prop, value: value in (_text(prop) or ""),
    FilterKind.RELATION_CONTAINS: lambda prop, value: value in extract_relation_ids(prop),
}


def _matches(record: PageRecord, filter_: RecordFilter) -> bool:
    prop = record.property(filter_.property)
    if prop is None:
        return False
    return _PREDICATES[filter_.kind](prop, filter_.value)


@dataclass
class InMemoryRecordStore:
    """``RecordStore`` fake that evaluates filters the way the page store does."""

    collections: dict[str, list[str]] = field(default_factory=dict)
    records: dict[str, PageRecord] = field(default_factory=dict)
    queries: list[tuple[str, RecordFilter | None]] = field(default_factory=list)
    get_calls: list[str] = field(default_factory=list)
    updates: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    failing_collections: set[str] = field(default_factory=set)
    failing_filters: set[FilterKind] = field(default_factory=set)
    failing_updates: set[str] = field(default_factory=set)
    failing_gets: set[str] = field(default_factory=set)
    crashing_gets: set[str] = field(default_factory=set)
    get_delay: float = 0.0
    _next_id: int = 0

    def add(self, collection_id: str, record: PageRecord) -> PageRecord:
        self.collections.setdefault(collection_id, []).append(record.id)
        self.records[record.id] = record
        return record

    def properties_of(self, record_id: str) -> Mapping[str, Any]:
        return self.records[record_id].properties

    async def get_record(self, record_id: str) -> PageRecord | None:
        self.get_calls.append(record_id)
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        if record_id in self.failing_gets:
            raise RecordStoreError(f"get {record_id} failed", status_code=503)
        if record_id in self.crashing_gets:
            raise ValueError(f"malformed page {record_id}")
        return self.records.get(record_id)

    async def query_collection(
        self,
        collection_id: str,
        *,
        filter_: RecordFilter | None = None,
        sorts: Sequence[SortOrder] | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> QueryPage:
        _ = sorts
        self.queries.append((collection_id, filter_))
        if collection_id in self.failing_collections:
            raise RecordStoreError(f"query {collection_id} failed", status_code=502)
        if filter_ is not None and filter_.kind in self.failing_filters:
            raise RecordStoreError(f"{filter_.kind} query failed", status_code=502)

        ids = self.collections.get(collection_id, [])
        matching = [
            self.records[record_id]
            for record_id in ids
            if filter_ is None or _matches(self.records[record_id], filter_)
        ]
        start = int(cursor) if cursor else 0
        size = page_size or 100
        chunk = matching[start : start + size]
        end = start + len(chunk)
        has_more = end < len(matching)
        return QueryPage(results=chunk, has_more=has_more, next_cursor=str(end) if has_more else None)

    async def update_record_properties(
        self, record_id: str, properties: Mapping[str, Mapping[str, Any]]
    ) -> None:
        if record_id in self.failing_updates:
            raise RecordStoreError(f"update {record_id} failed", status_code=409)
        self.updates.append((record_id, dict(properties)))
        record = self.records[record_id]
        self.records[record_id] = PageRecord(
            id=record.id,
            properties={**record.properties, **properties},
            created_time=record.created_time,
            url=record.url,
        )

    async def create_record(
        self, collection_id: str, properties: Mapping[str, Mapping[str, Any]]
    ) -> PageRecord:
        self._next_id += 1
        record = PageRecord(
            id=f"created-{self._next_id}",
            properties=dict(properties),
            created_time=datetime.now(UTC),
        )
        return self.add(collection_id, record)


def profile_record(
    record_id: str,
    *,
    name: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    merchant_uuid: str | None = None,
    phone_as_text: bool = False,
    extra: Mapping[str, Any] | None = None,
) -> PageRecord:
    properties: dict[str, Any] = {}
    if name is not None:
        properties["Name"] = title_property(name)
    if phone is not None:
        properties["Phone"] = rich_text_property(phone) if phone_as_text else phone_property(phone)
    if email is not None:
        properties["Email"] = email_property(email)
    if merchant_uuid is not None:
        properties["Merchant UUID"] = rich_text_property(merchant_uuid)
    properties.update(extra or {})
    return PageRecord(
        id=record_id,
        properties=properties,
        created_time=datetime(2024, 1, 1, tzinfo=UTC),
        url=f"https://notion.so/{record_id}",
    )


def canonical_record(record_id: str, name: str, merchant_uuid: str | None = None) -> PageRecord:
    properties: dict[str, Any] = {"Name": title_property(name)}
    if merchant_uuid is not None:
        properties["Merchant UUID"] = rich_text_property(merchant_uuid)
    return PageRecord(id=record_id, properties=properties)


def interaction_record(
    record_id: str,
    *,
    profile_id: str | None = None,
    merchant_uuid: str | None = None,
    merchant_name: str | None = None,
) -> PageRecord:
    properties: dict[str, Any] = {"Call ID": title_property(record_id)}
    if profile_id is not None:
        properties["Merchant"] = relation_property(profile_id)
    if merchant_uuid is not None:
        properties["Merchant UUID"] = rich_text_property(merchant_uuid)
    if merchant_name is not None:
        properties["Merchant Name"] = rich_text_property(merchant_name)
    return PageRecord(id=record_id, properties=properties)
