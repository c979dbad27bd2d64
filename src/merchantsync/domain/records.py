"""Page-oriented record primitives shared by the resolver, registry and reconciler.

Records carry their properties in the page store's native shape, for example
``{"Name": {"type": "title", "title": [{"plain_text": "Acme"}]}}``. The readers in
this module tolerate every shape a property has historically been stored in
(typed field, free text, bare string) and the builders produce the payloads the
store accepts on create/update.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from merchantsync.domain.ports.record_store import RecordStore

type PropertyValue = Mapping[str, Any]
type Properties = Mapping[str, PropertyValue]


@dataclass(frozen=True, slots=True)
class PageRecord:
    id: str
    properties: Properties = field(default_factory=dict)
    created_time: datetime | None = None
    url: str | None = None

    def property(self, name: str | None) -> PropertyValue | None:
        if name is None:
            return None
        return self.properties.get(name)


class FilterKind(StrEnum):
    PHONE_EQUALS = "phone_equals"
    TEXT_CONTAINS = "text_contains"
    TEXT_EQUALS = "text_equals"
    EMAIL_EQUALS = "email_equals"
    TITLE_EQUALS = "title_equals"
    RELATION_CONTAINS = "relation_contains"


@dataclass(frozen=True, slots=True)
class RecordFilter:
    property: str
    kind: FilterKind
    value: str


@dataclass(frozen=True, slots=True)
class SortOrder:
    property: str | None = None
    timestamp: str | None = None
    descending: bool = False


@dataclass(frozen=True, slots=True)
class QueryPage:
    results: list[PageRecord]
    has_more: bool = False
    next_cursor: str | None = None


# Readers ----------------------------------------------------------------------


def _join_segments(segments: object) -> str | None:
    if not isinstance(segments, list):
        return None
    parts: list[str] = []
    for segment in segments:
        if isinstance(segment, Mapping):
            text = segment.get("plain_text")
            if text is None:
                inner = segment.get("text")
                text = inner.get("content") if isinstance(inner, Mapping) else None
            if isinstance(text, str):
                parts.append(text)
    joined = "".join(parts).strip()
    return joined or None


def extract_plain_text(prop: object) -> str | None:
    """Return the text of a title, rich-text or bare string property."""

    if prop is None:
        return None
    if isinstance(prop, str):
        return prop.strip() or None
    if not isinstance(prop, Mapping):
        return None
    for key in ("rich_text", "title"):
        text = _join_segments(prop.get(key))
        if text is not None:
            return text
    return None


def extract_title(prop: object) -> str | None:
    if isinstance(prop, Mapping):
        return _join_segments(prop.get("title"))
    return None


def extract_phone(prop: object) -> str | None:
    if isinstance(prop, Mapping):
        value = prop.get("phone_number")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return extract_plain_text(prop)


def extract_email(prop: object) -> str | None:
    if isinstance(prop, Mapping):
        value = prop.get("email")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return extract_plain_text(prop)


def extract_select(prop: object) -> str | None:
    """Return the option name of a select or status property."""

    if not isinstance(prop, Mapping):
        return None
    for key in ("select", "status"):
        option = prop.get(key)
        if isinstance(option, Mapping):
            name = option.get("name")
            if isinstance(name, str):
                return name
    return None


def extract_multi_select(prop: object) -> list[str] | None:
    if not isinstance(prop, Mapping):
        return None
    options = prop.get("multi_select")
    if not isinstance(options, list):
        return None
    return [
        option["name"]
        for option in options
        if isinstance(option, Mapping) and isinstance(option.get("name"), str)
    ]


def extract_person(prop: object) -> str | None:
    """Return the first person's name (or email) of a people property, else its text."""

    if isinstance(prop, Mapping):
        people = prop.get("people")
        if isinstance(people, list) and people:
            first = people[0]
            if isinstance(first, Mapping):
                name = first.get("name")
                if isinstance(name, str) and name:
                    return name
                person = first.get("person")
                email = person.get("email") if isinstance(person, Mapping) else first.get("email")
                if isinstance(email, str) and email:
                    return email
    return extract_plain_text(prop)


def extract_relation_ids(prop: object) -> list[str]:
    if not isinstance(prop, Mapping):
        return []
    relation = prop.get("relation")
    if not isinstance(relation, list):
        return []
    return [
        item["id"] for item in relation if isinstance(item, Mapping) and isinstance(item.get("id"), str)
    ]


def extract_date(prop: object) -> datetime | None:
    """Return the start of a date property; naive values are taken as UTC."""

    if not isinstance(prop, Mapping):
        return None
    date = prop.get("date")
    start = date.get("start") if isinstance(date, Mapping) else None
    if not isinstance(start, str):
        return None
    try:
        parsed = datetime.fromisoformat(start.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def extract_number(prop: object) -> float | None:
    if not isinstance(prop, Mapping):
        return None
    value = prop.get("number")
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


# Builders ---------------------------------------------------------------------

_MAX_TEXT_LENGTH = 2000


def title_property(text: str) -> dict[str, Any]:
    return {"title": [{"type": "text", "text": {"content": text[:_MAX_TEXT_LENGTH]}}]}


def rich_text_property(text: str | None) -> dict[str, Any]:
    if not text:
        return {"rich_text": []}
    return {"rich_text": [{"type": "text", "text": {"content": text[:_MAX_TEXT_LENGTH]}}]}


def phone_property(number: str | None) -> dict[str, Any]:
    return {"phone_number": number}


def email_property(address: str | None) -> dict[str, Any]:
    return {"email": address}


def select_property(name: str | None) -> dict[str, Any]:
    return {"select": {"name": name} if name else None}


def number_property(value: float | None) -> dict[str, Any]:
    return {"number": value}


def date_property(value: datetime | None) -> dict[str, Any]:
    return {"date": {"start": value.isoformat()} if value else None}


def url_property(value: str | None) -> dict[str, Any]:
    return {"url": value}


def relation_property(*ids: str) -> dict[str, Any]:
    return {"relation": [{"id": record_id} for record_id in ids]}


# Pagination -------------------------------------------------------------------


async def iterate_collection(
    store: RecordStore,
    collection_id: str,
    *,
    filter_: RecordFilter | None = None,
    page_size: int = 100,
) -> AsyncIterator[PageRecord]:
    """Yield every record of a collection, following the store's cursors."""

    cursor: str | None = None
    while True:
        page = await store.query_collection(
            collection_id,
            filter_=filter_,
            page_size=page_size,
            cursor=cursor,
        )
        for record in page.results:
            yield record
        if not page.has_more or not page.next_cursor:
            return
        cursor = page.next_cursor
