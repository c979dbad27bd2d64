"""Record store adapter for the Notion REST API."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from merchantsync.adapters.http_resilience import ResilientClient
from merchantsync.config.env import require_non_blank
from merchantsync.config.record_store import NOTION_API_VERSION, default_notion_resilience
from merchantsync.domain.ports.record_store import RecordStoreError
from merchantsync.domain.records import FilterKind

from .schema import NotionBaseModel, NotionErrorResponse, NotionPage, NotionQueryResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from types import TracebackType

    from merchantsync.config.http_resilience import ResilienceConfig
    from merchantsync.domain.records import PageRecord, QueryPage, RecordFilter, SortOrder

log = getLogger(__name__)

MAX_PAGE_SIZE = 100

_FILTER_SHAPES: dict[FilterKind, tuple[str, str]] = {
    FilterKind.PHONE_EQUALS: ("phone_number", "equals"),
    FilterKind.TEXT_CONTAINS: ("rich_text", "contains"),
    FilterKind.TEXT_EQUALS: ("rich_text", "equals"),
    FilterKind.EMAIL_EQUALS: ("email", "equals"),
    FilterKind.TITLE_EQUALS: ("title", "equals"),
    FilterKind.RELATION_CONTAINS: ("relation", "contains"),
}


def translate_filter(filter_: RecordFilter) -> dict[str, Any]:
    type_key, operator = _FILTER_SHAPES[filter_.kind]
    return {"property": filter_.property, type_key: {operator: filter_.value}}


def translate_sort(sort: SortOrder) -> dict[str, str]:
    direction = "descending" if sort.descending else "ascending"
    if sort.timestamp is not None:
        return {"timestamp": sort.timestamp, "direction": direction}
    if sort.property is None:
        raise ValueError("A sort needs a property or a timestamp")
    return {"property": sort.property, "direction": direction}


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class NotionRecordStore:
    """``RecordStore`` implementation that talks to the Notion API over ``ResilientClient``."""

    api_key: str
    resilience: ResilienceConfig = field(default_factory=default_notion_resilience)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.api_key = require_non_blank("NOTION_API_KEY", self.api_key)

    async def __aenter__(self) -> NotionRecordStore:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # RecordStore --------------------------------------------------------------

    async def get_record(self, record_id: str) -> PageRecord | None:
        response = await self._request("GET", f"pages/{record_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            log.info("Notion page %s not found", record_id)
            return None
        page = self._parse(NotionPage, self._checked(response, f"get page {record_id}"))
        return None if page.archived else page.to_record()

    async def query_collection(
        self,
        collection_id: str,
        *,
        filter_: RecordFilter | None = None,
        sorts: Sequence[SortOrder] | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> QueryPage:
        body: dict[str, Any] = {}
        if filter_ is not None:
            body["filter"] = translate_filter(filter_)
        if sorts:
            body["sorts"] = [translate_sort(sort) for sort in sorts]
        if page_size is not None:
            body["page_size"] = max(1, min(page_size, MAX_PAGE_SIZE))
        if cursor is not None:
            body["start_cursor"] = cursor

        response = await self._request("POST", f"databases/{collection_id}/query", json=body)
        payload = self._checked(response, f"query database {collection_id}")
        return self._parse(NotionQueryResponse, payload).to_page()

    async def update_record_properties(
        self, record_id: str, properties: Mapping[str, Mapping[str, Any]]
    ) -> None:
        response = await self._request(
            "PATCH", f"pages/{record_id}", json={"properties": dict(properties)}
        )
        self._checked(response, f"update page {record_id}")
        log.debug("Updated %d propert(ies) on page %s", len(properties), record_id)

    async def create_record(
        self, collection_id: str, properties: Mapping[str, Mapping[str, Any]]
    ) -> PageRecord:
        body = {"parent": {"database_id": collection_id}, "properties": dict(properties)}
        # A create whose response is lost must not be resent, or the page is duplicated.
        response = await self._request("POST", "pages", json=body, retry=False)
        payload = self._checked(response, f"create page in {collection_id}")
        return self._parse(NotionPage, payload).to_record()

    # transport ----------------------------------------------------------------

    def _get_client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.resilience)
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        retry: bool = True,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": NOTION_API_VERSION,
        }
        try:
            return await self._get_client().request(
                method, path, json=json, headers=headers, retry=retry
            )
        except httpx.HTTPError as exc:
            raise RecordStoreError(f"Notion {method} {path} failed: {exc}") from exc

    def _checked(self, response: httpx.Response, action: str) -> object:
        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                raise RecordStoreError(
                    f"Notion {action} returned invalid JSON", status_code=response.status_code
                ) from exc

        message = response.text
        try:
            error = NotionErrorResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            pass
        else:
            message = error.message or error.code or message
        raise RecordStoreError(
            f"Notion {action} failed ({response.status_code}): {message}",
            status_code=response.status_code,
        )

    @staticmethod
    def _parse[M: NotionBaseModel](model: type[M], payload: object) -> M:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise RecordStoreError(f"Unexpected Notion payload: {exc}") from exc
