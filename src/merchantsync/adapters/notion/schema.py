"""Pydantic models describing the Notion API payloads the record store reads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from merchantsync.domain.records import PageRecord, QueryPage


class NotionBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class NotionPage(NotionBaseModel):
    id: str
    url: str | None = None
    created_time: datetime | None = None
    archived: bool = False
    properties: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def to_record(self) -> PageRecord:
        return PageRecord(
            id=self.id,
            properties=self.properties,
            created_time=self.created_time,
            url=self.url,
        )


class NotionQueryResponse(NotionBaseModel):
    results: list[NotionPage] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None

    def to_page(self) -> QueryPage:
        return QueryPage(
            results=[page.to_record() for page in self.results if not page.archived],
            has_more=self.has_more,
            next_cursor=self.next_cursor,
        )


class NotionErrorResponse(NotionBaseModel):
    status: int | None = None
    code: str | None = None
    message: str | None = None
