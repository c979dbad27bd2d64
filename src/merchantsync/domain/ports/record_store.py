"""Port for the page-oriented external record store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from typing import Any

    from merchantsync.domain.records import PageRecord, QueryPage, RecordFilter, SortOrder


class RecordStoreError(RuntimeError):
    """Raised by record store adapters when a request fails in transit or is rejected."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@runtime_checkable
class RecordStore(Protocol):
    async def get_record(self, record_id: str) -> PageRecord | None:
        """Return the record or ``None`` if the store does not know it."""
        ...

    async def query_collection(
        self,
        collection_id: str,
        *,
        filter_: RecordFilter | None = None,
        sorts: Sequence[SortOrder] | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> QueryPage: ...

    async def update_record_properties(
        self, record_id: str, properties: Mapping[str, Mapping[str, Any]]
    ) -> None: ...

    async def create_record(
        self, collection_id: str, properties: Mapping[str, Mapping[str, Any]]
    ) -> PageRecord: ...
