"""Canonical merchant registry: one stable UUID per normalized merchant name."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from merchantsync.config.env import require_non_blank
from merchantsync.domain.identity import normalize_merchant_name
from merchantsync.domain.model import CanonicalMerchantRecord
from merchantsync.domain.ports.record_store import RecordStoreError
from merchantsync.domain.records import extract_plain_text, iterate_collection, rich_text_property

if TYPE_CHECKING:
    from collections.abc import Mapping

    from merchantsync.domain.ports.record_store import RecordStore
    from merchantsync.domain.records import PageRecord

log = getLogger(__name__)

_NON_TOKEN = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True, slots=True)
class CanonicalFields:
    """Property names of the authoritative merchant collection."""

    name: str = "Name"
    merchant_uuid: str = "Merchant UUID"


def generate_merchant_uuid(record_id: str) -> str:
    """Derive a UUID from the source record id so every run mints the same value."""

    token = _NON_TOKEN.sub("", record_id.lower())
    if not token:
        raise ValueError(f"Cannot derive a merchant UUID from record id {record_id!r}")
    return token


class CanonicalMerchantRegistry:
    """Process-local map of normalized merchant name to canonical UUID.

    The authoritative collection is paginated once per instance; records without a
    UUID get one derived from their id and written back. Call ``reset()`` to force
    a reload, e.g. between tests or after an out-of-band bulk edit.
    """

    def __init__(
        self,
        store: RecordStore,
        collection_id: str,
        *,
        fields: CanonicalFields | None = None,
        page_size: int = 100,
    ) -> None:
        self._store = store
        self._collection_id = require_non_blank("canonical collection id", collection_id)
        self._fields = fields or CanonicalFields()
        self._page_size = page_size
        self._loading: asyncio.Task[dict[str, CanonicalMerchantRecord]] | None = None
        self._records: dict[str, CanonicalMerchantRecord] | None = None

    @property
    def loaded(self) -> bool:
        return self._records is not None

    @property
    def records(self) -> Mapping[str, CanonicalMerchantRecord]:
        return dict(self._records or {})

    def reset(self) -> None:
        self._records = None
        self._loading = None

    async def load(self) -> Mapping[str, CanonicalMerchantRecord]:
        if self._records is not None:
            return self._records
        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())
        try:
            records = await asyncio.shield(self._loading)
        except BaseException:
            self._loading = None
            raise
        self._records = records
        return records

    async def lookup_by_name(self, name: str | None) -> str | None:
        normalized = normalize_merchant_name(name)
        if not normalized:
            return None
        records = await self.load()
        record = records.get(normalized)
        return record.uuid if record else None

    async def _load(self) -> dict[str, CanonicalMerchantRecord]:
        records: dict[str, CanonicalMerchantRecord] = {}
        scanned = 0
        backfilled = 0
        async for page in iterate_collection(
            self._store, self._collection_id, page_size=self._page_size
        ):
            scanned += 1
            normalized = normalize_merchant_name(extract_plain_text(page.property(self._fields.name)))
            if not normalized:
                continue
            uuid = extract_plain_text(page.property(self._fields.merchant_uuid))
            if uuid is None:
                uuid = await self._backfill_uuid(page)
                if uuid is None:
                    continue
                backfilled += 1
            if normalized in records:
                log.warning(
                    "Duplicate canonical merchant name %r on %s; keeping %s",
                    normalized,
                    page.id,
                    records[normalized].source_page_id,
                )
                continue
            records[normalized] = CanonicalMerchantRecord(
                normalized_name=normalized, uuid=uuid, source_page_id=page.id
            )

        log.info(
            "Loaded canonical merchant registry: records=%d, scanned=%d, backfilled=%d",
            len(records),
            scanned,
            backfilled,
        )
        return records

    async def _backfill_uuid(self, page: PageRecord) -> str | None:
        uuid = generate_merchant_uuid(page.id)
        try:
            await self._store.update_record_properties(
                page.id, {self._fields.merchant_uuid: rich_text_property(uuid)}
            )
        except RecordStoreError:
            log.exception("Failed to persist generated merchant UUID for %s", page.id)
            return None
        return uuid
