"""Repair merchant UUIDs across every collection that references a merchant."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from merchantsync.config.env import require_non_blank
from merchantsync.domain.model import MerchantUuidGap, ReconciliationResult
from merchantsync.domain.ports.record_store import RecordStoreError
from merchantsync.domain.records import (
    extract_plain_text,
    extract_relation_ids,
    iterate_collection,
    rich_text_property,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from merchantsync.domain.ports.record_store import RecordStore
    from merchantsync.domain.profiles import ProfileResolver
    from merchantsync.domain.records import PageRecord
    from merchantsync.domain.registry import CanonicalMerchantRegistry

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CollectionSpec:
    """How one collection references merchants.

    Records are resolved through ``relation_property`` (a relation to the profile
    collection) first and through ``name_property`` (free-text merchant name looked
    up in the canonical registry) second. Primary collections are reconciled
    before the others and invalidate the resolver memo when they change.
    """

    name: str
    collection_id: str
    uuid_property: str = "Merchant UUID"
    relation_property: str | None = None
    name_property: str | None = None
    primary: bool = False

    def __post_init__(self) -> None:
        require_non_blank(f"{self.name} collection id", self.collection_id)
        if self.relation_property is None and self.name_property is None:
            raise ValueError(f"Collection {self.name} needs a relation or name property")


@dataclass(frozen=True, slots=True)
class _Resolution:
    current: str | None
    resolved: str | None
    name_hint: str | None


class MerchantIdentityReconciler:
    """Walks every configured collection and writes the canonical merchant UUID.

    Collections are processed independently and writes are not transactional: a
    failure leaves earlier writes in place, is logged, and the pass moves on.
    """

    def __init__(
        self,
        store: RecordStore,
        resolver: ProfileResolver,
        registry: CanonicalMerchantRegistry,
        collections: Sequence[CollectionSpec],
        *,
        page_size: int = 100,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._registry = registry
        # primary collections first so dependents see their repaired UUIDs
        self._collections = tuple(sorted(collections, key=lambda spec: not spec.primary))
        self._page_size = page_size

    @property
    def collections(self) -> tuple[CollectionSpec, ...]:
        return self._collections

    async def reconcile(self) -> ReconciliationResult:
        result = ReconciliationResult()
        for spec in self._collections:
            try:
                await self._reconcile_collection(spec, result)
            except RecordStoreError:
                log.exception("Reconciliation of %s stopped early", spec.name)
                result.failed_collections.append(spec.name)

        log.info(
            "Merchant UUID reconciliation finished: scanned=%d, updated=%d, missing=%d, "
            "failed_collections=%s",
            result.scanned,
            result.updated,
            len(result.missing),
            result.failed_collections,
        )
        return result

    async def repair_merchant_uuid(self, gap: MerchantUuidGap) -> str | None:
        spec = self._spec_for(gap.collection_id)
        if spec is None:
            log.warning("No collection configured for gap %s in %s", gap.record_id, gap.collection_id)
            return None
        try:
            record = await self._store.get_record(gap.record_id)
        except RecordStoreError as exc:
            log.warning("Failed to fetch %s for repair: %s", gap.record_id, exc)
            return None
        if record is None:
            log.warning("Record %s no longer exists in %s", gap.record_id, spec.name)
            return None

        resolution = await self._resolve(spec, record)
        if resolution.resolved is None:
            log.info("Merchant UUID for %s in %s is still unresolvable", record.id, spec.name)
            return None
        if resolution.resolved != resolution.current and not await self._write(
            spec, record.id, resolution.resolved
        ):
            return None
        return resolution.resolved

    async def _reconcile_collection(self, spec: CollectionSpec, result: ReconciliationResult) -> None:
        updated = 0
        missing = 0
        async for record in iterate_collection(
            self._store, spec.collection_id, page_size=self._page_size
        ):
            result.scanned += 1
            resolution = await self._resolve(spec, record)
            if resolution.resolved is None:
                result.missing.append(self._gap(spec, record, resolution.name_hint))
                missing += 1
                continue
            if resolution.resolved == resolution.current:
                continue
            if await self._write(spec, record.id, resolution.resolved):
                result.updated += 1
                updated += 1
            else:
                result.missing.append(self._gap(spec, record, resolution.name_hint))
                missing += 1
        log.info("Reconciled %s: updated=%d, missing=%d", spec.name, updated, missing)
        if spec.primary and updated:
            self._resolver.reset()

    async def _resolve(self, spec: CollectionSpec, record: PageRecord) -> _Resolution:
        current = extract_plain_text(record.property(spec.uuid_property))
        name_hint = extract_plain_text(record.property(spec.name_property))

        for profile_id in extract_relation_ids(record.property(spec.relation_property)):
            info = await self._resolver.get_merchant_info(profile_id)
            if name_hint is None:
                name_hint = info.name
            if info.uuid:
                return _Resolution(current=current, resolved=info.uuid, name_hint=name_hint)

        if spec.name_property is not None and name_hint:
            resolved = await self._registry.lookup_by_name(name_hint)
            return _Resolution(current=current, resolved=resolved, name_hint=name_hint)

        return _Resolution(current=current, resolved=None, name_hint=name_hint)

    async def _write(self, spec: CollectionSpec, record_id: str, uuid: str) -> bool:
        try:
            await self._store.update_record_properties(
                record_id, {spec.uuid_property: rich_text_property(uuid)}
            )
        except RecordStoreError as exc:
            log.warning("Failed to write merchant UUID to %s in %s: %s", record_id, spec.name, exc)
            return False
        log.debug("Wrote merchant UUID %s to %s in %s", uuid, record_id, spec.name)
        return True

    def _spec_for(self, collection_id: str) -> CollectionSpec | None:
        for spec in self._collections:
            if spec.collection_id == collection_id:
                return spec
        return None

    @staticmethod
    def _gap(spec: CollectionSpec, record: PageRecord, name_hint: str | None) -> MerchantUuidGap:
        return MerchantUuidGap(
            collection_name=spec.name,
            collection_id=spec.collection_id,
            record_id=record.id,
            merchant_name_hint=name_hint,
        )
