"""Resolve contact identifiers to merchant profile records."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from merchantsync.config.env import require_non_blank
from merchantsync.domain.identity import normalize_email, phone_lookup_formats
from merchantsync.domain.model import MerchantInfo, MerchantProfile, ProfileFields
from merchantsync.domain.ports.record_store import RecordStoreError
from merchantsync.domain.records import FilterKind, RecordFilter, rich_text_property

if TYPE_CHECKING:
    from merchantsync.domain.ports.record_store import RecordStore
    from merchantsync.domain.registry import CanonicalMerchantRegistry

log = getLogger(__name__)

# typed phone match first, then free-text contains for rows storing the phone as text
PHONE_FILTER_STRATEGIES: tuple[FilterKind, ...] = (
    FilterKind.PHONE_EQUALS,
    FilterKind.TEXT_CONTAINS,
)


@dataclass(frozen=True, slots=True)
class PhoneLookupStep:
    format: str
    strategy: FilterKind


def phone_lookup_plan(phone: str) -> list[PhoneLookupStep]:
    """Return the (format, filter strategy) pairs in the order they are tried."""

    return [
        PhoneLookupStep(format=candidate, strategy=strategy)
        for candidate in phone_lookup_formats(phone)
        for strategy in PHONE_FILTER_STRATEGIES
    ]


class ProfileResolver:
    """Finds merchant profiles in the record store and memoizes their merchant info.

    ``get_merchant_info`` results live for the lifetime of the instance; a new
    process (or ``reset()``) starts from an empty memo.
    """

    def __init__(
        self,
        store: RecordStore,
        collection_id: str,
        registry: CanonicalMerchantRegistry,
        *,
        fields: ProfileFields | None = None,
    ) -> None:
        self._store = store
        self._collection_id = require_non_blank("profile collection id", collection_id)
        self._registry = registry
        self._fields = fields or ProfileFields()
        self._merchant_info: dict[str, asyncio.Task[MerchantInfo | None]] = {}

    @property
    def collection_id(self) -> str:
        return self._collection_id

    @property
    def fields(self) -> ProfileFields:
        return self._fields

    def reset(self) -> None:
        self._merchant_info.clear()

    async def find_profile_by_phone(self, phone: str | None) -> str | None:
        if not phone or not phone.strip():
            return None
        plan = phone_lookup_plan(phone)
        log.debug("Trying phone formats %s", [step.format for step in plan])

        for step in plan:
            filter_ = RecordFilter(property=self._fields.phone, kind=step.strategy, value=step.format)
            try:
                page = await self._store.query_collection(
                    self._collection_id, filter_=filter_, page_size=1
                )
            except RecordStoreError as exc:
                log.warning(
                    "Profile phone query failed (format=%s, strategy=%s): %s",
                    step.format,
                    step.strategy,
                    exc,
                )
                continue
            if page.results:
                profile_id = page.results[0].id
                log.info(
                    "Found profile %s for phone %s (format=%s, strategy=%s)",
                    profile_id,
                    phone,
                    step.format,
                    step.strategy,
                )
                return profile_id

        log.warning("No profile found for phone %s after %d attempts", phone, len(plan))
        return None

    async def find_profile_by_email(self, email: str | None) -> str | None:
        normalized = normalize_email(email)
        if normalized is None:
            return None
        filter_ = RecordFilter(
            property=self._fields.email, kind=FilterKind.EMAIL_EQUALS, value=normalized
        )
        try:
            page = await self._store.query_collection(
                self._collection_id, filter_=filter_, page_size=1
            )
        except RecordStoreError as exc:
            log.warning("Profile email query failed for %s: %s", normalized, exc)
            return None
        if not page.results:
            log.warning("No profile found for email %s", normalized)
            return None
        profile_id = page.results[0].id
        log.info("Found profile %s for email %s", profile_id, normalized)
        return profile_id

    async def get_profile(self, profile_id: str) -> MerchantProfile | None:
        try:
            record = await self._store.get_record(profile_id)
        except RecordStoreError as exc:
            log.warning("Failed to fetch profile %s: %s", profile_id, exc)
            return None
        if record is None:
            return None
        return MerchantProfile.from_record(record, self._fields)

    async def get_merchant_info(self, profile_id: str) -> MerchantInfo:
        task = self._merchant_info.get(profile_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_merchant_info(profile_id))
            self._merchant_info[profile_id] = task
        try:
            info = await asyncio.shield(task)
        except Exception:
            self._evict(profile_id, task)
            raise
        if info is None:
            # transient failure: let the next caller try again
            self._evict(profile_id, task)
            return MerchantInfo()
        return info

    def _evict(self, profile_id: str, task: asyncio.Task[MerchantInfo | None]) -> None:
        if self._merchant_info.get(profile_id) is task:
            del self._merchant_info[profile_id]

    async def _fetch_merchant_info(self, profile_id: str) -> MerchantInfo | None:
        try:
            record = await self._store.get_record(profile_id)
        except RecordStoreError as exc:
            log.warning("Failed to fetch merchant info for profile %s: %s", profile_id, exc)
            return None
        if record is None:
            log.info("Profile %s not found; caching empty merchant info", profile_id)
            return MerchantInfo()

        profile = MerchantProfile.from_record(record, self._fields)
        uuid = profile.merchant_uuid
        if uuid is None and profile.merchant_name:
            uuid = await self._resolve_canonical_uuid(profile)
        return MerchantInfo(uuid=uuid, name=profile.merchant_name)

    async def _resolve_canonical_uuid(self, profile: MerchantProfile) -> str | None:
        try:
            uuid = await self._registry.lookup_by_name(profile.merchant_name)
        except RecordStoreError as exc:
            log.warning("Canonical registry unavailable for %s: %s", profile.profile_id, exc)
            return None
        if uuid is None:
            log.info("No canonical merchant for %r (profile %s)", profile.merchant_name, profile.profile_id)
            return None

        try:
            await self._store.update_record_properties(
                profile.profile_id, {self._fields.merchant_uuid: rich_text_property(uuid)}
            )
        except RecordStoreError as exc:
            log.warning("Failed to write merchant UUID onto profile %s: %s", profile.profile_id, exc)
        else:
            log.info("Attached merchant UUID %s to profile %s", uuid, profile.profile_id)
        return uuid
