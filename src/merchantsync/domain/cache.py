"""Three-tier profile lookup: edge cache, regional key-value store, record store origin."""

from __future__ import annotations

import asyncio
import time
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from merchantsync.config.cache import (
    DEFAULT_CACHE_VERSION,
    DEFAULT_EDGE_TTL_SECONDS,
    DEFAULT_REGIONAL_TTL_SECONDS,
)
from merchantsync.domain.identity import IdentifierType, normalize_identifier
from merchantsync.domain.model import CacheEntry, LookupSource, ProfileLookup
from merchantsync.domain.ports.cache import CacheTierError
from merchantsync.domain.ports.record_store import RecordStoreError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from merchantsync.domain.model import MerchantInfo, ProfileMapping
    from merchantsync.domain.ports.cache import EdgeCache, RegionalStore

log = getLogger(__name__)

REGIONAL_KEY_PREFIX = "profile:"


class ProfileOrigin(Protocol):
    """Slowest tier: the resolver that queries the record store."""

    async def find_profile_by_phone(self, phone: str | None) -> str | None: ...

    async def find_profile_by_email(self, email: str | None) -> str | None: ...

    async def get_merchant_info(self, profile_id: str) -> MerchantInfo: ...


def edge_key(version: str, identifier_type: IdentifierType, normalized: str) -> str:
    return f"{version}/profile/{identifier_type}/{normalized}"


def regional_key(identifier_type: IdentifierType, normalized: str) -> str:
    return f"{REGIONAL_KEY_PREFIX}{identifier_type}:{normalized}"


class MultiTierProfileCache:
    """Read-through cache mapping a contact identifier to a merchant profile.

    Tiers are probed strictly in order. A regional hit is promoted to the edge in the
    background (see ``drain``), an origin hit is written through to both tiers, and
    cache write failures never reach the caller. Misses are not cached, so a fix in the record store is
    visible on the next lookup.
    """

    def __init__(
        self,
        edge: EdgeCache,
        regional: RegionalStore,
        origin: ProfileOrigin,
        *,
        version: str = DEFAULT_CACHE_VERSION,
        edge_ttl_seconds: int = DEFAULT_EDGE_TTL_SECONDS,
        regional_ttl_seconds: int = DEFAULT_REGIONAL_TTL_SECONDS,
    ) -> None:
        self._edge = edge
        self._regional = regional
        self._origin = origin
        self._version = version
        self._edge_ttl = edge_ttl_seconds
        self._regional_ttl = regional_ttl_seconds
        self._promotions: set[asyncio.Task[None]] = set()

    async def lookup(self, identifier: str, identifier_type: IdentifierType) -> ProfileLookup:
        normalized = normalize_identifier(identifier, identifier_type)
        if normalized is None:
            return ProfileLookup(profile_id=None, merchant_uuid=None, source=LookupSource.MISS)

        started = time.perf_counter()
        edge = edge_key(self._version, identifier_type, normalized)
        regional = regional_key(identifier_type, normalized)

        entry = await self._read_edge(edge)
        if entry is not None:
            log.debug("Profile %s found at edge for %s", entry.profile_id, edge)
            return _lookup(entry, LookupSource.EDGE)

        entry = await self._read_regional(regional)
        if entry is not None:
            log.info(
                "Profile %s found in regional store for %s:%s (%.1fms)",
                entry.profile_id,
                identifier_type,
                normalized,
                _elapsed_ms(started),
            )
            self._promote(edge, entry)
            return _lookup(entry, LookupSource.REGIONAL)

        entry = await self._resolve_origin(identifier, normalized, identifier_type)
        if entry is None:
            log.info(
                "No profile for %s:%s (%.1fms)", identifier_type, normalized, _elapsed_ms(started)
            )
            return ProfileLookup(profile_id=None, merchant_uuid=None, source=LookupSource.MISS)

        log.info(
            "Profile %s resolved at origin for %s:%s (%.1fms)",
            entry.profile_id,
            identifier_type,
            normalized,
            _elapsed_ms(started),
        )
        await asyncio.gather(self._write_regional(regional, entry), self._write_edge(edge, entry))
        return _lookup(entry, LookupSource.ORIGIN)

    async def invalidate(self, identifier: str, identifier_type: IdentifierType) -> None:
        normalized = normalize_identifier(identifier, identifier_type)
        if normalized is None:
            log.warning("Cannot invalidate %r: identifier normalizes to nothing", identifier)
            return
        edge = edge_key(self._version, identifier_type, normalized)
        regional = regional_key(identifier_type, normalized)
        for tier, key, delete in (
            ("edge", edge, self._edge.delete),
            ("regional", regional, self._regional.delete),
        ):
            try:
                await delete(key)
            except CacheTierError as exc:
                log.warning("Failed to invalidate %s entry %s: %s", tier, key, exc)
        log.info("Invalidated profile cache for %s:%s", identifier_type, normalized)

    async def warm_up(self, mappings: Iterable[ProfileMapping]) -> int:
        """Write the given mappings to both tiers; return how many were attempted."""

        items = list(mappings)
        log.info("Warming profile cache with %d mapping(s)", len(items))

        async def warm(mapping: ProfileMapping) -> None:
            normalized = normalize_identifier(mapping.identifier, mapping.identifier_type)
            if normalized is None:
                log.warning("Skipping warm-up for unusable identifier %r", mapping.identifier)
                return
            entry = CacheEntry(profile_id=mapping.profile_id, merchant_uuid=mapping.merchant_uuid)
            await asyncio.gather(
                self._write_regional(regional_key(mapping.identifier_type, normalized), entry),
                self._write_edge(edge_key(self._version, mapping.identifier_type, normalized), entry),
            )

        await asyncio.gather(*(warm(mapping) for mapping in items))
        log.info("Profile cache warm-up completed for %d mapping(s)", len(items))
        return len(items)

    async def drain(self) -> None:
        """Wait for edge promotions still running in the background."""

        while self._promotions:
            await asyncio.gather(*list(self._promotions))

    async def stats(self) -> dict[str, int]:
        try:
            keys = await self._regional.list(REGIONAL_KEY_PREFIX)
        except CacheTierError as exc:
            log.warning("Failed to list regional cache keys: %s", exc)
            return {"regional_entries": 0}
        return {"regional_entries": len(keys)}

    # tiers --------------------------------------------------------------------

    async def _read_edge(self, key: str) -> CacheEntry | None:
        try:
            return CacheEntry.loads(await self._edge.match(key))
        except CacheTierError as exc:
            log.warning("Edge cache read failed for %s: %s", key, exc)
            return None

    async def _read_regional(self, key: str) -> CacheEntry | None:
        try:
            return CacheEntry.loads(await self._regional.get(key))
        except CacheTierError as exc:
            log.warning("Regional cache read failed for %s: %s", key, exc)
            return None

    async def _write_edge(self, key: str, entry: CacheEntry) -> None:
        try:
            await self._edge.put(key, entry.dumps(), self._edge_ttl)
        except CacheTierError as exc:
            log.warning("Edge cache write failed for %s: %s", key, exc)

    def _promote(self, key: str, entry: CacheEntry) -> None:
        task = asyncio.create_task(self._write_edge(key, entry))
        self._promotions.add(task)
        task.add_done_callback(self._promotions.discard)

    async def _write_regional(self, key: str, entry: CacheEntry) -> None:
        try:
            await self._regional.put(key, entry.dumps(), self._regional_ttl)
        except CacheTierError as exc:
            log.warning("Regional cache write failed for %s: %s", key, exc)

    async def _resolve_origin(
        self, identifier: str, normalized: str, identifier_type: IdentifierType
    ) -> CacheEntry | None:
        try:
            if identifier_type is IdentifierType.PHONE:
                profile_id = await self._origin.find_profile_by_phone(identifier)
            else:
                profile_id = await self._origin.find_profile_by_email(normalized)
            if profile_id is None:
                return None
            info = await self._origin.get_merchant_info(profile_id)
        except RecordStoreError as exc:
            log.error("Origin lookup failed for %s:%s: %s", identifier_type, normalized, exc)
            return None
        return CacheEntry(profile_id=profile_id, merchant_uuid=info.uuid)


def _lookup(entry: CacheEntry, source: LookupSource) -> ProfileLookup:
    return ProfileLookup(
        profile_id=entry.profile_id, merchant_uuid=entry.merchant_uuid, source=source
    )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
