"""Process-local cache tiers.

``InMemoryEdgeCache`` is the edge tier for a single worker process.
``InMemoryRegionalStore`` stands in for the regional store when no Redis is
configured, and in tests.
"""

from __future__ import annotations

import heapq
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(slots=True)
class _Slot:
    value: str
    expires_at: float


class _ExpiringDict:
    """Key-value slots with per-entry expiry.

    Every write also sweeps entries whose expiry has passed, in expiry order, so
    keys that are written once and never read again do not accumulate.
    """

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._slots: dict[str, _Slot] = {}
        self._expiries: list[tuple[float, str]] = []

    def __len__(self) -> int:
        return len(self._slots)

    def get(self, key: str) -> str | None:
        slot = self._slots.get(key)
        if slot is None:
            return None
        if slot.expires_at <= self._clock():
            del self._slots[key]
            return None
        return slot.value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        self._sweep(now)
        if ttl_seconds <= 0:
            self._slots.pop(key, None)
            return
        expires_at = now + ttl_seconds
        self._slots[key] = _Slot(value=value, expires_at=expires_at)
        heapq.heappush(self._expiries, (expires_at, key))

    def delete(self, key: str) -> None:
        self._slots.pop(key, None)

    def keys(self, prefix: str) -> list[str]:
        self._sweep(self._clock())
        return sorted(key for key in self._slots if key.startswith(prefix))

    def _sweep(self, now: float) -> None:
        while self._expiries and self._expiries[0][0] <= now:
            _, key = heapq.heappop(self._expiries)
            slot = self._slots.get(key)
            # a rewrite leaves the older heap item behind; only the live expiry evicts
            if slot is not None and slot.expires_at <= now:
                del self._slots[key]


class InMemoryEdgeCache:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries = _ExpiringDict(clock)

    async def match(self, key: str) -> str | None:
        return self._entries.get(key)

    async def put(self, key: str, entry: str, ttl_seconds: int) -> None:
        self._entries.put(key, entry, ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.delete(key)

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryRegionalStore:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries = _ExpiringDict(clock)

    async def get(self, key: str) -> str | None:
        return self._entries.get(key)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries.put(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.delete(key)

    async def list(self, prefix: str) -> list[str]:
        return self._entries.keys(prefix)
