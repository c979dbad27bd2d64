from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from merchantsync.adapters.cache import (
    InMemoryEdgeCache,
    InMemoryRegionalStore,
    RedisRegionalStore,
)
from merchantsync.domain.ports.cache import CacheTierError


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` used by the regional store."""

    def __init__(self, *, fail: bool = False) -> None:
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key: str) -> Any:
        self._check()
        value = self.values.get(key)
        return value.encode() if value is not None else None

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._check()
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex

    async def delete(self, key: str) -> None:
        self._check()
        self.values.pop(key, None)

    async def scan_iter(self, match: str, count: int) -> AsyncIterator[str]:
        self._check()
        prefix = match.rstrip("*")
        for key in list(self.values):
            if key.startswith(prefix):
                yield key

    async def aclose(self) -> None:
        self.closed = True


def test_edge_entries_expire_with_clock() -> None:
    clock = Clock()
    edge = InMemoryEdgeCache(clock=clock)

    async def scenario() -> list[str | None]:
        await edge.put("v1/profile/phone/1", "entry", 10)
        seen = [await edge.match("v1/profile/phone/1")]
        clock.now = 10
        seen.append(await edge.match("v1/profile/phone/1"))
        return seen

    assert asyncio.run(scenario()) == ["entry", None]


def test_unread_edge_entries_are_swept_on_later_writes() -> None:
    clock = Clock()
    edge = InMemoryEdgeCache(clock=clock)

    async def scenario() -> tuple[int, int]:
        for index in range(1000):
            await edge.put(f"v1/profile/phone/{index}", "entry", 1)
        filled = len(edge)
        clock.now = 10_000
        await edge.put("v1/profile/phone/fresh", "entry", 60)
        return filled, len(edge)

    assert asyncio.run(scenario()) == (1000, 1)


def test_rewritten_entry_survives_sweep_of_its_old_expiry() -> None:
    clock = Clock()
    edge = InMemoryEdgeCache(clock=clock)

    async def scenario() -> str | None:
        await edge.put("key", "old", 5)
        await edge.put("key", "new", 50)
        clock.now = 6
        await edge.put("other", "entry", 50)
        return await edge.match("key")

    assert asyncio.run(scenario()) == "new"


def test_non_positive_ttl_removes_entry() -> None:
    edge = InMemoryEdgeCache()

    async def scenario() -> str | None:
        await edge.put("key", "entry", 60)
        await edge.put("key", "replacement", 0)
        return await edge.match("key")

    assert asyncio.run(scenario()) is None


def test_regional_list_skips_expired_and_other_prefixes() -> None:
    clock = Clock()
    regional = InMemoryRegionalStore(clock=clock)

    async def scenario() -> list[str]:
        await regional.put("profile:phone:1", "a", 5)
        await regional.put("profile:email:b@c.io", "b", 50)
        await regional.put("other:key", "c", 50)
        clock.now = 6
        await regional.delete("missing")
        return await regional.list("profile:")

    assert asyncio.run(scenario()) == ["profile:email:b@c.io"]


def test_redis_store_round_trip() -> None:
    fake = FakeRedis()
    store = RedisRegionalStore(fake)  # type: ignore[arg-type]

    async def scenario() -> tuple[str | None, list[str], str | None]:
        async with store:
            await store.put("profile:phone:13214436893", '{"profileId": "p-1"}', 86400)
            await store.put("profile:email:a@b.co", '{"profileId": "p-2"}', 86400)
            value = await store.get("profile:phone:13214436893")
            keys = await store.list("profile:")
            await store.delete("profile:email:a@b.co")
            return value, sorted(keys), await store.get("profile:email:a@b.co")

    value, keys, deleted = asyncio.run(scenario())

    assert value == '{"profileId": "p-1"}'
    assert keys == ["profile:email:a@b.co", "profile:phone:13214436893"]
    assert deleted is None
    assert fake.expiry["profile:phone:13214436893"] == 86400
    assert fake.closed


@pytest.mark.parametrize("operation", ["get", "put", "delete", "list"])
def test_redis_errors_become_cache_tier_errors(operation: str) -> None:
    store = RedisRegionalStore(FakeRedis(fail=True))  # type: ignore[arg-type]
    calls = {
        "get": lambda: store.get("k"),
        "put": lambda: store.put("k", "v", 10),
        "delete": lambda: store.delete("k"),
        "list": lambda: store.list("profile:"),
    }

    with pytest.raises(CacheTierError):
        asyncio.run(calls[operation]())
