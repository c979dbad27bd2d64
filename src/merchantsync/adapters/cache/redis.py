"""Regional cache tier backed by Redis."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from redis.asyncio import Redis
from redis.exceptions import RedisError

from merchantsync.domain.ports.cache import CacheTierError

if TYPE_CHECKING:
    from types import TracebackType

log = getLogger(__name__)


class RedisRegionalStore:
    """``RegionalStore`` over ``redis.asyncio``; entries expire through ``SET ... EX``."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> RedisRegionalStore:
        return cls(Redis.from_url(url, decode_responses=True))

    async def __aenter__(self) -> RedisRegionalStore:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._redis.aclose()

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(key)
        except RedisError as exc:
            raise CacheTierError(f"Redis GET {key} failed: {exc}") from exc
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheTierError(f"Redis SET {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            raise CacheTierError(f"Redis DEL {key} failed: {exc}") from exc

    async def list(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=f"{prefix}*", count=500):
                keys.append(key.decode() if isinstance(key, bytes) else str(key))
        except RedisError as exc:
            raise CacheTierError(f"Redis SCAN {prefix}* failed: {exc}") from exc
        log.debug("Listed %d key(s) under %s", len(keys), prefix)
        return keys
