"""Ports for the two profile cache tiers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class CacheTierError(RuntimeError):
    """Raised by cache tier adapters when the backing store cannot be reached."""


@runtime_checkable
class EdgeCache(Protocol):
    """Process/edge tier: sub-millisecond, short-lived entries."""

    async def match(self, key: str) -> str | None: ...

    async def put(self, key: str, entry: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


@runtime_checkable
class RegionalStore(Protocol):
    """Regional key-value tier: slower than the edge, longer-lived entries."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str) -> list[str]: ...
