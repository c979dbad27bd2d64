"""Cache tier adapters."""

from __future__ import annotations

from .memory import InMemoryEdgeCache, InMemoryRegionalStore
from .redis import RedisRegionalStore

__all__ = ["InMemoryEdgeCache", "InMemoryRegionalStore", "RedisRegionalStore"]
