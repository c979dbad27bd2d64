"""Profile lookup cache configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import optional_env_var

DEFAULT_CACHE_VERSION: Final[str] = "v1"
DEFAULT_EDGE_TTL_SECONDS: Final[int] = 60 * 60
DEFAULT_REGIONAL_TTL_SECONDS: Final[int] = 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class CacheConfig:
    version: str = DEFAULT_CACHE_VERSION
    edge_ttl_seconds: int = DEFAULT_EDGE_TTL_SECONDS
    regional_ttl_seconds: int = DEFAULT_REGIONAL_TTL_SECONDS
    redis_url: str | None = None

    def __post_init__(self) -> None:
        if self.regional_ttl_seconds < self.edge_ttl_seconds:
            raise ValueError("Regional TTL must outlive the edge TTL")


def get_cache_config() -> CacheConfig:
    return CacheConfig(
        version=optional_env_var("PROFILE_CACHE_VERSION") or DEFAULT_CACHE_VERSION,
        redis_url=optional_env_var("REDIS_URL"),
    )
