"""Profile lookup cache types."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from merchantsync.domain.identity import IdentifierType


class LookupSource(StrEnum):
    EDGE = "edge"
    REGIONAL = "regional"
    ORIGIN = "origin"
    MISS = "miss"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    profile_id: str
    merchant_uuid: str | None = None
    cached_at: datetime | None = None

    def dumps(self) -> str:
        cached_at = self.cached_at or datetime.now(UTC)
        return json.dumps(
            {
                "profileId": self.profile_id,
                "merchantUuid": self.merchant_uuid,
                "cachedAt": cached_at.isoformat(),
            }
        )

    @classmethod
    def loads(cls, value: str | None) -> CacheEntry | None:
        """Decode a stored entry.

        Values that are not JSON objects are legacy entries holding only the profile id.
        An object without a ``profileId`` is unusable and decodes to ``None``.
        """

        if not value:
            return None
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return cls(profile_id=value)
        if not isinstance(parsed, dict):
            return cls(profile_id=value)
        payload = cast(dict[str, Any], parsed)
        profile_id = payload.get("profileId")
        if not profile_id:
            return None
        merchant_uuid = payload.get("merchantUuid")
        return cls(
            profile_id=str(profile_id),
            merchant_uuid=str(merchant_uuid) if merchant_uuid else None,
            cached_at=_parse_timestamp(payload.get("cachedAt")),
        )


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class ProfileLookup:
    profile_id: str | None
    merchant_uuid: str | None
    source: LookupSource

    @property
    def found(self) -> bool:
        return self.profile_id is not None


@dataclass(frozen=True, slots=True)
class ProfileMapping:
    """A known identifier to profile mapping used to pre-populate the cache."""

    identifier: str
    identifier_type: IdentifierType
    profile_id: str
    merchant_uuid: str | None = None
