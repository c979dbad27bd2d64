"""Page-oriented record store (Notion) configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

NOTION_BASE_URL = "https://api.notion.com/v1/"
NOTION_API_VERSION = "2022-06-28"
NOTION_TIMEOUT_SECONDS = 20.0

_REQUIRED_VARS = (
    "NOTION_API_KEY",
    "NOTION_PROFILE_COLLECTION_ID",
    "NOTION_CANONICAL_COLLECTION_ID",
    "NOTION_CALLS_COLLECTION_ID",
    "NOTION_MESSAGES_COLLECTION_ID",
    "NOTION_MAIL_COLLECTION_ID",
)


@dataclass(frozen=True, slots=True)
class CollectionIds:
    """Identifiers of the record collections the sync reads and writes."""

    profiles: str
    canonical: str
    calls: str
    messages: str
    mail: str


@dataclass(frozen=True, slots=True)
class RecordStoreConfig:
    api_key: str
    collections: CollectionIds
    resilience: ResilienceConfig
    self_phone_numbers: str | None = None


def default_notion_resilience() -> ResilienceConfig:
    return ResilienceConfig(
        name="notion",
        base_url=NOTION_BASE_URL,
        timeout_seconds=NOTION_TIMEOUT_SECONDS,
        ratelimit=RateLimit(max_calls=3, per_seconds=1.0),
        retry=RetryPolicy(total=3),
    )


def get_record_store_config(*, resilience: ResilienceConfig | None = None) -> RecordStoreConfig:
    values = require_env_vars(_REQUIRED_VARS)
    return RecordStoreConfig(
        api_key=values["NOTION_API_KEY"],
        collections=CollectionIds(
            profiles=values["NOTION_PROFILE_COLLECTION_ID"],
            canonical=values["NOTION_CANONICAL_COLLECTION_ID"],
            calls=values["NOTION_CALLS_COLLECTION_ID"],
            messages=values["NOTION_MESSAGES_COLLECTION_ID"],
            mail=values["NOTION_MAIL_COLLECTION_ID"],
        ),
        resilience=resilience or default_notion_resilience(),
        self_phone_numbers=optional_env_var("SELF_PHONE_NUMBERS"),
    )
