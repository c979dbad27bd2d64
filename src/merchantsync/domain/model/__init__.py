"""Domain model for merchant identity, interactions and the profile cache."""

from __future__ import annotations

from .cache import CacheEntry, LookupSource, ProfileLookup, ProfileMapping
from .interaction import (
    UNSET,
    AggregateContext,
    CallEvent,
    InteractionAnalysis,
    InteractionRecord,
    InteractionRow,
    InteractionType,
    MailEvent,
    MailThreadRecord,
    MailThreadRow,
    MerchantAggregateRow,
    MerchantInteraction,
    MessageEvent,
    Unset,
)
from .merchant import (
    CanonicalMerchantRecord,
    MerchantContext,
    MerchantInfo,
    MerchantProfile,
    MerchantUuidGap,
    ProfileFields,
    ReconciliationResult,
)
from .retrieval import (
    DataSource,
    MerchantData,
    MerchantSearchHit,
    MerchantStats,
    TimelineEntry,
)

__all__ = [
    "UNSET",
    "AggregateContext",
    "CacheEntry",
    "CallEvent",
    "CanonicalMerchantRecord",
    "DataSource",
    "InteractionAnalysis",
    "InteractionRecord",
    "InteractionRow",
    "InteractionType",
    "LookupSource",
    "MailEvent",
    "MailThreadRecord",
    "MailThreadRow",
    "MerchantAggregateRow",
    "MerchantContext",
    "MerchantData",
    "MerchantInfo",
    "MerchantInteraction",
    "MerchantProfile",
    "MerchantSearchHit",
    "MerchantStats",
    "MerchantUuidGap",
    "MessageEvent",
    "ProfileFields",
    "ProfileLookup",
    "ProfileMapping",
    "ReconciliationResult",
    "TimelineEntry",
    "Unset",
]
