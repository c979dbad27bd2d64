"""Merchant history read models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from .interaction import InteractionType, MailThreadRow
    from .merchant import MerchantProfile


class DataSource(StrEnum):
    LEDGER = "ledger"
    RECORD_STORE = "record_store"


@dataclass(frozen=True, slots=True)
class TimelineEntry:
    interaction_type: InteractionType
    id: str
    occurred_at: datetime | None
    summary: str
    page_id: str | None = None
    sentiment: str | None = None
    direction: str | None = None
    lead_score: float | None = None
    mail_thread_id: str | None = None


@dataclass(frozen=True, slots=True)
class MerchantStats:
    total_calls: int = 0
    total_messages: int = 0
    total_mail: int = 0
    first_interaction_at: datetime | None = None
    last_interaction_at: datetime | None = None
    # most frequent call sentiment
    dominant_sentiment: str = "neutral"
    average_lead_score: float | None = None

    @property
    def total_interactions(self) -> int:
        return self.total_calls + self.total_messages + self.total_mail


@dataclass(frozen=True, slots=True)
class MerchantData:
    """A merchant profile with its interactions, newest first."""

    profile: MerchantProfile
    timeline: list[TimelineEntry]
    stats: MerchantStats
    source: DataSource
    mail_threads: list[MailThreadRow] = field(default_factory=list["MailThreadRow"])

    @property
    def profile_id(self) -> str:
        return self.profile.profile_id


@dataclass(frozen=True, slots=True)
class MerchantSearchHit:
    profile_id: str
    last_occurred_at: datetime | None
    preview: str
