"""Interaction, ledger row and inbound event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Any, Final, Literal

if TYPE_CHECKING:
    from datetime import datetime

    from .merchant import MerchantContext


class InteractionType(StrEnum):
    CALL = "call"
    MESSAGE = "message"
    MAIL = "mail"


class _Unset(Enum):
    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset.UNSET
type Unset = Literal[_Unset.UNSET]


# Ledger inputs ----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AggregateContext:
    """Interaction that triggered a merchant aggregate upsert."""

    interaction_at: datetime | None = None
    interaction_type: InteractionType | None = None
    summary: str | None = None
    merchant_uuid: str | None = None


@dataclass(frozen=True, slots=True)
class InteractionRecord:
    id: str
    profile_id: str
    interaction_type: InteractionType
    occurred_at: datetime
    direction: str | None = None
    summary: str | None = None
    sentiment: str | None = None
    lead_score: float | None = None
    external_page_id: str | None = None
    source_event_id: str | None = None
    mail_thread_id: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class MailThreadRecord:
    thread_id: str
    profile_id: str
    subject: str | None = None
    last_message_preview: str | None = None
    last_message_at: datetime | None = None
    # UNSET leaves a stored count untouched; None and 0 are values
    message_count: int | None | Unset = UNSET
    participants: list[str] | None = None
    metadata: dict[str, Any] | None = None


# Ledger rows ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MerchantAggregateRow:
    profile_id: str
    uuid: str | None
    name: str | None
    phone: str | None
    normalized_phone: str | None
    email: str | None
    normalized_email: str | None
    status: str | None
    segment: str | None
    owner: str | None
    first_interaction_at: datetime | None
    last_interaction_at: datetime | None
    total_calls: int
    total_messages: int
    total_mail: int
    last_interaction_type: InteractionType | None
    last_summary: str | None
    last_synced_at: datetime
    metadata: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class InteractionRow:
    id: str
    profile_id: str
    interaction_type: InteractionType
    direction: str | None
    summary: str | None
    sentiment: str | None
    lead_score: float | None
    occurred_at: datetime
    external_page_id: str | None
    source_event_id: str | None
    mail_thread_id: str | None
    metadata: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class MailThreadRow:
    thread_id: str
    profile_id: str
    subject: str | None
    last_message_preview: str | None
    last_message_at: datetime | None
    message_count: int | None
    participants: str | None
    metadata: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


# Inbound events ---------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InteractionAnalysis:
    """Summary and scoring extracted for an event by an external analyser."""

    summary: str | None = None
    sentiment: str | None = None
    sentiment_score: float | None = None
    category: str | None = None
    lead_score: float | None = None
    action_items: list[str] = field(default_factory=list[str])
    keywords: list[str] = field(default_factory=list[str])

    def as_metadata(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "sentiment": self.sentiment,
            "sentimentScore": self.sentiment_score,
            "category": self.category,
            "leadScore": self.lead_score,
            "actionItems": list(self.action_items),
            "keywords": list(self.keywords),
        }


@dataclass(frozen=True, slots=True)
class CallEvent:
    id: str
    created_at: datetime
    direction: str
    participants: list[str]
    phone_number_id: str | None = None
    duration_seconds: int | None = None
    transcript: str | None = None
    recording_url: str | None = None
    voicemail_url: str | None = None


@dataclass(frozen=True, slots=True)
class MessageEvent:
    id: str
    created_at: datetime
    direction: str
    sender: str
    recipients: list[str]
    text: str | None = None
    status: str | None = None
    phone_number_id: str | None = None
    media: list[str] = field(default_factory=list[str])


@dataclass(frozen=True, slots=True)
class MailEvent:
    id: str
    created_at: datetime
    subject: str | None
    sender: str | None
    recipients: list[str]
    body: str | None = None
    direction: str | None = None
    cc: list[str] = field(default_factory=list[str])
    bcc: list[str] = field(default_factory=list[str])
    status: str | None = None
    thread_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict[str, Any])

    def conversation_id(self) -> str | None:
        """Return the thread id, falling back to the ids providers put in metadata."""

        candidates: list[object] = [
            self.thread_id,
            self.metadata.get("threadId"),
            self.metadata.get("thread_id"),
            self.metadata.get("conversationId"),
            self.metadata.get("conversation_id"),
        ]
        for candidate in candidates:
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
            if isinstance(candidate, int):
                return str(candidate)
        return None


@dataclass(frozen=True, slots=True)
class MerchantInteraction:
    """An inbound event normalised for the ledger."""

    id: str
    interaction_type: InteractionType
    occurred_at: datetime
    merchant: MerchantContext
    summary: str | None = None
    direction: str | None = None
    external_page_id: str | None = None
    source_event_id: str | None = None
    phone_number_id: str | None = None
    mail_thread_id: str | None = None
    analysis: InteractionAnalysis | None = None
    metadata: dict[str, Any] = field(default_factory=dict[str, Any])
