"""Port for the relational interaction ledger."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from merchantsync.domain.model import (
        AggregateContext,
        InteractionRecord,
        InteractionRow,
        MailThreadRecord,
        MailThreadRow,
        MerchantAggregateRow,
        MerchantProfile,
        MerchantSearchHit,
    )


@runtime_checkable
class InteractionLedger(Protocol):
    def upsert_merchant_aggregate(
        self, profile: MerchantProfile, context: AggregateContext | None = None
    ) -> None: ...

    def record_interaction(self, record: InteractionRecord) -> bool:
        """Store the interaction; return ``True`` when it was seen for the first time."""
        ...

    def upsert_mail_thread(self, thread: MailThreadRecord) -> None: ...

    def get_merchant(self, profile_id: str) -> MerchantAggregateRow | None: ...

    def interactions_for_merchant(self, profile_id: str) -> list[InteractionRow]: ...

    def mail_threads_for_merchant(self, profile_id: str) -> list[MailThreadRow]: ...

    def find_profile_by_normalized_phone(self, phone: str | None) -> str | None: ...

    def find_profile_by_normalized_email(self, email: str | None) -> str | None: ...

    def search_merchants(self, query: str, limit: int = 10) -> list[MerchantSearchHit]: ...
