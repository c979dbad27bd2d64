"""Turn inbound call, message and mail events into merchant interactions."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING, Any

from merchantsync.domain.identity import IdentifierType, SelfNumberFilter
from merchantsync.domain.model import (
    AggregateContext,
    InteractionRecord,
    InteractionType,
    MailThreadRecord,
    MerchantContext,
    MerchantInteraction,
)

if TYPE_CHECKING:
    from merchantsync.domain.cache import MultiTierProfileCache
    from merchantsync.domain.model import (
        CallEvent,
        InteractionAnalysis,
        MailEvent,
        MessageEvent,
    )
    from merchantsync.domain.ports.ledger import InteractionLedger
    from merchantsync.domain.profiles import ProfileResolver

log = getLogger(__name__)

INCOMING = "incoming"


class MerchantContextResolver:
    """Match the counterpart of an event to a merchant profile through the cache."""

    def __init__(
        self,
        cache: MultiTierProfileCache,
        resolver: ProfileResolver,
        *,
        self_numbers: SelfNumberFilter | None = None,
    ) -> None:
        self._cache = cache
        self._resolver = resolver
        self._self_numbers = self_numbers or SelfNumberFilter()

    async def for_call(self, event: CallEvent) -> MerchantContext:
        for participant in self._self_numbers.external(event.participants):
            context = await self._resolve(participant, IdentifierType.PHONE)
            if context.matched:
                log.info("Merchant %s matched call participant %s", context.profile_id, participant)
                return context
        return MerchantContext()

    async def for_message(self, event: MessageEvent) -> MerchantContext:
        if self._self_numbers.is_self(event.sender):
            log.debug("Message %s sent from an internal number", event.id)
            return MerchantContext()
        return await self._resolve(event.sender, IdentifierType.PHONE)

    async def for_mail(self, event: MailEvent) -> MerchantContext:
        counterpart = mail_counterpart(event)
        if counterpart is None:
            return MerchantContext()
        return await self._resolve(counterpart, IdentifierType.EMAIL)

    async def _resolve(self, identifier: str, identifier_type: IdentifierType) -> MerchantContext:
        lookup = await self._cache.lookup(identifier, identifier_type)
        if lookup.profile_id is None:
            return MerchantContext()
        info = await self._resolver.get_merchant_info(lookup.profile_id)
        return MerchantContext(
            profile_id=lookup.profile_id,
            merchant_uuid=info.uuid or lookup.merchant_uuid or lookup.profile_id,
            merchant_name=info.name,
        )


def mail_counterpart(event: MailEvent) -> str | None:
    """Sender for incoming mail, first recipient for everything else."""

    if event.direction == INCOMING:
        return event.sender or None
    return event.recipients[0] if event.recipients else None


# normalizers ------------------------------------------------------------------


def normalize_call_interaction(
    event: CallEvent,
    merchant: MerchantContext,
    *,
    page_id: str | None = None,
    analysis: InteractionAnalysis | None = None,
) -> MerchantInteraction:
    return MerchantInteraction(
        id=event.id,
        interaction_type=InteractionType.CALL,
        occurred_at=event.created_at,
        merchant=merchant.with_merchant_uuid(),
        summary=analysis.summary if analysis else None,
        direction=event.direction,
        external_page_id=page_id,
        source_event_id=event.id,
        phone_number_id=event.phone_number_id,
        analysis=analysis,
        metadata={
            "transcript": event.transcript,
            "recordingUrl": event.recording_url,
            "voicemailUrl": event.voicemail_url,
            "duration": event.duration_seconds,
            "participants": list(event.participants),
        },
    )


def normalize_message_interaction(
    event: MessageEvent,
    merchant: MerchantContext,
    *,
    page_id: str | None = None,
    analysis: InteractionAnalysis | None = None,
) -> MerchantInteraction:
    return MerchantInteraction(
        id=event.id,
        interaction_type=InteractionType.MESSAGE,
        occurred_at=event.created_at,
        merchant=merchant.with_merchant_uuid(),
        summary=analysis.summary if analysis else None,
        direction=event.direction,
        external_page_id=page_id,
        source_event_id=event.id,
        phone_number_id=event.phone_number_id,
        analysis=analysis,
        metadata={
            "from": event.sender,
            "to": list(event.recipients),
            "status": event.status,
            "media": list(event.media),
        },
    )


def normalize_mail_interaction(
    event: MailEvent,
    merchant: MerchantContext,
    *,
    page_id: str | None = None,
    analysis: InteractionAnalysis | None = None,
) -> MerchantInteraction:
    summary = analysis.summary if analysis and analysis.summary else event.subject
    return MerchantInteraction(
        id=event.id,
        interaction_type=InteractionType.MAIL,
        occurred_at=event.created_at,
        merchant=merchant.with_merchant_uuid(),
        summary=summary,
        direction=event.direction,
        external_page_id=page_id,
        mail_thread_id=event.conversation_id(),
        analysis=analysis,
        metadata={
            "subject": event.subject,
            "from": event.sender,
            "to": list(event.recipients),
            "cc": list(event.cc),
            "bcc": list(event.bcc),
            "status": event.status,
            "body": event.body,
        },
    )


# publishing -------------------------------------------------------------------


async def publish_merchant_interaction(
    interaction: MerchantInteraction,
    ledger: InteractionLedger,
    resolver: ProfileResolver,
    *,
    mail: MailEvent | None = None,
    preview_length: int = 200,
) -> bool:
    """Write the interaction and its merchant aggregate to the ledger.

    Returns ``False`` when the interaction has no matched merchant and nothing was
    written. A failure to refresh the aggregate is logged; the interaction itself
    is still recorded.
    """

    profile_id = interaction.merchant.profile_id
    if profile_id is None:
        log.info(
            "Skipping %s interaction %s: no merchant match",
            interaction.interaction_type,
            interaction.id,
        )
        return False

    await _refresh_aggregate(interaction, profile_id, ledger, resolver)

    record = InteractionRecord(
        id=interaction.id,
        profile_id=profile_id,
        interaction_type=interaction.interaction_type,
        occurred_at=interaction.occurred_at,
        direction=interaction.direction,
        summary=interaction.summary,
        sentiment=interaction.analysis.sentiment if interaction.analysis else None,
        lead_score=interaction.analysis.lead_score if interaction.analysis else None,
        external_page_id=interaction.external_page_id,
        source_event_id=interaction.source_event_id,
        mail_thread_id=interaction.mail_thread_id,
        metadata=_interaction_metadata(interaction),
    )
    first_seen = await asyncio.to_thread(ledger.record_interaction, record)
    log.info(
        "Recorded %s interaction %s for merchant %s (first_seen=%s)",
        interaction.interaction_type,
        interaction.id,
        profile_id,
        first_seen,
    )

    if mail is not None and interaction.mail_thread_id:
        thread = MailThreadRecord(
            thread_id=interaction.mail_thread_id,
            profile_id=profile_id,
            subject=mail.subject,
            last_message_preview=_preview(mail.body, preview_length),
            last_message_at=mail.created_at,
            participants=_participants(mail),
        )
        await asyncio.to_thread(ledger.upsert_mail_thread, thread)
    return True


async def _refresh_aggregate(
    interaction: MerchantInteraction,
    profile_id: str,
    ledger: InteractionLedger,
    resolver: ProfileResolver,
) -> None:
    context = AggregateContext(
        interaction_at=interaction.occurred_at,
        interaction_type=interaction.interaction_type,
        summary=interaction.summary,
        merchant_uuid=interaction.merchant.merchant_uuid,
    )
    try:
        profile = await resolver.get_profile(profile_id)
        if profile is None:
            log.warning("Profile %s vanished before the aggregate refresh", profile_id)
            return
        await asyncio.to_thread(ledger.upsert_merchant_aggregate, profile, context)
    except Exception:
        log.exception("Failed to refresh merchant aggregate for %s", profile_id)


def _interaction_metadata(interaction: MerchantInteraction) -> dict[str, Any]:
    return {
        **interaction.metadata,
        "merchantUuid": interaction.merchant.merchant_uuid,
        "merchantName": interaction.merchant.merchant_name,
        "ai": interaction.analysis.as_metadata() if interaction.analysis else None,
        "sources": {
            "sourceEventId": interaction.source_event_id,
            "phoneNumberId": interaction.phone_number_id,
            "mailThreadId": interaction.mail_thread_id,
        },
    }


def _preview(body: str | None, length: int) -> str | None:
    if not body:
        return None
    text = " ".join(body.split())
    return text[:length] if text else None


def _participants(mail: MailEvent) -> list[str]:
    seen: list[str] = []
    for address in (mail.sender, *mail.recipients, *mail.cc):
        if address and address not in seen:
            seen.append(address)
    return seen
