from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import create_mock_engine, inspect
from sqlalchemy.engine import Engine  # noqa: TC002

from merchantsync.adapters.sqlalchemy import (
    SqlAlchemyInteractionLedger,
    from_epoch_ms,
    to_epoch_ms,
)
from merchantsync.domain.model import (
    UNSET,
    AggregateContext,
    InteractionRecord,
    InteractionType,
    MailThreadRecord,
    MerchantProfile,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
T1 = datetime(2024, 5, 2, 12, 0, tzinfo=UTC)
T2 = datetime(2024, 5, 3, 12, 0, tzinfo=UTC)


def _profile(**overrides: object) -> MerchantProfile:
    values: dict[str, object] = {
        "profile_id": "p-1",
        "merchant_name": "Joe's Pizza",
        "contact_phone": "(321) 443-6893",
        "contact_email": "Owner@JoesPizza.com",
        "merchant_uuid": "uuid-joe",
        "status": "Active",
        "segment": "Restaurant",
        "owner": "Dana",
        "tags": ["vip"],
        "url": "https://notion.so/p-1",
        "created_at": datetime(2024, 1, 1, tzinfo=UTC),
    }
    values.update(overrides)
    return MerchantProfile(**values)  # type: ignore[arg-type]


def _call(record_id: str, occurred_at: datetime, summary: str | None = None) -> InteractionRecord:
    return InteractionRecord(
        id=record_id,
        profile_id="p-1",
        interaction_type=InteractionType.CALL,
        occurred_at=occurred_at,
        direction="incoming",
        summary=summary,
        source_event_id=f"event-{record_id}",
    )


def test_epoch_helpers() -> None:
    assert to_epoch_ms(None) is None
    assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1)) == 1000
    assert from_epoch_ms(to_epoch_ms(T0)) == T0
    assert from_epoch_ms(None) is None


def test_tables_are_created(sqlite_engine: Engine) -> None:
    assert set(inspect(sqlite_engine).get_table_names()) >= {
        "merchants",
        "interactions",
        "mail_threads",
    }


def test_unsupported_dialect_is_rejected() -> None:
    engine = create_mock_engine("mysql://", lambda *_args, **_kwargs: None)
    with pytest.raises(ValueError, match="mysql"):
        SqlAlchemyInteractionLedger(engine)  # type: ignore[arg-type]


def test_aggregate_insert_and_lookup(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(
        _profile(),
        AggregateContext(interaction_at=T1, interaction_type=InteractionType.CALL, summary="hi"),
    )

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.uuid == "uuid-joe"
    assert row.normalized_phone == "13214436893"
    assert row.normalized_email == "owner@joespizza.com"
    assert (row.status, row.segment, row.owner) == ("Active", "Restaurant", "Dana")
    assert row.first_interaction_at == row.last_interaction_at == T1
    assert row.last_interaction_type is InteractionType.CALL
    assert row.last_summary == "hi"
    assert (row.total_calls, row.total_messages, row.total_mail) == (0, 0, 0)
    assert row.metadata == {"tags": ["vip"], "url": "https://notion.so/p-1"}
    assert row.created_at == datetime(2024, 1, 1, tzinfo=UTC)

    assert ledger.find_profile_by_normalized_phone("+1 321-443-6893") == "p-1"
    assert ledger.find_profile_by_normalized_email(" OWNER@joespizza.com ") == "p-1"
    assert ledger.find_profile_by_normalized_phone("555-0100") is None
    assert ledger.find_profile_by_normalized_email("") is None
    assert ledger.get_merchant("p-2") is None


def test_aggregate_merge_rules(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(
        _profile(),
        AggregateContext(interaction_at=T1, interaction_type=InteractionType.CALL, summary="newer"),
    )
    ledger.upsert_merchant_aggregate(
        _profile(merchant_uuid=None, tags=None, url=None, status="Churned"),
        AggregateContext(interaction_at=T0, interaction_type=InteractionType.MAIL, summary="older"),
    )

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.uuid == "uuid-joe"
    assert row.status == "Churned"
    assert row.metadata == {"tags": ["vip"], "url": "https://notion.so/p-1"}
    assert row.first_interaction_at == T0
    assert row.last_interaction_at == T1
    assert row.last_interaction_type is InteractionType.CALL
    assert row.last_summary == "newer"


def test_aggregate_uuid_falls_back_to_context(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(
        _profile(merchant_uuid=None), AggregateContext(merchant_uuid="p-1")
    )

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.uuid == "p-1"
    assert row.last_interaction_at is None


def test_record_interaction_is_idempotent(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(_profile())

    assert ledger.record_interaction(_call("call-1", T1, "first")) is True
    assert ledger.record_interaction(_call("call-1", T1, "first, reprocessed")) is False

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.total_calls == 1
    assert row.last_summary == "first, reprocessed"
    (stored,) = ledger.interactions_for_merchant("p-1")
    assert stored.summary == "first, reprocessed"
    assert stored.source_event_id == "event-call-1"


def test_reprocessing_keeps_known_references(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(_profile())
    ledger.record_interaction(
        InteractionRecord(
            id="mail-1",
            profile_id="p-1",
            interaction_type=InteractionType.MAIL,
            occurred_at=T1,
            external_page_id="page-1",
            mail_thread_id="thread-1",
            metadata={"subject": "Invoice"},
        )
    )
    ledger.record_interaction(
        InteractionRecord(
            id="mail-1",
            profile_id="p-1",
            interaction_type=InteractionType.MAIL,
            occurred_at=T1,
        )
    )

    (stored,) = ledger.interactions_for_merchant("p-1")
    assert stored.external_page_id == "page-1"
    assert stored.mail_thread_id == "thread-1"
    assert stored.metadata == {"subject": "Invoice"}


def test_older_interaction_counts_without_moving_last(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(_profile())
    ledger.record_interaction(_call("call-2", T2, "latest"))
    ledger.record_interaction(
        InteractionRecord(
            id="message-1",
            profile_id="p-1",
            interaction_type=InteractionType.MESSAGE,
            occurred_at=T0,
            summary="earliest",
        )
    )

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert (row.total_calls, row.total_messages) == (1, 1)
    assert row.first_interaction_at == T0
    assert row.last_interaction_at == T2
    assert row.last_interaction_type is InteractionType.CALL
    assert row.last_summary == "latest"
    assert [item.id for item in ledger.interactions_for_merchant("p-1")] == [
        "call-2",
        "message-1",
    ]


def test_reprocessing_with_moved_timestamp_keeps_one_row(
    ledger: SqlAlchemyInteractionLedger,
) -> None:
    ledger.upsert_merchant_aggregate(_profile())
    assert ledger.record_interaction(_call("call-1", T1, "first")) is True
    assert ledger.record_interaction(_call("call-1", T2, "moved later")) is False

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.total_calls == 1
    assert row.first_interaction_at == T1
    assert row.last_interaction_at == T2
    assert row.last_summary == "moved later"

    assert ledger.record_interaction(_call("call-1", T0, "moved earlier")) is False

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.total_calls == 1
    assert row.first_interaction_at == T0
    assert row.last_interaction_at == T2
    assert row.last_summary == "moved later"
    (stored,) = ledger.interactions_for_merchant("p-1")
    assert stored.occurred_at == T0
    assert stored.summary == "moved earlier"


def test_aggregate_tie_goes_to_incoming(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(
        _profile(),
        AggregateContext(interaction_at=T1, interaction_type=InteractionType.CALL, summary="call"),
    )
    ledger.upsert_merchant_aggregate(
        _profile(),
        AggregateContext(interaction_at=T1, interaction_type=InteractionType.MAIL, summary="mail"),
    )

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert row.first_interaction_at == row.last_interaction_at == T1
    assert row.last_interaction_type is InteractionType.MAIL
    assert row.last_summary == "mail"


def test_interaction_tie_goes_to_incoming(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_merchant_aggregate(_profile())
    ledger.record_interaction(_call("call-1", T1, "call"))
    ledger.record_interaction(
        InteractionRecord(
            id="message-1",
            profile_id="p-1",
            interaction_type=InteractionType.MESSAGE,
            occurred_at=T1,
            summary="message",
        )
    )

    row = ledger.get_merchant("p-1")
    assert row is not None
    assert (row.total_calls, row.total_messages) == (1, 1)
    assert row.last_interaction_type is InteractionType.MESSAGE
    assert row.last_summary == "message"


def test_interaction_without_aggregate_is_still_recorded(
    ledger: SqlAlchemyInteractionLedger,
) -> None:
    assert ledger.record_interaction(_call("call-1", T1)) is True
    assert ledger.get_merchant("p-1") is None
    assert [item.id for item in ledger.interactions_for_merchant("p-1")] == ["call-1"]


def test_search_merchants_groups_matching_summaries(ledger: SqlAlchemyInteractionLedger) -> None:
    for record_id, profile_id, occurred_at, summary in (
        ("call-1", "p-1", T0, "Asked about the Invoice"),
        ("call-2", "p-1", T2, "invoice paid"),
        ("call-3", "p-2", T1, "INVOICE overdue"),
        ("call-4", "p-3", T2, "discount 100% off"),
        ("call-5", "p-3", T2, None),
    ):
        ledger.record_interaction(
            InteractionRecord(
                id=record_id,
                profile_id=profile_id,
                interaction_type=InteractionType.CALL,
                occurred_at=occurred_at,
                summary=summary,
            )
        )

    hits = ledger.search_merchants("Invoice")

    assert [hit.profile_id for hit in hits] == ["p-1", "p-2"]
    assert hits[0].last_occurred_at == T2
    assert set(hits[0].preview.split(" • ")) == {"Asked about the Invoice", "invoice paid"}
    assert hits[1].preview == "INVOICE overdue"
    assert [hit.profile_id for hit in ledger.search_merchants("invoice", limit=1)] == ["p-1"]
    assert [hit.profile_id for hit in ledger.search_merchants("100%")] == ["p-3"]
    assert ledger.search_merchants("1%0") == []
    assert ledger.search_merchants("   ") == []
    assert ledger.search_merchants("invoice", limit=0) == []


def test_mail_thread_merge_rules(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_mail_thread(
        MailThreadRecord(
            thread_id="thread-1",
            profile_id="p-1",
            subject="Invoice",
            last_message_preview="Please find attached",
            last_message_at=T1,
            message_count=4,
            participants=["owner@joespizza.com", "billing@example.com"],
            metadata={"provider": "gmail"},
        )
    )
    ledger.upsert_mail_thread(
        MailThreadRecord(
            thread_id="thread-1",
            profile_id="p-1",
            subject="Re: Invoice",
            last_message_preview="Thanks",
            last_message_at=T0,
        )
    )

    (thread,) = ledger.mail_threads_for_merchant("p-1")
    assert thread.subject == "Re: Invoice"
    assert thread.last_message_preview == "Thanks"
    assert thread.last_message_at == T1
    assert thread.message_count == 4
    assert thread.participants == "owner@joespizza.com, billing@example.com"
    assert thread.metadata == {"provider": "gmail"}


def test_mail_thread_explicit_count_overwrites(ledger: SqlAlchemyInteractionLedger) -> None:
    ledger.upsert_mail_thread(MailThreadRecord(thread_id="thread-1", profile_id="p-1"))
    (created,) = ledger.mail_threads_for_merchant("p-1")
    assert created.message_count == 0

    ledger.upsert_mail_thread(
        MailThreadRecord(thread_id="thread-1", profile_id="p-1", message_count=7, last_message_at=T2)
    )
    ledger.upsert_mail_thread(
        MailThreadRecord(thread_id="thread-1", profile_id="p-1", message_count=None)
    )

    (thread,) = ledger.mail_threads_for_merchant("p-1")
    assert thread.message_count is None
    assert thread.last_message_at == T2
    assert MailThreadRecord(thread_id="t", profile_id="p").message_count is UNSET
