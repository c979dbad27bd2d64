"""Relational interaction ledger on SQLAlchemy Core.

Every write is a single ``INSERT ... ON CONFLICT`` or a conditional ``UPDATE`` so
concurrent writers for the same merchant merge on the database side instead of
racing on read-modify-write.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import String, and_, case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite

from merchantsync.domain.identity import normalize_email, normalize_phone
from merchantsync.domain.model import (
    UNSET,
    InteractionRow,
    InteractionType,
    MailThreadRow,
    MerchantAggregateRow,
    MerchantSearchHit,
)

from .mappings import interactions_table, mail_threads_table, merchants_table

if TYPE_CHECKING:
    from sqlalchemy import Connection, Table
    from sqlalchemy.dialects.postgresql import Insert as PgInsert
    from sqlalchemy.dialects.sqlite import Insert as SqliteInsert
    from sqlalchemy.engine import Engine, RowMapping

    from merchantsync.domain.model import (
        AggregateContext,
        InteractionRecord,
        MailThreadRecord,
        MerchantProfile,
    )

log = logging.getLogger(__name__)

SNIPPET_SEPARATOR = " • "

_COUNTERS = {
    InteractionType.CALL: "total_calls",
    InteractionType.MESSAGE: "total_messages",
    InteractionType.MAIL: "total_mail",
}


def to_epoch_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def _dump_json(value: dict[str, Any] | None) -> str | None:
    if not value:
        return None
    return json.dumps(value, default=str)


def _load_json(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError:
        log.warning("Ignoring undecodable ledger metadata")
        return None
    return cast(dict[str, Any], loaded) if isinstance(loaded, dict) else None


class SqlAlchemyInteractionLedger:
    """``InteractionLedger`` for SQLite and PostgreSQL engines."""

    def __init__(self, engine: Engine) -> None:
        if engine.dialect.name not in {"sqlite", "postgresql"}:
            raise ValueError(f"Unsupported ledger dialect: {engine.dialect.name}")
        self._engine = engine

    def _insert(self, table: Table) -> SqliteInsert | PgInsert:
        if self._engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    # writes -------------------------------------------------------------------

    def upsert_merchant_aggregate(
        self, profile: MerchantProfile, context: AggregateContext | None = None
    ) -> None:
        now = _now_ms()
        interaction_at = to_epoch_ms(context.interaction_at) if context else None
        interaction_type = context.interaction_type if context else None
        merchant_uuid = profile.merchant_uuid or (context.merchant_uuid if context else None)
        meta: dict[str, Any] = {}
        if profile.tags:
            meta["tags"] = profile.tags
        if profile.url:
            meta["url"] = profile.url

        t = merchants_table
        stmt = self._insert(t).values(
            profile_id=profile.profile_id,
            merchant_uuid=merchant_uuid,
            name=profile.merchant_name,
            primary_phone=profile.contact_phone,
            primary_phone_normalized=normalize_phone(profile.contact_phone),
            primary_email=profile.contact_email,
            primary_email_normalized=normalize_email(profile.contact_email),
            status=profile.status,
            segment=profile.segment,
            owner=profile.owner,
            first_interaction_at=interaction_at,
            last_interaction_at=interaction_at,
            total_calls=0,
            total_messages=0,
            total_mail=0,
            last_interaction_type=str(interaction_type) if interaction_type else None,
            last_summary=context.summary if context else None,
            last_synced_at=now,
            metadata_json=_dump_json(meta),
            created_at=to_epoch_ms(profile.created_at) or now,
            updated_at=now,
        )
        ex = stmt.excluded
        incoming_is_latest = and_(
            ex.last_interaction_at.is_not(None),
            or_(
                t.c.last_interaction_at.is_(None),
                ex.last_interaction_at >= t.c.last_interaction_at,
            ),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.profile_id],
            set_={
                t.c.merchant_uuid: func.coalesce(ex.merchant_uuid, t.c.merchant_uuid),
                t.c.name: ex.name,
                t.c.primary_phone: ex.primary_phone,
                t.c.primary_phone_normalized: ex.primary_phone_normalized,
                t.c.primary_email: ex.primary_email,
                t.c.primary_email_normalized: ex.primary_email_normalized,
                t.c.status: ex.status,
                t.c.segment: ex.segment,
                t.c.owner: ex.owner,
                t.c.first_interaction_at: case(
                    (t.c.first_interaction_at.is_(None), ex.first_interaction_at),
                    (ex.first_interaction_at.is_(None), t.c.first_interaction_at),
                    (
                        ex.first_interaction_at < t.c.first_interaction_at,
                        ex.first_interaction_at,
                    ),
                    else_=t.c.first_interaction_at,
                ),
                t.c.last_interaction_at: case(
                    (incoming_is_latest, ex.last_interaction_at), else_=t.c.last_interaction_at
                ),
                t.c.last_interaction_type: case(
                    (incoming_is_latest, ex.last_interaction_type),
                    else_=t.c.last_interaction_type,
                ),
                t.c.last_summary: case(
                    (incoming_is_latest, ex.last_summary), else_=t.c.last_summary
                ),
                t.c.last_synced_at: ex.last_synced_at,
                t.c.metadata_json: func.coalesce(ex.metadata_json, t.c.metadata_json),
                t.c.updated_at: ex.updated_at,
            },
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)
        log.debug("Upserted merchant aggregate %s", profile.profile_id)

    def record_interaction(self, record: InteractionRecord) -> bool:
        now = _now_ms()
        occurred_at = to_epoch_ms(record.occurred_at) or now
        metadata_json = _dump_json(record.metadata)

        t = interactions_table
        insert_stmt = (
            self._insert(t)
            .values(
                id=record.id,
                profile_id=record.profile_id,
                interaction_type=str(record.interaction_type),
                direction=record.direction,
                summary=record.summary,
                sentiment=record.sentiment,
                lead_score=record.lead_score,
                occurred_at=occurred_at,
                external_page_id=record.external_page_id,
                source_event_id=record.source_event_id,
                mail_thread_id=record.mail_thread_id,
                metadata_json=metadata_json,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[t.c.id])
        )

        with self._engine.begin() as conn:
            first_seen = conn.execute(insert_stmt).rowcount == 1
            if not first_seen:
                conn.execute(
                    update(t)
                    .where(t.c.id == record.id)
                    .values(
                        {
                            t.c.interaction_type: str(record.interaction_type),
                            t.c.direction: record.direction,
                            t.c.summary: record.summary,
                            t.c.sentiment: record.sentiment,
                            t.c.lead_score: record.lead_score,
                            t.c.occurred_at: occurred_at,
                            t.c.external_page_id: func.coalesce(
                                record.external_page_id, t.c.external_page_id
                            ),
                            t.c.source_event_id: func.coalesce(
                                record.source_event_id, t.c.source_event_id
                            ),
                            t.c.mail_thread_id: func.coalesce(
                                record.mail_thread_id, t.c.mail_thread_id
                            ),
                            t.c.metadata_json: func.coalesce(metadata_json, t.c.metadata_json),
                            t.c.updated_at: now,
                        }
                    )
                )
            self._touch_aggregate(conn, record, occurred_at, now, increment=first_seen)

        log.debug(
            "Recorded interaction %s for %s (first_seen=%s)",
            record.id,
            record.profile_id,
            first_seen,
        )
        return first_seen

    def _touch_aggregate(
        self,
        conn: Connection,
        record: InteractionRecord,
        occurred_at: int,
        now: int,
        *,
        increment: bool,
    ) -> None:
        m = merchants_table
        is_latest = or_(m.c.last_interaction_at.is_(None), m.c.last_interaction_at <= occurred_at)
        values: dict[Any, Any] = {
            m.c.first_interaction_at: case(
                (m.c.first_interaction_at.is_(None), occurred_at),
                (m.c.first_interaction_at > occurred_at, occurred_at),
                else_=m.c.first_interaction_at,
            ),
            m.c.last_interaction_at: case((is_latest, occurred_at), else_=m.c.last_interaction_at),
            m.c.last_interaction_type: case(
                (is_latest, str(record.interaction_type)), else_=m.c.last_interaction_type
            ),
            m.c.last_summary: case((is_latest, record.summary), else_=m.c.last_summary),
            m.c.updated_at: now,
        }
        if increment:
            counter = m.c[_COUNTERS[record.interaction_type]]
            values[counter] = counter + 1
        result = conn.execute(update(m).where(m.c.profile_id == record.profile_id).values(values))
        if result.rowcount == 0:
            log.info("No merchant aggregate for %s yet; counters not updated", record.profile_id)

    def upsert_mail_thread(self, thread: MailThreadRecord) -> None:
        now = _now_ms()
        participants = ", ".join(thread.participants) if thread.participants else None
        message_count = 0 if thread.message_count is UNSET else thread.message_count

        t = mail_threads_table
        stmt = self._insert(t).values(
            thread_id=thread.thread_id,
            profile_id=thread.profile_id,
            subject=thread.subject,
            last_message_preview=thread.last_message_preview,
            last_message_at=to_epoch_ms(thread.last_message_at),
            message_count=message_count,
            participants=participants,
            metadata_json=_dump_json(thread.metadata),
            created_at=now,
            updated_at=now,
        )
        ex = stmt.excluded
        set_: dict[Any, Any] = {
            t.c.profile_id: ex.profile_id,
            t.c.subject: ex.subject,
            t.c.last_message_preview: ex.last_message_preview,
            t.c.last_message_at: case(
                (ex.last_message_at.is_(None), t.c.last_message_at),
                (t.c.last_message_at.is_(None), ex.last_message_at),
                (ex.last_message_at > t.c.last_message_at, ex.last_message_at),
                else_=t.c.last_message_at,
            ),
            t.c.participants: func.coalesce(ex.participants, t.c.participants),
            t.c.metadata_json: func.coalesce(ex.metadata_json, t.c.metadata_json),
            t.c.updated_at: ex.updated_at,
        }
        if thread.message_count is not UNSET:
            set_[t.c.message_count] = ex.message_count
        stmt = stmt.on_conflict_do_update(index_elements=[t.c.thread_id], set_=set_)
        with self._engine.begin() as conn:
            conn.execute(stmt)
        log.debug("Upserted mail thread %s", thread.thread_id)

    # reads --------------------------------------------------------------------

    def get_merchant(self, profile_id: str) -> MerchantAggregateRow | None:
        m = merchants_table
        with self._engine.connect() as conn:
            row = conn.execute(select(m).where(m.c.profile_id == profile_id)).mappings().first()
        return _merchant_row(row) if row is not None else None

    def interactions_for_merchant(self, profile_id: str) -> list[InteractionRow]:
        t = interactions_table
        query = select(t).where(t.c.profile_id == profile_id).order_by(t.c.occurred_at.desc())
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [_interaction_row(row) for row in rows]

    def mail_threads_for_merchant(self, profile_id: str) -> list[MailThreadRow]:
        t = mail_threads_table
        query = (
            select(t)
            .where(t.c.profile_id == profile_id)
            .order_by(t.c.last_message_at.desc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [_mail_thread_row(row) for row in rows]

    def search_merchants(self, query: str, limit: int = 10) -> list[MerchantSearchHit]:
        """Merchants whose interaction summaries contain ``query``, most recently active first."""

        needle = query.strip().lower()
        if not needle or limit <= 0:
            return []
        t = interactions_table
        if self._engine.dialect.name == "postgresql":
            snippets = func.string_agg(t.c.summary, SNIPPET_SEPARATOR)
        else:
            snippets = func.group_concat(t.c.summary, SNIPPET_SEPARATOR)
        last_occurred = func.max(t.c.occurred_at)
        summary_text = func.lower(func.coalesce(t.c.summary, ""), type_=String)
        query_stmt = (
            select(
                t.c.profile_id,
                last_occurred.label("last_occurred"),
                snippets.label("snippets"),
            )
            .where(summary_text.contains(needle, autoescape=True))
            .group_by(t.c.profile_id)
            .order_by(last_occurred.desc(), t.c.profile_id)
            .limit(limit)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query_stmt).all()
        return [
            MerchantSearchHit(
                profile_id=row.profile_id,
                last_occurred_at=from_epoch_ms(row.last_occurred),
                preview=row.snippets or "",
            )
            for row in rows
        ]

    def find_profile_by_normalized_phone(self, phone: str | None) -> str | None:
        normalized = normalize_phone(phone)
        if normalized is None:
            return None
        m = merchants_table
        query = select(m.c.profile_id).where(m.c.primary_phone_normalized == normalized).limit(1)
        with self._engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()

    def find_profile_by_normalized_email(self, email: str | None) -> str | None:
        normalized = normalize_email(email)
        if normalized is None:
            return None
        m = merchants_table
        query = select(m.c.profile_id).where(m.c.primary_email_normalized == normalized).limit(1)
        with self._engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()


def _merchant_row(row: RowMapping) -> MerchantAggregateRow:
    m = merchants_table.c
    last_type = row[m.last_interaction_type]
    return MerchantAggregateRow(
        profile_id=row[m.profile_id],
        uuid=row[m.merchant_uuid],
        name=row[m.name],
        phone=row[m.primary_phone],
        normalized_phone=row[m.primary_phone_normalized],
        email=row[m.primary_email],
        normalized_email=row[m.primary_email_normalized],
        status=row[m.status],
        segment=row[m.segment],
        owner=row[m.owner],
        first_interaction_at=from_epoch_ms(row[m.first_interaction_at]),
        last_interaction_at=from_epoch_ms(row[m.last_interaction_at]),
        total_calls=row[m.total_calls],
        total_messages=row[m.total_messages],
        total_mail=row[m.total_mail],
        last_interaction_type=InteractionType(last_type) if last_type else None,
        last_summary=row[m.last_summary],
        last_synced_at=_required_ms(row[m.last_synced_at]),
        metadata=_load_json(row[m.metadata_json]),
        created_at=_required_ms(row[m.created_at]),
        updated_at=_required_ms(row[m.updated_at]),
    )


def _interaction_row(row: RowMapping) -> InteractionRow:
    t = interactions_table.c
    return InteractionRow(
        id=row[t.id],
        profile_id=row[t.profile_id],
        interaction_type=InteractionType(row[t.interaction_type]),
        direction=row[t.direction],
        summary=row[t.summary],
        sentiment=row[t.sentiment],
        lead_score=row[t.lead_score],
        occurred_at=_required_ms(row[t.occurred_at]),
        external_page_id=row[t.external_page_id],
        source_event_id=row[t.source_event_id],
        mail_thread_id=row[t.mail_thread_id],
        metadata=_load_json(row[t.metadata_json]),
        created_at=_required_ms(row[t.created_at]),
        updated_at=_required_ms(row[t.updated_at]),
    )


def _mail_thread_row(row: RowMapping) -> MailThreadRow:
    t = mail_threads_table.c
    return MailThreadRow(
        thread_id=row[t.thread_id],
        profile_id=row[t.profile_id],
        subject=row[t.subject],
        last_message_preview=row[t.last_message_preview],
        last_message_at=from_epoch_ms(row[t.last_message_at]),
        message_count=row[t.message_count],
        participants=row[t.participants],
        metadata=_load_json(row[t.metadata_json]),
        created_at=_required_ms(row[t.created_at]),
        updated_at=_required_ms(row[t.updated_at]),
    )


def _required_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)
