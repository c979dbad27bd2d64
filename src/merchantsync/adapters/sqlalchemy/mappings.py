"""SQLAlchemy Core tables for the interaction ledger.

Timestamps are epoch milliseconds; ``metadata`` columns hold JSON text.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Column, Float, Integer, MetaData, String, Table, Text

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "pk": "pk_%(table_name)s",
    }
)

merchants_table = Table(
    "merchants",
    metadata,
    Column("profile_id", String, primary_key=True),
    Column("merchant_uuid", String, nullable=True),
    Column("name", String, nullable=True),
    Column("primary_phone", String, nullable=True),
    Column("primary_phone_normalized", String, nullable=True, index=True),
    Column("primary_email", String, nullable=True),
    Column("primary_email_normalized", String, nullable=True, index=True),
    Column("status", String, nullable=True),
    Column("segment", String, nullable=True),
    Column("owner", String, nullable=True),
    Column("first_interaction_at", BigInteger, nullable=True),
    Column("last_interaction_at", BigInteger, nullable=True),
    Column("total_calls", Integer, nullable=False, default=0),
    Column("total_messages", Integer, nullable=False, default=0),
    Column("total_mail", Integer, nullable=False, default=0),
    Column("last_interaction_type", String, nullable=True),
    Column("last_summary", Text, nullable=True),
    Column("last_synced_at", BigInteger, nullable=False),
    Column("metadata", Text, key="metadata_json", nullable=True),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

interactions_table = Table(
    "interactions",
    metadata,
    Column("id", String, primary_key=True),
    Column("profile_id", String, nullable=False, index=True),
    Column("interaction_type", String, nullable=False),
    Column("direction", String, nullable=True),
    Column("summary", Text, nullable=True),
    Column("sentiment", String, nullable=True),
    Column("lead_score", Float, nullable=True),
    Column("occurred_at", BigInteger, nullable=False, index=True),
    Column("external_page_id", String, nullable=True),
    Column("source_event_id", String, nullable=True),
    Column("mail_thread_id", String, nullable=True),
    Column("metadata", Text, key="metadata_json", nullable=True),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)

mail_threads_table = Table(
    "mail_threads",
    metadata,
    Column("thread_id", String, primary_key=True),
    Column("profile_id", String, nullable=False, index=True),
    Column("subject", String, nullable=True),
    Column("last_message_preview", Text, nullable=True),
    Column("last_message_at", BigInteger, nullable=True),
    Column("message_count", Integer, nullable=True),
    Column("participants", Text, nullable=True),
    Column("metadata", Text, key="metadata_json", nullable=True),
    Column("created_at", BigInteger, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)


def create_all_tables(engine: Engine) -> None:
    metadata.create_all(engine)
    log.info("Ledger tables ensured on %s", engine.url.render_as_string(hide_password=True))
