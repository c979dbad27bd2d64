"""SQLAlchemy-backed interaction ledger."""

from __future__ import annotations

from .ledger import SqlAlchemyInteractionLedger, from_epoch_ms, to_epoch_ms
from .mappings import (
    create_all_tables,
    interactions_table,
    mail_threads_table,
    merchants_table,
    metadata,
)

__all__ = [
    "SqlAlchemyInteractionLedger",
    "create_all_tables",
    "from_epoch_ms",
    "interactions_table",
    "mail_threads_table",
    "merchants_table",
    "metadata",
    "to_epoch_ms",
]
