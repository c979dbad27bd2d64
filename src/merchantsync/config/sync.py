"""Synchronization defaults for interaction and reconciliation services."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_QUERY_PAGE_SIZE = 100
DEFAULT_PREVIEW_LENGTH = 200


@dataclass(frozen=True, slots=True)
class SyncConfig:
    query_page_size: int = DEFAULT_QUERY_PAGE_SIZE
    mail_preview_length: int = DEFAULT_PREVIEW_LENGTH


def get_sync_config() -> SyncConfig:
    return SyncConfig()
