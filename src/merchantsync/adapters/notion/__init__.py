"""Notion-backed record store."""

from __future__ import annotations

from .client import NotionRecordStore, translate_filter, translate_sort

__all__ = ["NotionRecordStore", "translate_filter", "translate_sort"]
