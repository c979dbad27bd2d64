"""Domain port definitions for adapters."""

from __future__ import annotations

from .cache import CacheTierError, EdgeCache, RegionalStore
from .ledger import InteractionLedger
from .record_store import RecordStore, RecordStoreError
from .workflow import (
    DurableExecutionFacility,
    StepFunction,
    WorkflowDispatchError,
    WorkflowStep,
)

__all__ = [
    "CacheTierError",
    "DurableExecutionFacility",
    "EdgeCache",
    "InteractionLedger",
    "RecordStore",
    "RecordStoreError",
    "RegionalStore",
    "StepFunction",
    "WorkflowDispatchError",
    "WorkflowStep",
]
