from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from merchantsync.adapters.sqlalchemy import SqlAlchemyInteractionLedger, create_all_tables
from merchantsync.domain.profiles import ProfileResolver
from merchantsync.domain.registry import CanonicalMerchantRegistry
from tests.support.records import CANONICAL, PROFILES, InMemoryRecordStore

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # one shared connection: the ledger is also driven from worker threads
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def ledger(sqlite_engine: Engine) -> SqlAlchemyInteractionLedger:
    return SqlAlchemyInteractionLedger(sqlite_engine)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def registry(store: InMemoryRecordStore) -> CanonicalMerchantRegistry:
    return CanonicalMerchantRegistry(store, CANONICAL)


@pytest.fixture
def resolver(
    store: InMemoryRecordStore, registry: CanonicalMerchantRegistry
) -> ProfileResolver:
    return ProfileResolver(store, PROFILES, registry)
