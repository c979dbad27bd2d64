from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from merchantsync.domain.model import MerchantInfo
from merchantsync.domain.profiles import phone_lookup_plan
from merchantsync.domain.records import (
    FilterKind,
    extract_plain_text,
    select_property,
)
from tests.support.records import (
    CANONICAL,
    PROFILES,
    InMemoryRecordStore,
    canonical_record,
    profile_record,
)

if TYPE_CHECKING:
    from merchantsync.domain.profiles import ProfileResolver


def test_phone_lookup_plan_tries_exact_before_contains() -> None:
    plan = [(step.format, step.strategy) for step in phone_lookup_plan("+13214436893")]

    assert plan == [
        ("321-443-6893", FilterKind.PHONE_EQUALS),
        ("321-443-6893", FilterKind.TEXT_CONTAINS),
        ("3214436893", FilterKind.PHONE_EQUALS),
        ("3214436893", FilterKind.TEXT_CONTAINS),
        ("+13214436893", FilterKind.PHONE_EQUALS),
        ("+13214436893", FilterKind.TEXT_CONTAINS),
    ]


def test_e164_phone_resolves_hyphenated_profile_on_first_query(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", name="Joe's Pizza", phone="321-443-6893"))

    profile_id = asyncio.run(resolver.find_profile_by_phone("+13214436893"))

    assert profile_id == "p-1"
    assert len(store.queries) == 1
    collection_id, filter_ = store.queries[0]
    assert collection_id == PROFILES
    assert filter_ is not None
    assert filter_.kind is FilterKind.PHONE_EQUALS
    assert filter_.value == "321-443-6893"


def test_phone_stored_as_free_text_found_by_contains(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(
        PROFILES,
        profile_record("p-1", name="Legacy", phone="cell 3214436893 (owner)", phone_as_text=True),
    )

    profile_id = asyncio.run(resolver.find_profile_by_phone("(321) 443-6893"))

    assert profile_id == "p-1"
    kinds = [filter_.kind for _, filter_ in store.queries if filter_ is not None]
    assert kinds == [
        FilterKind.PHONE_EQUALS,
        FilterKind.TEXT_CONTAINS,
        FilterKind.PHONE_EQUALS,
        FilterKind.TEXT_CONTAINS,
    ]


def test_failing_strategy_falls_through_to_next_pair(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", phone="321-443-6893", phone_as_text=True))
    store.failing_filters.add(FilterKind.PHONE_EQUALS)

    assert asyncio.run(resolver.find_profile_by_phone("+13214436893")) == "p-1"


def test_unknown_phone_returns_none(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", phone="321-443-6893"))

    assert asyncio.run(resolver.find_profile_by_phone("+13215550199")) is None
    assert asyncio.run(resolver.find_profile_by_phone("   ")) is None


def test_find_profile_by_email_uses_normalized_exact_match(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", email="owner@joespizza.com"))

    assert asyncio.run(resolver.find_profile_by_email("  Owner@JoesPizza.com ")) == "p-1"
    assert asyncio.run(resolver.find_profile_by_email("other@joespizza.com")) is None
    assert {filter_.kind for _, filter_ in store.queries if filter_} == {FilterKind.EMAIL_EQUALS}


def test_get_merchant_info_memoizes_concurrent_calls(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", name="Joe's Pizza", merchant_uuid="uuid-joe"))
    store.get_delay = 0.01

    async def scenario() -> list[MerchantInfo]:
        return list(await asyncio.gather(*(resolver.get_merchant_info("p-1") for _ in range(10))))

    results = asyncio.run(scenario())

    assert results == [MerchantInfo(uuid="uuid-joe", name="Joe's Pizza")] * 10
    assert store.get_calls == ["p-1"]


def test_get_merchant_info_falls_back_to_registry_and_writes_back(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", name="Joe's Pizza"))
    store.add(CANONICAL, canonical_record("c-1", "JOES PIZZA", "uuid-joe"))

    info = asyncio.run(resolver.get_merchant_info("p-1"))

    assert info == MerchantInfo(uuid="uuid-joe", name="Joe's Pizza")
    assert extract_plain_text(store.properties_of("p-1")["Merchant UUID"]) == "uuid-joe"


def test_get_merchant_info_without_registry_match(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", name="Nobody Inc"))

    info = asyncio.run(resolver.get_merchant_info("p-1"))

    assert info == MerchantInfo(uuid=None, name="Nobody Inc")
    assert store.updates == []


def test_missing_profile_is_cached_as_empty_info(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    async def scenario() -> tuple[MerchantInfo, MerchantInfo]:
        return await resolver.get_merchant_info("gone"), await resolver.get_merchant_info("gone")

    first, second = asyncio.run(scenario())

    assert first == second == MerchantInfo()
    assert store.get_calls == ["gone"]


def test_transient_failure_is_not_memoized(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", name="Joe's Pizza", merchant_uuid="uuid-joe"))
    store.failing_gets.add("p-1")

    async def scenario() -> tuple[MerchantInfo, MerchantInfo]:
        failed = await resolver.get_merchant_info("p-1")
        store.failing_gets.clear()
        return failed, await resolver.get_merchant_info("p-1")

    failed, recovered = asyncio.run(scenario())

    assert failed == MerchantInfo()
    assert recovered == MerchantInfo(uuid="uuid-joe", name="Joe's Pizza")
    assert store.get_calls == ["p-1", "p-1"]


def test_unexpected_failure_is_raised_and_not_memoized(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(PROFILES, profile_record("p-1", name="Joe's Pizza", merchant_uuid="uuid-joe"))
    store.crashing_gets.add("p-1")

    async def scenario() -> MerchantInfo:
        with pytest.raises(ValueError, match="malformed page p-1"):
            await resolver.get_merchant_info("p-1")
        store.crashing_gets.clear()
        return await resolver.get_merchant_info("p-1")

    assert asyncio.run(scenario()) == MerchantInfo(uuid="uuid-joe", name="Joe's Pizza")
    assert store.get_calls == ["p-1", "p-1"]


def test_reset_clears_memo(store: InMemoryRecordStore, resolver: ProfileResolver) -> None:
    store.add(PROFILES, profile_record("p-1", name="Joe's Pizza", merchant_uuid="uuid-joe"))

    async def scenario() -> None:
        await resolver.get_merchant_info("p-1")
        resolver.reset()
        await resolver.get_merchant_info("p-1")

    asyncio.run(scenario())

    assert store.get_calls == ["p-1", "p-1"]


def test_get_profile_reads_all_fields(
    store: InMemoryRecordStore, resolver: ProfileResolver
) -> None:
    store.add(
        PROFILES,
        profile_record(
            "p-1",
            name="Joe's Pizza",
            phone="321-443-6893",
            email="owner@joespizza.com",
            merchant_uuid="uuid-joe",
            extra={
                "Status": {"status": {"name": "Active"}},
                "Segment": select_property("Restaurant"),
                "Owner": {"people": [{"name": "Dana"}]},
                "Tags": {"multi_select": [{"name": "vip"}, {"name": "pos"}]},
            },
        ),
    )

    profile = asyncio.run(resolver.get_profile("p-1"))

    assert profile is not None
    assert profile.merchant_name == "Joe's Pizza"
    assert profile.contact_phone == "321-443-6893"
    assert profile.contact_email == "owner@joespizza.com"
    assert profile.merchant_uuid == "uuid-joe"
    assert profile.status == "Active"
    assert profile.segment == "Restaurant"
    assert profile.owner == "Dana"
    assert profile.tags == ["vip", "pos"]
    assert profile.url == "https://notion.so/p-1"
    assert asyncio.run(resolver.get_profile("missing")) is None
