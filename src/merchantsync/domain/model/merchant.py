"""Merchant identity types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from merchantsync.domain.records import (
    extract_email,
    extract_multi_select,
    extract_person,
    extract_phone,
    extract_plain_text,
    extract_select,
)

if TYPE_CHECKING:
    from datetime import datetime

    from merchantsync.domain.records import PageRecord


@dataclass(frozen=True, slots=True)
class ProfileFields:
    """Property names of the merchant profile collection."""

    name: str = "Name"
    phone: str = "Phone"
    email: str = "Email"
    merchant_uuid: str = "Merchant UUID"
    status: str = "Status"
    segment: str = "Segment"
    owner: str = "Owner"
    tags: str = "Tags"


@dataclass(frozen=True, slots=True)
class MerchantInfo:
    uuid: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class MerchantProfile:
    """A merchant profile record as read from the record store."""

    profile_id: str
    merchant_name: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    merchant_uuid: str | None = None
    status: str | None = None
    segment: str | None = None
    owner: str | None = None
    tags: list[str] | None = None
    url: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(
        cls, record: PageRecord, fields: ProfileFields | None = None
    ) -> MerchantProfile:
        names = fields or ProfileFields()
        return cls(
            profile_id=record.id,
            merchant_name=extract_plain_text(record.property(names.name)),
            contact_phone=extract_phone(record.property(names.phone)),
            contact_email=extract_email(record.property(names.email)),
            merchant_uuid=extract_plain_text(record.property(names.merchant_uuid)),
            status=extract_select(record.property(names.status)),
            segment=extract_select(record.property(names.segment)),
            owner=extract_person(record.property(names.owner)),
            tags=extract_multi_select(record.property(names.tags)),
            url=record.url,
            created_at=record.created_time,
        )


@dataclass(frozen=True, slots=True)
class CanonicalMerchantRecord:
    normalized_name: str
    uuid: str
    source_page_id: str


@dataclass(frozen=True, slots=True)
class MerchantUuidGap:
    """A record that references a merchant but has no resolvable UUID."""

    collection_name: str
    collection_id: str
    record_id: str
    merchant_name_hint: str | None = None


@dataclass(frozen=True, slots=True)
class MerchantContext:
    """Merchant an inbound event was matched to, if any."""

    profile_id: str | None = None
    merchant_uuid: str | None = None
    merchant_name: str | None = None

    @property
    def matched(self) -> bool:
        return self.profile_id is not None

    def with_merchant_uuid(self) -> MerchantContext:
        """Fall back to the profile id when no canonical UUID is known yet."""

        if self.merchant_uuid or not self.profile_id:
            return self
        return MerchantContext(
            profile_id=self.profile_id,
            merchant_uuid=self.profile_id,
            merchant_name=self.merchant_name,
        )


@dataclass(slots=True)
class ReconciliationResult:
    updated: int = 0
    scanned: int = 0
    missing: list[MerchantUuidGap] = field(default_factory=list["MerchantUuidGap"])
    failed_collections: list[str] = field(default_factory=list[str])
