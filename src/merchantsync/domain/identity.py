"""Canonical comparison keys for phone numbers, emails and merchant names."""

from __future__ import annotations

import json
import re
from enum import StrEnum
from logging import getLogger

log = getLogger(__name__)

_NON_DIGIT = re.compile(r"\D")
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_COUNTRY_PREFIX = re.compile(r"^\+1")
_SELF_NUMBER_SEPARATORS = re.compile(r"[\n,]")


class IdentifierType(StrEnum):
    PHONE = "phone"
    EMAIL = "email"


def _digits(raw: str | None) -> str:
    if not raw:
        return ""
    return _NON_DIGIT.sub("", raw)


def normalize_phone(raw: str | None) -> str | None:
    """Return the 11-digit North American key for ``raw`` or the bare digits otherwise."""

    digits = _digits(raw)
    if not digits:
        return None
    if len(digits) == 11 and digits.startswith("1"):
        return digits
    if len(digits) == 10:
        return f"1{digits}"
    return digits


def normalize_email(raw: str | None) -> str | None:
    if raw is None:
        return None
    normalized = raw.strip().lower()
    return normalized or None


def normalize_identifier(raw: str | None, identifier_type: IdentifierType) -> str | None:
    if identifier_type is IdentifierType.PHONE:
        return normalize_phone(raw)
    return normalize_email(raw)


def normalize_merchant_name(name: str | None) -> str:
    """Reduce a merchant name to lowercase alphanumerics for registry lookups."""

    if not name:
        return ""
    return _NON_ALNUM.sub("", name.lower())


def phone_lookup_formats(raw: str) -> list[str]:
    """Return the ordered, de-duplicated phone variants to try against the record store.

    The hyphenated ten digit form comes first because it is how profile records
    store phone numbers; the raw forms follow for legacy rows.
    """

    digits = _digits(raw)
    without_country = digits[1:] if len(digits) == 11 and digits.startswith("1") else digits
    hyphenated = ""
    if len(without_country) == 10:
        hyphenated = f"{without_country[:3]}-{without_country[3:6]}-{without_country[6:]}"

    candidates = (hyphenated, without_country, raw, _COUNTRY_PREFIX.sub("", raw))
    formats: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in formats:
            formats.append(candidate)
    return formats


def phone_variants(raw: str | None) -> set[str]:
    digits = _digits(raw)
    if not digits:
        return set()
    variants = {digits}
    if len(digits) == 11 and digits.startswith("1"):
        variants.add(digits[1:])
    return variants


class SelfNumberFilter:
    """Recognises the organisation's own phone numbers so they are never matched to merchants."""

    def __init__(self, numbers: set[str] | None = None) -> None:
        self._numbers: set[str] = set()
        for number in numbers or ():
            self._numbers.update(phone_variants(number))

    @classmethod
    def parse(cls, raw_value: str | None) -> SelfNumberFilter:
        """Build a filter from a JSON array or a comma/newline separated list."""

        if raw_value is None or not raw_value.strip():
            return cls()
        trimmed = raw_value.strip()

        entries: list[str] = []
        if trimmed.startswith("["):
            try:
                parsed = json.loads(trimmed)
            except json.JSONDecodeError as exc:
                log.warning("SELF_PHONE_NUMBERS is not valid JSON, using list parsing: %s", exc)
            else:
                if isinstance(parsed, list):
                    entries = [str(item).strip() for item in parsed if item is not None]
                    entries = [entry for entry in entries if entry]
                else:
                    log.warning("SELF_PHONE_NUMBERS JSON value is not an array")

        if not entries:
            entries = [
                part.strip() for part in _SELF_NUMBER_SEPARATORS.split(trimmed) if part.strip()
            ]
        return cls(set(entries))

    def __len__(self) -> int:
        return len(self._numbers)

    def is_self(self, number: str | None) -> bool:
        if not self._numbers:
            return False
        return any(variant in self._numbers for variant in phone_variants(number))

    def external(self, numbers: list[str]) -> list[str]:
        """Return ``numbers`` without the organisation's own numbers, preserving order."""

        kept = [number for number in numbers if not self.is_self(number)]
        if len(kept) != len(numbers):
            log.debug("Skipping %d internal phone number(s)", len(numbers) - len(kept))
        return kept
