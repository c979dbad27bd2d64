#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from merchantsync.app import (
    build_services,
    load_merchant_data,
    reconcile_merchant_uuids,
    search_merchants,
    warm_profile_cache,
)
from merchantsync.common import configure_logging
from merchantsync.config import ConfigurationError
from merchantsync.config.sync import DEFAULT_QUERY_PAGE_SIZE

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from merchantsync.domain.model import MerchantData, MerchantSearchHit, ReconciliationResult


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="merchantsync", description="Merchant identity maintenance for the interaction sync"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser(
        "reconcile",
        help="Write canonical merchant UUIDs across every merchant-referencing collection",
    )
    warm = commands.add_parser(
        "warm-cache", help="Pre-load the profile cache from the profile collection"
    )
    warm.add_argument(
        "--page-size",
        type=int,
        default=DEFAULT_QUERY_PAGE_SIZE,
        help="Records requested per page (default: %(default)s)",
    )
    merchant = commands.add_parser(
        "merchant", help="Show a merchant's interaction history, ledger first"
    )
    identifier = merchant.add_mutually_exclusive_group(required=True)
    identifier.add_argument("--profile-id", help="Profile record id")
    identifier.add_argument("--phone", help="Contact phone number in any format")
    identifier.add_argument("--email", help="Contact email address")
    merchant.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Timeline entries to print (default: %(default)s)",
    )
    search = commands.add_parser(
        "search", help="Find merchants whose interaction summaries mention a phrase"
    )
    search.add_argument("query", help="Phrase to look for, case-insensitive")
    search.add_argument(
        "--limit", type=int, default=10, help="Merchants to return (default: %(default)s)"
    )
    return parser.parse_args(list(argv))


async def _reconcile() -> ReconciliationResult:
    services = build_services()
    try:
        return await reconcile_merchant_uuids(services)
    finally:
        await services.aclose()


async def _warm_cache(page_size: int) -> int:
    services = build_services()
    try:
        return await warm_profile_cache(services, page_size=page_size)
    finally:
        await services.aclose()


async def _merchant(args: argparse.Namespace) -> MerchantData | None:
    services = build_services()
    try:
        return await load_merchant_data(
            services, profile_id=args.profile_id, phone=args.phone, email=args.email
        )
    finally:
        await services.aclose()


async def _search(query: str, limit: int) -> list[MerchantSearchHit]:
    services = build_services()
    try:
        return await search_merchants(services, query, limit=limit)
    finally:
        await services.aclose()


def _print_reconciliation(result: ReconciliationResult) -> None:
    print(f"Scanned: {result.scanned}")
    print(f"Updated: {result.updated}")
    print(f"Missing: {len(result.missing)}")
    for gap in result.missing:
        hint = f" ({gap.merchant_name_hint})" if gap.merchant_name_hint else ""
        print(f"  {gap.collection_name}: {gap.record_id}{hint}")
    if result.failed_collections:
        print(f"Failed collections: {', '.join(result.failed_collections)}")


def _print_merchant(data: MerchantData, limit: int) -> None:
    profile = data.profile
    stats = data.stats
    print(f"Merchant: {profile.merchant_name or '(unnamed)'} ({profile.profile_id})")
    print(f"UUID: {profile.merchant_uuid or '-'}")
    print(f"Source: {data.source}")
    print(
        f"Interactions: {stats.total_interactions} "
        f"(calls {stats.total_calls}, messages {stats.total_messages}, mail {stats.total_mail})"
    )
    if stats.last_interaction_at is not None:
        print(f"Last interaction: {stats.last_interaction_at.isoformat()}")
    print(f"Sentiment: {stats.dominant_sentiment}")
    for entry in data.timeline[:limit]:
        when = entry.occurred_at.isoformat() if entry.occurred_at else "-"
        print(f"  {when} {entry.interaction_type} {entry.id}: {entry.summary}")


def _print_search(hits: list[MerchantSearchHit]) -> None:
    if not hits:
        print("No merchants matched")
    for hit in hits:
        when = hit.last_occurred_at.isoformat() if hit.last_occurred_at else "-"
        print(f"{hit.profile_id} {when} {hit.preview}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        if args.command == "reconcile":
            result = asyncio.run(_reconcile())
            _print_reconciliation(result)
            if result.failed_collections:
                sys.exit(1)
        elif args.command == "warm-cache":
            if args.page_size <= 0:
                print("Error: --page-size must be positive", file=sys.stderr)
                sys.exit(2)
            count = asyncio.run(_warm_cache(args.page_size))
            print(f"Warmed {count} profile mapping(s)")
        elif args.command == "merchant":
            data = asyncio.run(_merchant(args))
            if data is None:
                print("No merchant found")
                sys.exit(1)
            _print_merchant(data, args.limit)
        else:
            if args.limit <= 0:
                print("Error: --limit must be positive", file=sys.stderr)
                sys.exit(2)
            _print_search(asyncio.run(_search(args.query, args.limit)))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:  # noqa: BLE001
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
