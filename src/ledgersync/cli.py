#!/usr/bin/env python3
"""Command-line interface for ledgersync."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import requests

from ledgersync.config import (
    create_default_config,
    get_config_path,
    get_database_url,
    get_history_days,
    get_owner_id,
    get_storage_path,
    load_config,
    save_json_config,
)
from ledgersync.fetch import ResilientFetcher
from ledgersync.identity import StaticIdentity
from ledgersync.models import Provider
from ledgersync.portfolio import BucketSize, PortfolioReconstructor, calculate_24h_change
from ledgersync.providers import create_adapters
from ledgersync.service import LedgerService
from ledgersync.storage import SqlAlchemyStorage
from ledgersync.sync import SyncOrchestrator


def build_service(config: dict[str, Any] | None, session: requests.Session) -> LedgerService:
    """Wire storage, adapters and the sync engine from config."""
    if not (config or {}).get("database_url"):
        get_storage_path(config).parent.mkdir(parents=True, exist_ok=True)
    storage = SqlAlchemyStorage(get_database_url(config))
    fetcher = ResilientFetcher(session)
    orchestrator = SyncOrchestrator(
        storage,
        create_adapters(fetcher, config),
        history_days=get_history_days(config),
    )
    return LedgerService(
        StaticIdentity(get_owner_id(config)),
        orchestrator,
        PortfolioReconstructor(storage),
    )


def parse_date(value: str) -> datetime:
    """Parse YYYY-MM-DD as midnight UTC (argparse type)."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r} (expected YYYY-MM-DD)") from None


def format_usd(value: Any) -> str:
    if value is None:
        return "N/A"
    return f"${value:,.2f}"


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledgersync",
        description="Sync bank accounts and Solana wallets into a local net-worth ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ledgersync init-config
  ledgersync connect-simplefin <setup-token>
  ledgersync connect-wallet 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU
  ledgersync sync
  ledgersync history --start 2024-01-01 --bucket 1w
  ledgersync value
  ledgersync transactions --limit 20
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.json file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output",
    )

    subparsers = parser.add_subparsers(dest="command")

    connect_simplefin = subparsers.add_parser(
        "connect-simplefin", help="Claim a SimpleFIN setup token and sync its accounts"
    )
    connect_simplefin.add_argument("setup_token", help="Setup token from SimpleFIN Bridge")

    connect_wallet = subparsers.add_parser(
        "connect-wallet", help="Track a Solana wallet by its public address"
    )
    connect_wallet.add_argument("address", help="Solana wallet address")

    sync = subparsers.add_parser("sync", help="Sync all providers (or one)")
    sync.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        help="Only sync this provider",
    )

    history = subparsers.add_parser("history", help="Show net-worth history")
    history.add_argument("--start", type=parse_date, help="Start date (YYYY-MM-DD)")
    history.add_argument("--end", type=parse_date, help="End date (YYYY-MM-DD)")
    history.add_argument(
        "--bucket",
        choices=[b.value for b in BucketSize],
        default=BucketSize.DAY.value,
        help="Bucket size (default: 1d)",
    )

    subparsers.add_parser("value", help="Show current net worth and 24h change")

    accounts = subparsers.add_parser("accounts", help="List accounts")
    accounts.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        help="Only list accounts from this provider",
    )

    remove = subparsers.add_parser("remove-account", help="Stop tracking an account")
    remove.add_argument("account_id", help="Local account id (see 'accounts')")

    settings = subparsers.add_parser("account-settings", help="Change local account settings")
    settings.add_argument("account_id", help="Local account id (see 'accounts')")
    settings.add_argument(
        "--exclude", action="store_true", help="Exclude from net worth"
    )
    settings.add_argument(
        "--include", action="store_true", help="Include in net worth"
    )
    settings.add_argument("--hide", action="store_true", help="Hide the account")
    settings.add_argument("--unhide", action="store_true", help="Show the account")
    settings.add_argument("--category", help="Category label (empty string clears it)")

    transactions = subparsers.add_parser(
        "transactions", help="List transactions of visible accounts"
    )
    transactions.add_argument(
        "--limit", type=int, help="Show at most this many (newest first)"
    )

    label = subparsers.add_parser("label-transaction", help="Set or clear a transaction label")
    label.add_argument("transaction_id", help="Local transaction id (see 'transactions')")
    label.add_argument("label", nargs="?", help="Label to set (omit to clear)")

    subparsers.add_parser(
        "check-simplefin", help="Check that the stored SimpleFIN access still works"
    )

    subparsers.add_parser("show-config", help="Show current configuration")
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def run_command(args: argparse.Namespace, service: LedgerService) -> int:
    """Run a command that needs the service."""
    if args.command == "connect-simplefin":
        result = asyncio.run(service.connect_simplefin(args.setup_token))
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
        print(f"Connected SimpleFIN: {result.account_count} accounts synced")
        return 0

    if args.command == "connect-wallet":
        result = asyncio.run(service.connect_wallet(args.address))
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
        print(f"Connected wallet: {format_usd(result.total_value)} across "
              f"{result.token_count} tokens")
        return 0

    if args.command == "sync":
        if args.provider:
            sync_result = asyncio.run(service.sync_provider(Provider(args.provider)))
            if not sync_result.success:
                print(f"Error: {sync_result.error}", file=sys.stderr)
                return 1
            print(f"Synced {sync_result.synced} {args.provider} accounts")
            return 0

        all_result = asyncio.run(service.sync_all())
        for provider, outcome in all_result.per_provider.items():
            if outcome.success:
                print(f"  {provider.value}: {outcome.synced} accounts", file=sys.stderr)
            else:
                print(f"  {provider.value}: failed - {outcome.error}", file=sys.stderr)
        print(f"Synced {all_result.total_synced} accounts")
        return 0 if all_result.success else 1

    if args.command == "history":
        points = service.portfolio_history(args.start, args.end, BucketSize(args.bucket))
        if not points:
            print("No history yet. Run 'ledgersync sync' first.", file=sys.stderr)
            return 0
        for point in points:
            print(f"{point.timestamp.isoformat()}  {format_usd(point.value):>16}")
        return 0

    if args.command == "value":
        value = service.portfolio_value()
        change = calculate_24h_change(
            service.portfolio_history(bucket_size=BucketSize.HOUR), value.total_value
        )
        print(f"Net worth: {format_usd(value.total_value)} ({value.account_count} accounts)")
        print(f"24h change: {format_usd(change.change_24h)} ({change.change_percent_24h:.2f}%)")
        if value.last_synced:
            print(f"Last synced: {value.last_synced.isoformat()}")
        return 0

    if args.command == "accounts":
        listing = service.list_accounts(Provider(args.provider) if args.provider else None)
        if not listing.success:
            print(f"Error: {listing.error}", file=sys.stderr)
            return 1
        if not listing.accounts:
            print("No accounts connected.", file=sys.stderr)
            return 0
        for account in listing.accounts:
            flags = []
            if not account.include_in_net_worth:
                flags.append("excluded")
            if account.is_hidden:
                flags.append("hidden")
            suffix = f"  [{', '.join(flags)}]" if flags else ""
            print(f"{account.id}  {account.provider.value:<9}  {account.account_type:<10}  "
                  f"{format_usd(account.balance):>14}  {account.name}{suffix}")
        return 0

    if args.command == "remove-account":
        op = service.remove_account(args.account_id)
        if not op.success:
            print(f"Error: {op.error}", file=sys.stderr)
            return 1
        print(f"Removed account {args.account_id}")
        return 0

    if args.command == "account-settings":
        if (args.exclude and args.include) or (args.hide and args.unhide):
            print("Error: conflicting options", file=sys.stderr)
            return 1
        op = service.update_account_settings(
            args.account_id,
            include_in_net_worth=True if args.include else False if args.exclude else None,
            is_hidden=True if args.hide else False if args.unhide else None,
            category=args.category,
        )
        if not op.success:
            print(f"Error: {op.error}", file=sys.stderr)
            return 1
        print(f"Updated account {args.account_id}")
        return 0

    if args.command == "transactions":
        tx_list = service.list_transactions(limit=args.limit)
        if not tx_list.success:
            print(f"Error: {tx_list.error}", file=sys.stderr)
            return 1
        if not tx_list.transactions:
            print("No transactions yet.", file=sys.stderr)
            return 0
        for tx in tx_list.transactions:
            flags = " [pending]" if tx.pending else ""
            label_text = f" #{tx.label_id}" if tx.label_id else ""
            print(f"{tx.id}  {tx.posted_at.date().isoformat()}  {format_usd(tx.amount):>12}  "
                  f"{tx.description}  ({tx_list.account_names.get(tx.account_id, '?')})"
                  f"{flags}{label_text}")
        spent = sum((-tx.amount for tx in tx_list.transactions if tx.is_expense), Decimal(0))
        earned = sum((tx.amount for tx in tx_list.transactions if tx.is_income), Decimal(0))
        print(f"Spending: {format_usd(spent)}  Income: {format_usd(earned)}", file=sys.stderr)
        return 0

    if args.command == "label-transaction":
        op = service.label_transaction(args.transaction_id, args.label)
        if not op.success:
            print(f"Error: {op.error}", file=sys.stderr)
            return 1
        if args.label:
            print(f"Labeled transaction {args.transaction_id} as {args.label}")
        else:
            print(f"Cleared label on transaction {args.transaction_id}")
        return 0

    if args.command == "check-simplefin":
        op = asyncio.run(service.check_simplefin())
        if not op.success:
            print(f"Error: {op.error}", file=sys.stderr)
            return 1
        print("SimpleFIN access is valid")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    # Handle init-config first (before loading config)
    if args.command == "init-config":
        path = args.config or get_config_path()
        if path.exists():
            print(f"Config already exists at {path}", file=sys.stderr)
            return 1
        save_json_config(create_default_config(), path)
        print(f"Wrote default config to {path}")
        return 0

    config: dict[str, Any] | None = load_config(args.config)

    if args.command == "show-config":
        if config:
            print(json.dumps(config, indent=2))
        else:
            print("No configuration found.")
            print("Run 'ledgersync init-config' to create one.")
        return 0

    with requests.Session() as session:
        try:
            service = build_service(config, session)
        except Exception as e:
            print(f"Error opening ledger: {e}", file=sys.stderr)
            return 1
        return run_command(args, service)


if __name__ == "__main__":
    sys.exit(main())
