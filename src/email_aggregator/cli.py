"""Command-line interface for Email Aggregator.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

import httpx
import structlog

from email_aggregator import __version__
from email_aggregator.categorization import Categorizer
from email_aggregator.config import Settings, get_settings
from email_aggregator.exceptions import AuthError, EmailAggregatorError
from email_aggregator.folders import ALL_FOLDER, FOLDERS
from email_aggregator.models import ProviderKind
from email_aggregator.ollama.client import OllamaClient
from email_aggregator.store import MessageRepository, SQLiteDatabase, SyncStateRepository
from email_aggregator.sync import SyncOrchestrator
from email_aggregator.utils import configure_logging

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="email-aggregator", description="Email Aggregator")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings database_path)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch one page of categorized messages (from the store or the provider)",
    )
    fetch_parser.add_argument("--user", required=True, help="User id owning the mailbox")
    fetch_parser.add_argument(
        "--provider",
        choices=[k.value for k in ProviderKind],
        default=ProviderKind.GOOGLE.value,
        help="Mail provider (default: google)",
    )
    fetch_parser.add_argument(
        "--folder",
        choices=list(FOLDERS),
        default=ALL_FOLDER,
        help="Folder to list (default: all)",
    )
    fetch_parser.add_argument("--page", type=int, default=1, help="1-based page number")
    fetch_parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Messages per page (default: settings default_page_size)",
    )
    fetch_parser.add_argument(
        "--token",
        default=None,
        help="Provider bearer token (only needed when the store cannot serve the page)",
    )

    state_parser = subparsers.add_parser("sync-state", help="Show stored continuation state")
    state_parser.add_argument("--user", required=True, help="User id")

    stats_parser = subparsers.add_parser("stats", help="Count stored messages per category")
    stats_parser.add_argument("--user", required=True, help="User id")

    return parser


def _open_database(settings: Settings, db_path: Optional[Path]) -> SQLiteDatabase:
    database = SQLiteDatabase(db_path or settings.database_path)
    database.initialize()
    return database


def _short(value: Optional[str], width: int = 24) -> str:
    if value is None:
        return "(none)"
    return value if len(value) <= width else f"{value[: width - 3]}..."


async def _cmd_fetch(args: argparse.Namespace, settings: Settings) -> int:
    database = _open_database(settings, args.db)
    ollama = OllamaClient(settings)
    http_client = httpx.AsyncClient(timeout=settings.provider_timeout)
    orchestrator = SyncOrchestrator(
        messages=MessageRepository(database),
        sync_state=SyncStateRepository(database),
        categorizer=Categorizer(ollama, concurrency=settings.categorization_concurrency),
        settings=settings,
        http_client=http_client,
    )

    try:
        response = await orchestrator.fetch_page(
            args.user,
            args.folder,
            args.page,
            args.page_size,
            provider=ProviderKind(args.provider),
            access_token=args.token,
        )
    finally:
        await http_client.aclose()
        await ollama.aclose()

    for m in response.messages:
        read = "READ" if m.is_read else "UNREAD"
        sender = m.sender_email or m.sender or "(unknown sender)"
        print(
            f"{read}\t{m.received_at.isoformat()}\t{m.category.value}\tP{m.priority}"
            f"\t{sender}\t{m.subject}"
        )

    p = response.pagination
    more = "more available" if p.has_more else "no more pages"
    print(
        f"\nPage {p.page} ({len(response.messages)}/{p.page_size}) "
        f"of {p.total_messages} stored messages, {more}"
    )
    return 0


def _cmd_sync_state(args: argparse.Namespace, settings: Settings) -> int:
    repo = SyncStateRepository(_open_database(settings, args.db))

    states = repo.list_for_user(args.user)
    if not states:
        print(f"No sync state for user {args.user}")
        return 0

    for s in states:
        print(f"{s.provider.value}\t{s.last_sync_time.isoformat()}\t{_short(s.continuation_token)}")
    return 0


def _cmd_stats(args: argparse.Namespace, settings: Settings) -> int:
    repo = MessageRepository(_open_database(settings, args.db))

    total = repo.count(args.user)
    unread = len(repo.list_recent(args.user, is_read=False))
    print(f"Total messages: {total}")
    print(f"Unread messages: {unread}")

    print("\nBy category:")
    for c in repo.category_counts(args.user):
        unread_rate = 0.0 if c.total_messages == 0 else c.unread_messages / c.total_messages
        print(f"- {c.category.value}: {c.total_messages} messages ({unread_rate:.0%} unread)")

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Email Aggregator CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()
    configure_logging(settings)

    logger.info("email_aggregator_cli_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        if parsed.command == "fetch":
            return asyncio.run(_cmd_fetch(parsed, settings))
        if parsed.command == "sync-state":
            return _cmd_sync_state(parsed, settings)
        if parsed.command == "stats":
            return _cmd_stats(parsed, settings)
    except AuthError as e:
        print(f"Authentication failed: {e}. Please re-authenticate.", file=sys.stderr)
        return 3
    except EmailAggregatorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
