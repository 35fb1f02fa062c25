"""
Operator CLI for the storage governor.

Usage:
    python -m LSG_Database.cli report --top 5
    python -m LSG_Database.cli stats
    python -m LSG_Database.cli purge
    python -m LSG_Database.cli dedupe
    python -m LSG_Database.cli dedupe --apply --max 20
    python -m LSG_Database.cli cleanup standard
    python -m LSG_Database.cli cleanup emergency --dry-run
    python -m LSG_Database.cli cleanup destructive --confirm
    python -m LSG_Database.cli sync --user-id <uuid>
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional
from uuid import UUID

from LSG_Database.governor import StorageGovernor
from LSG_Database.lsg_db import connection
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_server import config as srv_config
from LSG_Database.lsg_server.db import pool_session
from LSG_Database.lsg_server.sync_source import PostgresSyncSource
from LSG_Database.lsg_shared import config, errors


class Display:
    """ANSI terminal formatting."""

    RESET  = "\033[0m"
    BOLD   = "\033[1m"
    DIM    = "\033[2m"
    RED    = "\033[91m"
    GREEN  = "\033[92m"
    YELLOW = "\033[93m"
    CYAN   = "\033[96m"

    STATE_COLORS = {
        "NOMINAL":     GREEN,
        "APPROACHING": YELLOW,
        "CRITICAL":    RED,
    }

    @classmethod
    def header(cls, title: str) -> None:
        line = "═" * 60
        print(f"\n{cls.CYAN}{cls.BOLD}{line}")
        print(f"  {title}")
        print(f"{line}{cls.RESET}\n")

    @classmethod
    def stat_row(cls, label: str, value, width: int = 28) -> None:
        print(f"  {label:<{width}} {cls.BOLD}{value}{cls.RESET}")

    @classmethod
    def error(cls, msg: str) -> None:
        print(f"  {cls.RED}✗{cls.RESET} {msg}")

    @classmethod
    def success(cls, msg: str) -> None:
        print(f"  {cls.GREEN}✓{cls.RESET} {msg}")


D = Display


def _kb(n: int) -> str:
    return f"{n / 1024:.2f} KB"


def build_governor(args: argparse.Namespace) -> StorageGovernor:
    client = connection.create_store_client(args.host, args.port, args.db)
    return StorageGovernor(RecordStore(client))


# ─── Commands ───

def cmd_report(gov: StorageGovernor, args: argparse.Namespace) -> int:
    report = gov.report(args.top)
    state = gov.state()
    D.header("Storage Usage")
    D.stat_row("Total usage", _kb(report.total_usage_bytes))
    D.stat_row("Ceiling", _kb(report.ceiling_bytes))
    D.stat_row("Usage", f"{report.usage_percentage:.1f}%")
    D.stat_row("State", f"{D.STATE_COLORS[state]}{state}")
    print(f"\n  {D.DIM}Largest keys{D.RESET}")
    for i, entry in enumerate(report.largest_entries, 1):
        D.stat_row(f"{i}. {entry.key}", _kb(entry.size_bytes))
    return 0


def cmd_stats(gov: StorageGovernor, args: argparse.Namespace) -> int:
    s = gov.stats()
    D.header("Duplicate Registry")
    D.stat_row("Tracked duplicates", s.count)
    D.stat_row("Cleaned in last 24h", s.recent_24h)
    for reason, count in sorted(s.by_reason.items()):
        D.stat_row(f"  {reason}", count)
    if s.count:
        D.stat_row("Oldest entry age", f"{s.oldest_entry_age_ms / 3_600_000:.1f} h")
        D.stat_row("Newest entry age", f"{s.newest_entry_age_ms / 3_600_000:.1f} h")
    return 0


def cmd_purge(gov: StorageGovernor, args: argparse.Namespace) -> int:
    purged = gov.purge_expired()
    D.success(f"Purged {purged} expired duplicate entries")
    return 0


def cmd_cleanup(gov: StorageGovernor, args: argparse.Namespace) -> int:
    try:
        if args.dry_run:
            result = gov.plan_cleanup(args.tier)
        else:
            result = gov.run_cleanup(args.tier, confirm=args.confirm)
    except errors.DestructiveCleanupRefusedError as e:
        D.error(f"{e} (pass --confirm)")
        return 2

    verb = "Would remove" if result.dry_run else "Removed"
    D.header(f"{result.tier.title()} Cleanup")
    for key in result.removed_keys:
        print(f"  {D.DIM}-{D.RESET} {key}")
    D.success(f"{verb} {len(result.removed_keys)} keys, {_kb(result.freed_bytes)}")
    return 0


def cmd_dedupe(gov: StorageGovernor, args: argparse.Namespace) -> int:
    result = gov.cleanup_duplicates(dry_run=not args.apply, max_to_delete=args.max)
    D.header("Duplicate Cleanup")
    D.stat_row("Duplicate groups", result.total_groups)
    D.stat_row("Duplicates found", result.total_duplicates)
    D.stat_row("Largest group", result.largest_group)
    for record_id in result.removed_ids:
        print(f"  {D.DIM}-{D.RESET} {record_id}")
    if result.dry_run:
        D.success(f"Would remove {len(result.removed_ids)} duplicates (pass --apply)")
    else:
        D.success(f"Removed {len(result.removed_ids)} duplicates")
    return 0


async def _run_sync(gov: StorageGovernor, args: argparse.Namespace) -> int:
    try:
        async with pool_session(args.dsn) as pool:
            gov.attach_source(PostgresSyncSource(pool, UUID(args.user_id)))
            result = await gov.sync()
    except (errors.ConnectionPoolError, errors.QuotaExceededError) as e:
        D.error(str(e))
        return 1

    D.header("Sync Cycle")
    D.stat_row("State", result.state)
    D.stat_row("Received", result.received)
    D.stat_row("Applied", result.applied_count)
    D.stat_row("Written", result.written_count)
    D.stat_row("Skipped duplicates", result.skipped_duplicates)
    D.stat_row("Quarantined", len(result.quarantined))
    if result.abort_reason:
        D.error(f"aborted: {result.abort_reason}")
        return 1
    return 0


def cmd_sync(gov: StorageGovernor, args: argparse.Namespace) -> int:
    return asyncio.run(_run_sync(gov, args))


COMMANDS = {
    "report":  cmd_report,
    "stats":   cmd_stats,
    "purge":   cmd_purge,
    "cleanup": cmd_cleanup,
    "dedupe":  cmd_dedupe,
    "sync":    cmd_sync,
}


# ─── Arg parsing ───

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="LSG storage governor: quota diagnostics and cleanup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--host", default=config.REDIS_HOST, help="Redis host")
    parser.add_argument("--port", type=int, default=config.REDIS_PORT, help="Redis port")
    parser.add_argument("--db", type=int, default=config.REDIS_STORE_DB, help="Redis logical DB")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p_report = sub.add_parser("report", help="Show usage and the largest keys")
    p_report.add_argument("--top", type=int, default=config.REPORT_TOP_N, help="Number of keys to list")

    sub.add_parser("stats", help="Show duplicate registry statistics")
    sub.add_parser("purge", help="Drop expired duplicate registry entries")

    p_cleanup = sub.add_parser("cleanup", help="Run an eviction tier manually")
    p_cleanup.add_argument("tier", type=str.upper, choices=sorted(config.VALID_EVICTION_TIERS))
    p_cleanup.add_argument("--confirm", action="store_true", help="Required for the destructive tier")
    p_cleanup.add_argument("--dry-run", action="store_true", help="List what would be removed")

    p_dedupe = sub.add_parser("dedupe", help="Find duplicate records and remove all but the oldest")
    p_dedupe.add_argument("--apply", action="store_true", help="Delete instead of listing")
    p_dedupe.add_argument("--max", type=int, default=config.DUPLICATE_CLEANUP_MAX, help="Most duplicates to remove")

    p_sync = sub.add_parser("sync", help="Run one sync cycle against PostgreSQL")
    p_sync.add_argument("--user-id", required=True, help="Remote user UUID")
    p_sync.add_argument("--dsn", default=srv_config.PG_DSN, help="PostgreSQL DSN")

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        gov = build_governor(args)
    except errors.StoreUnavailableError as e:
        D.error(str(e))
        return 1

    try:
        return COMMANDS[args.command](gov, args)
    finally:
        connection.close(gov.store.db)


if __name__ == "__main__":
    sys.exit(main())
