"""ShelfScanner maintenance CLI.

Serverless deployments have no long-running process to sweep expired rows,
so a scheduler runs these commands instead.

Examples:
    shelfscanner-maintenance cleanup
    shelfscanner-maintenance stats --output-json
    shelfscanner-maintenance expire --title "dune" --clear-summaries
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable

from shelfscanner.config import Settings, get_settings
from shelfscanner.core.database import (
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from shelfscanner.core.exceptions import ShelfScannerError
from shelfscanner.core.logging import configure_logging, log_context
from shelfscanner.dependencies import Services, build_services, close_services


async def _with_services(
    settings: Settings,
    action: Callable[[Services], Awaitable[int]],
) -> int:
    await init_db(settings)
    services: Services | None = None
    try:
        if settings.database_url.startswith("sqlite"):
            await create_tables()
        services = build_services(settings, get_session_factory())
        return await action(services)
    finally:
        if services is not None:
            await close_services(services)
        await close_db()


async def cleanup_command(args: argparse.Namespace, services: Services) -> int:
    """Delete expired cache rows and stale rate-limit counters."""
    expired = await services.cache.run_maintenance()
    stale = await services.rate_limiter.cleanup_stale_counters()
    print(f"Expired cache entries deleted: {expired}")
    print(f"Stale rate-limit rows deleted: {stale}")
    return 0


async def stats_command(args: argparse.Namespace, services: Services) -> int:
    """Print current API usage."""
    stats = await services.rate_limiter.get_usage_stats()

    if args.output_json:
        print(json.dumps({name: s.to_dict() for name, s in stats.items()}, indent=2))
        return 0

    if not stats:
        print("No usage statistics available.")
        return 0

    for name, s in sorted(stats.items()):
        daily_limit = s.daily_limit if s.daily_limit is not None else "unlimited"
        marker = "ok" if s.within_limits else "LIMITED"
        print(f"{name}: [{marker}]")
        print(f"   Window: {s.window_usage}/{s.window_limit} per {s.window_seconds}s")
        print(f"   Daily:  {s.daily_usage}/{daily_limit}")
    return 0


async def expire_command(args: argparse.Namespace, services: Services) -> int:
    """Force cache rows to expire so they are regenerated."""
    changed = await services.cache.expire_entries(
        title_filter=args.title,
        preserve_summaries=not args.clear_summaries,
    )
    print(f"Cache entries expired: {changed}")
    return 0


async def clear_ratings_command(args: argparse.Namespace, services: Services) -> int:
    """Clear ratings that were not produced by the LLM."""
    cleared = await services.cache.cleanup_non_authoritative_ratings()
    print(f"Non-authoritative ratings cleared: {cleared}")
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, Services], Awaitable[int]]] = {
    "cleanup": cleanup_command,
    "stats": stats_command,
    "expire": expire_command,
    "clear-ratings": clear_ratings_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shelfscanner-maintenance",
        description="ShelfScanner cache and rate-limit maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s cleanup                               # Sweep expired rows
  %(prog)s stats --output-json                   # Print API usage as JSON
  %(prog)s expire --title dune                   # Expire matching entries
  %(prog)s clear-ratings                         # Drop untrusted ratings
""",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("cleanup", help="Delete expired cache rows and stale counters")

    stats_parser = subparsers.add_parser("stats", help="Show API usage")
    stats_parser.add_argument("--output-json", action="store_true", help="Print JSON")

    expire_parser = subparsers.add_parser("expire", help="Force cache entries to expire")
    expire_parser.add_argument("--title", default=None, help="Only titles containing this text")
    expire_parser.add_argument(
        "--clear-summaries", action="store_true", help="Also clear stored summaries"
    )

    subparsers.add_parser("clear-ratings", help="Clear ratings not produced by the LLM")

    return parser


def run(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    """Parse ``argv`` and run the command; returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = settings or get_settings()
    configure_logging(settings)

    command = COMMANDS[args.command]

    async def action(services: Services) -> int:
        return await command(args, services)

    try:
        with log_context(command=args.command):
            return asyncio.run(_with_services(settings, action))
    except ShelfScannerError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def main() -> None:
    """Main CLI function"""
    sys.exit(run())


if __name__ == "__main__":
    main()
