"""
Management script for tracked store sources.

Sources persist only with STORAGE_BACKEND=mongodb; the in-memory backend
forgets them when the script exits.
"""

import asyncio
import sys

from scheduler.context import build_context
from tracker.exceptions import MonitorError
from tracker.models import utc_now
from utilities.config import config
from utilities.logger import setup_logging


async def list_sources(context) -> None:
    print("\n" + "="*80)
    print("📋 TRACKED SOURCES")
    print("="*80)

    sources = await context.registry.list()
    if not sources:
        print("❌ No sources tracked")
        return

    print(f"✅ Found {len(sources)} sources:")
    print()
    for i, source in enumerate(sources, 1):
        print(f"{i:3d}. {source.name}")
        print(f"     ID: {source.source_id}")
        print(f"     URL: {source.url}")
        print(f"     Kind: {source.kind.value}, every {source.interval_text}")
        print(f"     Last checked: {source.last_checked or 'never'}")
        print()


async def add_source(context, args: list) -> None:
    url = args[0]
    interval = float(args[1]) if len(args) > 1 else 24
    unit = args[2] if len(args) > 2 else "hours"
    name = args[3] if len(args) > 3 else None

    source = await context.registry.register(url, name=name, interval=interval, unit=unit)
    print(f"✅ Tracking '{source.name}' ({source.kind.value}) every {source.interval_text}")
    print(f"   ID: {source.source_id}")


async def remove_source(context, source_id: str) -> None:
    await context.registry.remove(source_id)
    print(f"✅ Removed source {source_id} with its apps and sessions")


async def set_interval(context, args: list) -> None:
    source = await context.registry.set_interval(args[0], float(args[1]), args[2])
    print(f"✅ '{source.name}' now checked every {source.interval_text}")


async def set_interval_bulk(context, args: list) -> None:
    value, unit, source_ids = float(args[0]), args[1], args[2:]
    if not source_ids:
        source_ids = [source.source_id for source in await context.registry.list()]
        if not source_ids:
            print("❌ No sources tracked")
            return

    result = await context.registry.set_interval_bulk(source_ids, value, unit)
    icon = "✅" if not result.failed_ids else "⚠️ "
    print(f"{icon} {result.message}")
    for source_id in result.failed_ids:
        print(f"   ❌ {source_id}")


async def preview_source(context, url: str) -> None:
    preview = await context.registry.preview(url)
    print(f"🔍 {preview.url}")
    print(f"   Kind: {preview.kind.value}")
    print(f"   Name: {preview.name}")


async def list_apps(context, source_id: str) -> None:
    source = await context.registry.get(source_id)
    apps = await context.registry.apps(source_id)
    print(f"\n📱 {len(apps)} apps discovered for '{source.name}'")
    print("="*80)
    for app in apps:
        print(f"  {app.discovered_at:%Y-%m-%d %H:%M}  {app.name}  ({app.app_id})")


async def list_sessions(context, page: int) -> None:
    result = await context.reporter.list_sessions(page=page)
    print(f"\n🕒 Check sessions, page {result.page} of {max(result.total_pages, 1)} ({result.total} total)")
    print("="*80)
    for session in result.sessions:
        line = (
            f"  {session.started_at:%Y-%m-%d %H:%M:%S}  {session.status.value:<9}  "
            f"{session.apps_found} apps, {session.new_apps_found} new  [{session.source_id}]"
        )
        if session.error:
            line += f"  error: {session.error}"
        print(line)


async def show_statistics(context) -> None:
    stats = await context.reporter.build_stats(utc_now())
    print("\n📊 MONITORING STATISTICS")
    print("="*80)
    print(f"Total sources:       {stats.total_sources}")
    print(f"Total apps:          {stats.total_apps}")
    print(f"Total sessions:      {stats.total_sessions}")
    print(f"New apps (last 24h): {stats.new_apps_24h}")


async def test_webhook(context) -> None:
    result = await context.notifier.send_test()
    if result.success:
        print(f"✅ Test webhook delivered (status {result.status_code})")
    elif result.skipped:
        print(f"ℹ️  Test webhook skipped: {result.error}")
    else:
        print(f"❌ Test webhook failed: {result.error}")


def print_usage() -> None:
    print("Usage: python manage_sources.py <command> [args]")
    print()
    print("Commands:")
    print("  list                              - List tracked sources")
    print("  add <url> [value] [unit] [name]   - Track a store page (default every 24 hours)")
    print("  remove <source_id>                - Stop tracking a source")
    print("  interval <source_id> <value> <unit> - Change a source's check interval")
    print("  interval-all <value> <unit> [id ...] - Change the interval of the given sources, or of all")
    print("  preview <url>                     - Show the detected kind and name without tracking")
    print("  apps <source_id>                  - List apps discovered for a source")
    print("  sessions [page]                   - List check sessions")
    print("  stats                             - Show monitoring statistics")
    print("  test-webhook                      - Send a test webhook notification")


async def run(context, command: str, args: list) -> bool:
    """Dispatch one command. Returns False for unknown commands or missing arguments."""
    if command == "list":
        await list_sources(context)
    elif command == "add" and args:
        await add_source(context, args)
    elif command == "remove" and args:
        await remove_source(context, args[0])
    elif command == "interval-all" and len(args) >= 2:
        await set_interval_bulk(context, args)
    elif command == "preview" and args:
        await preview_source(context, args[0])
    elif command == "interval" and len(args) >= 3:
        await set_interval(context, args)
    elif command == "apps" and args:
        await list_apps(context, args[0])
    elif command == "sessions":
        await list_sessions(context, int(args[0]) if args else 1)
    elif command == "stats":
        await show_statistics(context)
    elif command == "test-webhook":
        await test_webhook(context)
    else:
        return False
    return True


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1].lower()

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    context = build_context(config)
    await context.store.connect()
    try:
        handled = await run(context, command, sys.argv[2:])
    except (MonitorError, ValueError) as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
    finally:
        await context.store.disconnect()

    if not handled:
        print(f"❌ Unknown command or missing arguments: {command}")
        print_usage()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
