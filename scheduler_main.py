"""
Main entry point for the app store monitor scheduler.

Usage:
    python scheduler_main.py                 # Daemon mode, checks due sources every tick
    python scheduler_main.py --once          # Check due sources once and exit
    python scheduler_main.py --check-all     # Check every source once and exit
    python scheduler_main.py --check <id>    # Check one source and exit
    python scheduler_main.py --status        # Print monitoring status and exit
"""

import asyncio
import sys

import structlog

from scheduler.context import build_context
from scheduler.models import TriggerResult, TriggerStatus
from scheduler.scheduler_service import SchedulerService
from tracker.models import utc_now
from utilities.config import config
from utilities.logger import setup_logging

USAGE = "Usage: python scheduler_main.py [--once|--check-all|--check <source_id>|--status]"


def print_trigger_result(result: TriggerResult) -> None:
    """Print a trigger result summary."""
    icon = "✅" if result.status == TriggerStatus.COMPLETED and not result.sources_failed else "⚠️ "
    print("\n" + "="*60)
    print(f"{icon} {result.status.value.upper()}: {result.message}")
    print("="*60)
    if result.next_allowed_run:
        print(f"Next allowed run: {result.next_allowed_run.isoformat()}")
    for outcome in result.results:
        name = outcome.source_name or outcome.source_id
        if outcome.success:
            print(f"  ✅ {name}: {outcome.total_items} apps, {outcome.new_items_count} new")
            if outcome.notifications_failed:
                print(f"     ⚠️  {outcome.notifications_failed} notifications failed")
        else:
            print(f"  ❌ {name}: [{outcome.error_type}] {outcome.error}")
    print(f"Duration: {result.duration_seconds:.2f}s")


async def print_status(service: SchedulerService) -> None:
    """Print per-source scheduling state."""
    status = await service.context.reporter.build_status(utc_now(), scheduler_running=False)
    print("\n" + "="*60)
    print("📊 MONITORING STATUS")
    print("="*60)
    print(f"Total sources: {status.total_sources}")
    print(f"Needing monitoring: {status.sources_needing_monitoring}")
    print()
    for source in status.sources:
        marker = "🔔" if source.needs_monitoring else "⏳"
        last = source.last_checked.isoformat() if source.last_checked else "never"
        print(f"{marker} {source.name} ({source.kind}, every {source.interval})")
        print(f"     Last checked: {last}")
        if source.next_check_time:
            print(f"     Next check: {source.next_check_time.isoformat()} "
                  f"(in {source.seconds_until_next_check}s)")


async def run_command(service: SchedulerService, args: list) -> int:
    """Run a one-shot command. Returns the process exit code."""
    command = args[0]

    if command == "--status":
        await print_status(service)
        return 0

    if command == "--check-all":
        result = await service.check_all()
    elif command == "--check":
        if len(args) < 2:
            print("❌ Error: source id required for --check")
            print(USAGE)
            return 1
        result = await service.check_source(args[1])
    else:
        print(f"Unknown argument: {command}")
        print(USAGE)
        return 1

    print_trigger_result(result)
    return 0 if result.status in (TriggerStatus.COMPLETED, TriggerStatus.NO_SOURCES_DUE) else 1


async def main():
    """Main function to start the scheduler service."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    logger = structlog.get_logger(__name__)

    try:
        context = build_context(config)
        service = SchedulerService(context)

        logger.info(
            "Scheduler service configured",
            storage_backend=config.storage_backend,
            tick_seconds=context.scheduler_config.tick_seconds,
            timezone=context.scheduler_config.timezone,
            notifications_active=context.notifier.active,
            production=config.is_production()
        )

        args = sys.argv[1:]
        if not args:
            print("\n" + "="*60)
            print("🏭 DAEMON MODE ENABLED")
            print("="*60)
            print(f"✅ Due sources checked every {context.scheduler_config.tick_seconds}s")
            print("✅ Scheduler runs continuously until SIGINT/SIGTERM")
            print("="*60)
            await service.start()
            return

        if args[0] == "--once":
            result = await service.start(run_once=True)
            print_trigger_result(result)
            sys.exit(0 if result.status != TriggerStatus.FAILED else 1)

        await context.store.connect()
        try:
            exit_code = await run_command(service, args)
        finally:
            await context.store.disconnect()
        sys.exit(exit_code)

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error("Failed to start scheduler service", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
