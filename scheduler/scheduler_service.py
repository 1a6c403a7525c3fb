"""
Main scheduler service for the app store monitor.

This module provides:
- Interval ticks with APScheduler driving the due-set check cycle
- Manual trigger entry points (due now, all sources, one source)
- Single-flight and minimum-spacing guards shared by every path
- Per-source error isolation inside a cycle
"""

import asyncio
import signal
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from scheduler.context import MonitorContext
from scheduler.models import SourceCheckOutcome, TriggerResult, TriggerStatus
from tracker.exceptions import (
    FetchError,
    MonitorError,
    PersistenceError,
    SourceNotFoundError,
)
from tracker.models import Source, utc_now

logger = structlog.get_logger(__name__)

CYCLE_JOB_ID = "monitor_cycle"


def _error_type(error: Exception) -> str:
    if isinstance(error, FetchError):
        return "fetch_error"
    if isinstance(error, PersistenceError):
        return "persistence_error"
    if isinstance(error, SourceNotFoundError):
        return "source_not_found"
    if isinstance(error, MonitorError):
        return "monitor_error"
    return "unexpected_error"


class SchedulerService:
    """Scheduler service running due-set check cycles."""

    def __init__(self, context: MonitorContext, clock: Callable[[], datetime] = utc_now):
        """
        Initialize scheduler service.

        Args:
            context: Shared monitor components
            clock: Source of the current time
        """
        self.context = context
        self.config = context.scheduler_config
        self.clock = clock
        self.scheduler = AsyncIOScheduler(timezone=self.config.timezone)
        self.logger = logger.bind(component="scheduler_service")
        self._shutdown_event: Optional[asyncio.Event] = None

        self._setup_scheduler_listeners()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            self.logger.info("Received signal, shutting down gracefully", signal=signum)
            loop.call_soon_threadsafe(self._shutdown_event.set)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            retval = event.retval
            self.logger.info(
                "Job executed",
                job_id=event.job_id,
                status=retval.status.value if retval else None,
                duration=retval.duration_seconds if retval else 0
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    async def start(self, run_once: bool = False) -> Optional[TriggerResult]:
        """
        Start the scheduler service.

        In run-once mode a single cycle is executed and its result returned.
        Otherwise the service ticks until SIGINT/SIGTERM or ``stop``.
        """
        try:
            await self.context.store.connect()

            if run_once:
                self.logger.info("Starting scheduler service in RUN ONCE MODE")
                result = await self.run_cycle()
                self.logger.info("Run once mode completed", status=result.status.value)
                return result

            self.logger.info("Starting scheduler service")
            self._shutdown_event = asyncio.Event()
            self._setup_signal_handlers()
            self._add_scheduled_jobs()
            self.scheduler.start()

            self.logger.info(
                "Scheduler service started",
                timezone=self.config.timezone,
                tick_seconds=self.config.tick_seconds
            )

            await self._shutdown_event.wait()
            self.stop()
            return None

        except Exception as e:
            self.logger.error("Failed to start scheduler service", error=str(e))
            raise
        finally:
            await self.context.store.disconnect()

    def stop(self) -> None:
        """Stop the scheduler service."""
        try:
            self.logger.info("Stopping scheduler service")

            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
            if self._shutdown_event is not None:
                self._shutdown_event.set()

            self.logger.info("Scheduler service stopped")

        except Exception as e:
            self.logger.error("Error stopping scheduler service", error=str(e))

    def _add_scheduled_jobs(self) -> None:
        """Add the interval cycle job; the first tick fires immediately."""
        self.scheduler.add_job(
            func=self.run_cycle,
            trigger='interval',
            seconds=self.config.tick_seconds,
            id=CYCLE_JOB_ID,
            name='Check Due Sources',
            next_run_time=utc_now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.logger.info("Added check cycle job", tick_seconds=self.config.tick_seconds)

    async def run_cycle(self) -> TriggerResult:
        """
        One scheduled tick: check every due source in turn.

        Skips the tick when another cycle or trigger holds the lock.
        Not subject to the minimum-spacing guard.
        """
        lock = self.context.lock
        started_at = self.clock()
        holder_id = f"scheduled-{uuid.uuid4().hex[:8]}"

        if not lock.try_acquire(holder_id, started_at):
            return self._already_running("scheduled")

        return await self._run_and_release(
            "scheduled",
            holder_id,
            started_at,
            lambda: self.context.selector.due_sources(started_at)
        )

    async def trigger_due_check(self) -> TriggerResult:
        """Run the due set now."""
        return await self._run_triggered("due", self.context.selector.due_sources)

    async def check_all(self) -> TriggerResult:
        """Check every registered source regardless of when it was last checked."""
        async def select(now: datetime) -> List[Source]:
            return await self.context.store.list_sources()

        return await self._run_triggered("all", select)

    async def check_source(self, source_id: str) -> TriggerResult:
        """Check one source regardless of when it was last checked."""
        async def select(now: datetime) -> List[Source]:
            source = await self.context.store.get_source(source_id)
            if source is None:
                raise SourceNotFoundError(source_id)
            return [source]

        return await self._run_triggered("single", select)

    async def _run_triggered(
        self,
        trigger: str,
        select: Callable[[datetime], Awaitable[List[Source]]]
    ) -> TriggerResult:
        """Guard an external trigger with single-flight, then minimum spacing."""
        lock = self.context.lock
        now = self.clock()
        spacing = self.config.min_trigger_spacing_seconds

        if lock.held:
            return self._already_running(trigger)

        if lock.too_frequent(now, spacing):
            next_allowed = lock.next_allowed_run(spacing)
            wait_seconds = int((next_allowed - now).total_seconds()) + 1
            self.logger.info(
                "Trigger rejected as too frequent",
                trigger=trigger,
                last_run=lock.last_run.isoformat(),
                wait_seconds=wait_seconds
            )
            return TriggerResult(
                status=TriggerStatus.TOO_FREQUENT,
                message=f"Last run was too recent, retry in {wait_seconds} seconds",
                trigger=trigger,
                last_run=lock.last_run,
                next_allowed_run=next_allowed
            )

        holder_id = f"{trigger}-{uuid.uuid4().hex[:8]}"
        lock.try_acquire(holder_id, now)
        return await self._run_and_release(trigger, holder_id, now, lambda: select(now))

    async def _run_and_release(
        self,
        trigger: str,
        holder_id: str,
        started_at: datetime,
        select: Callable[[], Awaitable[List[Source]]]
    ) -> TriggerResult:
        """
        Run with the lock held, then release it.

        The finish time opens the minimum-spacing window only when source
        selection succeeded, so an unknown source id or a storage outage
        while selecting does not hold back the next trigger.
        """
        lock = self.context.lock
        result = None
        try:
            result = await self._run_locked(trigger, holder_id, started_at, select)
            return result
        finally:
            if result is not None and result.status != TriggerStatus.FAILED:
                lock.record_run(self.clock())
            lock.release(holder_id)

    def _already_running(self, trigger: str) -> TriggerResult:
        lock = self.context.lock
        self.logger.info("Monitoring already in progress", trigger=trigger, held_by=lock.holder_id)
        return TriggerResult(
            status=TriggerStatus.ALREADY_RUNNING,
            message="Monitoring already in progress",
            trigger=trigger,
            holder_id=lock.holder_id,
            last_run=lock.last_run
        )

    async def _run_locked(
        self,
        trigger: str,
        holder_id: str,
        started_at: datetime,
        select: Callable[[], Awaitable[List[Source]]]
    ) -> TriggerResult:
        """Select sources and check them sequentially. Must be called with the lock held."""
        result = TriggerResult(
            status=TriggerStatus.COMPLETED,
            message="",
            trigger=trigger,
            holder_id=holder_id,
            started_at=started_at
        )

        try:
            sources = await select()
        except SourceNotFoundError as e:
            result.status = TriggerStatus.FAILED
            result.message = str(e)
            result.results.append(
                SourceCheckOutcome(
                    source_id=e.source_id,
                    success=False,
                    error=str(e),
                    error_type=_error_type(e)
                )
            )
            return self._finish(result)
        except Exception as e:
            self.logger.error("Failed to select sources", trigger=trigger, error=str(e))
            result.status = TriggerStatus.FAILED
            result.message = f"Failed to select sources: {e}"
            return self._finish(result)

        result.sources_found = len(sources)
        if not sources:
            result.status = TriggerStatus.NO_SOURCES_DUE
            result.message = "No sources need monitoring"
            self.logger.debug("No sources due", trigger=trigger)
            return self._finish(result)

        self.logger.info("Checking sources", trigger=trigger, sources=len(sources))

        for source in sources:
            outcome = await self._check_one(source)
            result.results.append(outcome)
            if outcome.success:
                result.sources_checked += 1
                result.total_new_items += outcome.new_items_count
            else:
                result.sources_failed += 1

        result.message = (
            f"Checked {result.sources_checked} of {result.sources_found} sources, "
            f"{result.total_new_items} new apps"
        )
        return self._finish(result)

    async def _check_one(self, source: Source) -> SourceCheckOutcome:
        """Run the pipeline for one source, converting any error into an outcome."""
        try:
            check = await self.context.pipeline.check_source(source)
        except Exception as e:
            log = self.logger.warning if isinstance(e, MonitorError) else self.logger.exception
            log(
                "Source check failed",
                source_id=source.source_id,
                source_name=source.name,
                error=str(e)
            )
            return SourceCheckOutcome(
                source_id=source.source_id,
                source_name=source.name,
                success=False,
                error=str(e),
                error_type=_error_type(e)
            )

        return SourceCheckOutcome(
            source_id=source.source_id,
            source_name=source.name,
            success=True,
            total_items=check.total_items,
            new_items_count=check.new_items_count,
            session_id=check.session_id,
            notifications_failed=len(check.failed_notifications)
        )

    def _finish(self, result: TriggerResult) -> TriggerResult:
        result.finished_at = self.clock()
        result.duration_seconds = (result.finished_at - result.started_at).total_seconds()
        self.logger.info(
            "Monitoring run finished",
            trigger=result.trigger,
            status=result.status.value,
            sources_found=result.sources_found,
            sources_checked=result.sources_checked,
            sources_failed=result.sources_failed,
            new_items=result.total_new_items,
            duration=result.duration_seconds
        )
        return result

    def get_scheduler_status(self) -> Dict:
        """Get current scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            })

        return {
            'running': self.scheduler.running,
            'timezone': self.config.timezone,
            'tick_seconds': self.config.tick_seconds,
            'lock': self.context.lock.status().model_dump(mode="json"),
            'jobs': jobs,
            'job_count': len(jobs)
        }
