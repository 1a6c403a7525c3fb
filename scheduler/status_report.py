"""
Status and statistics reports for monitored sources.

This module provides:
- Per-source scheduling state (next check time, needs monitoring)
- Aggregate counts of sources, apps and sessions
- Paginated check session history
"""

import math
from datetime import datetime, timedelta
from typing import Optional

import structlog

from scheduler.due import next_check_time
from scheduler.lock import SchedulerLock
from scheduler.models import MonitoringStats, MonitoringStatus, SessionPage, SourceStatus
from tracker.database import SourceStore
from tracker.exceptions import ValidationError

logger = structlog.get_logger(__name__)

MAX_PER_PAGE = 100


class StatusReporter:
    """Builds status, statistics and session history reports."""

    def __init__(
        self,
        store: SourceStore,
        lock: Optional[SchedulerLock] = None,
        minimum_seconds: float = 1.0
    ):
        """
        Initialize status reporter.

        Args:
            store: Storage backend
            lock: Scheduler lock whose state is included in status reports
            minimum_seconds: Floor for second and minute check intervals
        """
        self.store = store
        self.lock = lock
        self.minimum_seconds = minimum_seconds
        self.logger = logger.bind(component="status_reporter")

    async def build_status(self, now: datetime, scheduler_running: bool = False) -> MonitoringStatus:
        """
        Scheduling state of every source.

        ``seconds_until_next_check`` is clamped at zero for overdue sources
        and is None for sources that were never checked.
        """
        sources = await self.store.list_sources()

        entries = []
        for source in sources:
            try:
                next_check = next_check_time(source, self.minimum_seconds)
            except ValidationError as e:
                self.logger.warning(
                    "Source has an invalid check interval",
                    source_id=source.source_id,
                    interval=source.interval_text,
                    error=str(e)
                )
                entries.append(SourceStatus(
                    source_id=source.source_id,
                    name=source.name,
                    kind=source.kind.value,
                    interval=source.interval_text,
                    last_checked=source.last_checked,
                    needs_monitoring=False
                ))
                continue

            seconds_until = None
            if next_check is not None:
                seconds_until = max(0, round((next_check - now).total_seconds()))

            entries.append(SourceStatus(
                source_id=source.source_id,
                name=source.name,
                kind=source.kind.value,
                interval=source.interval_text,
                last_checked=source.last_checked,
                next_check_time=next_check,
                seconds_until_next_check=seconds_until,
                needs_monitoring=next_check is None or now >= next_check
            ))

        status = MonitoringStatus(
            generated_at=now,
            total_sources=len(entries),
            sources_needing_monitoring=sum(1 for e in entries if e.needs_monitoring),
            scheduler_running=scheduler_running,
            lock=self.lock.status() if self.lock else None,
            sources=entries
        )

        self.logger.debug(
            "Built monitoring status",
            total_sources=status.total_sources,
            sources_needing_monitoring=status.sources_needing_monitoring
        )
        return status

    async def build_stats(self, now: datetime) -> MonitoringStats:
        """Aggregate counts, including apps discovered by sessions started in the last 24 hours."""
        return MonitoringStats(
            generated_at=now,
            total_sources=len(await self.store.list_sources()),
            total_apps=await self.store.count_apps(),
            total_sessions=await self.store.count_sessions(),
            new_apps_24h=await self.store.count_new_apps_since(now - timedelta(hours=24))
        )

    async def list_sessions(
        self,
        page: int = 1,
        per_page: int = 20,
        source_id: Optional[str] = None
    ) -> SessionPage:
        """
        One page of check sessions, newest first.

        Raises:
            ValidationError: page below 1 or per_page outside 1..100
        """
        if page < 1:
            raise ValidationError(f"page must be at least 1, got {page}")
        if per_page < 1 or per_page > MAX_PER_PAGE:
            raise ValidationError(f"per_page must be between 1 and {MAX_PER_PAGE}, got {per_page}")

        total = await self.store.count_sessions(source_id)
        sessions = await self.store.list_sessions(
            source_id=source_id,
            limit=per_page,
            offset=(page - 1) * per_page
        )
        total_pages = math.ceil(total / per_page) if total else 0

        return SessionPage(
            sessions=sessions,
            total=total,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1
        )
