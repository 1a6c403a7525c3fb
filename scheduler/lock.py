"""
Single-flight lock shared by scheduled cycles and external triggers.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from scheduler.models import LockStatus
from tracker.models import utc_now

logger = structlog.get_logger(__name__)


class SchedulerLock:
    """
    Non-blocking, process-wide lock guarding scheduler runs.

    Acquisition never waits: a caller that finds the lock held is expected
    to report "already in progress" and return. All callers share one event
    loop, and ``try_acquire`` does not await, so check-and-set is atomic.
    """

    def __init__(self):
        self.held = False
        self.holder_id: Optional[str] = None
        self.acquired_at: Optional[datetime] = None
        self.last_run: Optional[datetime] = None
        self.logger = logger.bind(component="scheduler_lock")

    def try_acquire(self, holder_id: str, now: Optional[datetime] = None) -> bool:
        if self.held:
            self.logger.info("Lock held, skipping", holder=holder_id, held_by=self.holder_id)
            return False

        self.held = True
        self.holder_id = holder_id
        self.acquired_at = now or utc_now()
        self.logger.debug("Lock acquired", holder=holder_id)
        return True

    def release(self, holder_id: str) -> bool:
        """Release the lock. Only the current holder may release it."""
        if not self.held or self.holder_id != holder_id:
            self.logger.warning(
                "Attempted to release lock not held by caller",
                holder=holder_id,
                held_by=self.holder_id
            )
            return False

        self.held = False
        self.holder_id = None
        self.acquired_at = None
        self.logger.debug("Lock released", holder=holder_id)
        return True

    def record_run(self, finished_at: datetime) -> None:
        self.last_run = finished_at

    def next_allowed_run(self, spacing_seconds: float) -> Optional[datetime]:
        if self.last_run is None:
            return None
        return self.last_run + timedelta(seconds=spacing_seconds)

    def too_frequent(self, now: datetime, spacing_seconds: float) -> bool:
        """True when a run finished less than ``spacing_seconds`` before ``now``."""
        next_allowed = self.next_allowed_run(spacing_seconds)
        return next_allowed is not None and now < next_allowed

    def status(self) -> LockStatus:
        return LockStatus(
            held=self.held,
            holder_id=self.holder_id,
            acquired_at=self.acquired_at,
            last_run=self.last_run
        )
