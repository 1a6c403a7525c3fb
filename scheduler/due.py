"""
Interval conversion and due-set selection.
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional, Union

import structlog

from tracker.database import SourceStore
from tracker.exceptions import ValidationError
from tracker.models import MAX_INTERVAL_SECONDS, UNIT_SECONDS, IntervalUnit, Source

logger = structlog.get_logger(__name__)

# Units short enough to need a floor against thrashing
FLOORED_UNITS = (IntervalUnit.SECONDS, IntervalUnit.MINUTES)


def effective_interval(
    value: float,
    unit: Union[str, IntervalUnit],
    minimum_seconds: float = 1.0
) -> timedelta:
    """
    Convert an interval magnitude and unit into a duration.

    Second and minute intervals are floored at ``minimum_seconds``.

    Raises:
        ValidationError: non-finite or non-positive value, unknown unit,
            or a duration longer than a timedelta can hold
    """
    if (isinstance(value, float) and not math.isfinite(value)) or value <= 0:
        raise ValidationError(f"Check interval must be a positive finite number, got {value}")
    try:
        unit = IntervalUnit(unit)
    except ValueError:
        raise ValidationError(f"Unknown interval unit: {unit}")

    seconds = value * UNIT_SECONDS[unit]
    if unit in FLOORED_UNITS:
        seconds = max(seconds, minimum_seconds)
    if seconds > MAX_INTERVAL_SECONDS:
        raise ValidationError(f"Check interval of {value} {unit.value} is too long")
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise ValidationError(f"Check interval of {value} {unit.value} is too long")


def next_check_time(source: Source, minimum_seconds: float = 1.0) -> Optional[datetime]:
    """
    When the source next becomes due, or None if it was never checked.

    Raises:
        ValidationError: the stored interval is invalid or lands past the
            last representable date
    """
    if source.last_checked is None:
        return None
    interval = effective_interval(source.check_interval_value, source.check_interval_unit, minimum_seconds)
    try:
        return source.last_checked + interval
    except OverflowError:
        raise ValidationError(f"Next check time for source {source.source_id} is out of range")


def is_due(source: Source, now: datetime, minimum_seconds: float = 1.0) -> bool:
    """A source is due when never checked, or once its interval has fully elapsed."""
    next_check = next_check_time(source, minimum_seconds)
    return next_check is None or now >= next_check


class DueSetSelector:
    """Selects the sources whose next check time has elapsed."""

    def __init__(self, store: SourceStore, minimum_seconds: float = 1.0):
        self.store = store
        self.minimum_seconds = minimum_seconds
        self.logger = logger.bind(component="due_selector")

    async def due_sources(self, now: datetime) -> List[Source]:
        """
        Due sources in registry listing order.

        Always reads persisted state, so interval or last-checked edits
        take effect on the next tick. A source whose stored interval cannot
        be evaluated is logged and left out; the rest are still selected.
        """
        sources = await self.store.list_sources()

        due = []
        for source in sources:
            try:
                if is_due(source, now, self.minimum_seconds):
                    due.append(source)
            except ValidationError as e:
                self.logger.warning(
                    "Skipping source with invalid check interval",
                    source_id=source.source_id,
                    interval=source.interval_text,
                    error=str(e)
                )

        self.logger.debug("Computed due set", total_sources=len(sources), due_sources=len(due))
        return due
