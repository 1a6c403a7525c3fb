"""
Test cases for interval conversion and due-set selection.
"""

from datetime import timedelta

import pytest

from scheduler.due import DueSetSelector, effective_interval, is_due, next_check_time
from tracker.exceptions import ValidationError
from tracker.models import IntervalUnit, Source, StoreKind


def make_source(url, value=1, unit=IntervalUnit.HOURS, last_checked=None):
    return Source(
        name="Source",
        url=url,
        kind=StoreKind.PLAYSTORE,
        check_interval_value=value,
        check_interval_unit=unit,
        last_checked=last_checked
    )


class TestEffectiveInterval:
    """Test cases for effective_interval."""

    @pytest.mark.parametrize("value,unit,seconds", [
        (30, "seconds", 30),
        (5, "minutes", 300),
        (6, "hours", 21600),
        (2, "days", 172800),
        (1.5, IntervalUnit.HOURS, 5400),
    ])
    def test_conversion(self, value, unit, seconds):
        """Test each unit converts to the expected duration."""
        assert effective_interval(value, unit) == timedelta(seconds=seconds)

    def test_short_intervals_are_floored(self):
        """Test second and minute intervals never go below the minimum."""
        assert effective_interval(0.5, "seconds", minimum_seconds=1.0) == timedelta(seconds=1)
        assert effective_interval(1, "minutes", minimum_seconds=90) == timedelta(seconds=90)
        assert effective_interval(1, "minutes", minimum_seconds=1.0) >= timedelta(seconds=1)

    def test_long_intervals_are_not_floored(self):
        """Test hour and day intervals ignore the floor."""
        assert effective_interval(0.01, "hours", minimum_seconds=60) == timedelta(seconds=36)

    @pytest.mark.parametrize("value", [0, -1])
    def test_non_positive_value(self, value):
        """Test non-positive values are rejected."""
        with pytest.raises(ValidationError):
            effective_interval(value, "hours")

    @pytest.mark.parametrize("value,unit", [
        (float("nan"), "hours"),
        (float("inf"), "days"),
        (1e10, "days"),
        (1e15, "minutes"),
    ])
    def test_unrepresentable_value(self, value, unit):
        """Test NaN, infinite and overlong intervals are rejected."""
        with pytest.raises(ValidationError):
            effective_interval(value, unit)

    def test_unknown_unit(self):
        """Test unknown units are rejected."""
        with pytest.raises(ValidationError):
            effective_interval(1, "fortnights")


class TestIsDue:
    """Test cases for due evaluation."""

    def test_never_checked_is_due(self, now):
        """Test a never-checked source is due at any time."""
        source = make_source("https://play.google.com/a")

        assert next_check_time(source) is None
        assert is_due(source, now)
        assert is_due(source, now - timedelta(days=3650))

    def test_boundary_is_inclusive(self, now):
        """Test a source becomes due exactly when its interval elapses."""
        source = make_source("https://play.google.com/a", 30, IntervalUnit.SECONDS, last_checked=now)

        assert not is_due(source, now + timedelta(seconds=29, microseconds=999999))
        assert is_due(source, now + timedelta(seconds=30))
        assert is_due(source, now + timedelta(seconds=31))

    def test_next_check_time(self, now):
        """Test next check time is last checked plus the interval."""
        source = make_source("https://play.google.com/a", 2, IntervalUnit.DAYS, last_checked=now)

        assert next_check_time(source) == now + timedelta(days=2)

    def test_next_check_past_last_date(self, now):
        """Test a next check time past the last representable date is rejected."""
        source = make_source("https://play.google.com/a", 999_000_000, IntervalUnit.DAYS, last_checked=now)

        with pytest.raises(ValidationError):
            next_check_time(source)


class TestDueSetSelector:
    """Test cases for DueSetSelector."""

    @pytest.mark.asyncio
    async def test_due_sources(self, store, now):
        """Test only sources whose interval elapsed are selected."""
        never = make_source("https://play.google.com/never")
        overdue = make_source("https://play.google.com/overdue", 1, IntervalUnit.HOURS,
                              last_checked=now - timedelta(hours=2))
        fresh = make_source("https://play.google.com/fresh", 1, IntervalUnit.HOURS,
                            last_checked=now - timedelta(minutes=10))
        for source in (never, overdue, fresh):
            await store.create_source(source)

        due = await DueSetSelector(store).due_sources(now)

        assert {s.source_id for s in due} == {never.source_id, overdue.source_id}

    @pytest.mark.asyncio
    async def test_interval_change_applies_next_evaluation(self, store, now):
        """Test the selector reads persisted intervals on every call."""
        source = make_source("https://play.google.com/a", 1, IntervalUnit.DAYS,
                             last_checked=now - timedelta(hours=2))
        await store.create_source(source)
        selector = DueSetSelector(store)

        assert await selector.due_sources(now) == []

        await store.update_interval(source.source_id, 1, IntervalUnit.HOURS)

        assert [s.source_id for s in await selector.due_sources(now)] == [source.source_id]

    @pytest.mark.asyncio
    async def test_empty_registry(self, store, now):
        """Test an empty registry yields an empty due set."""
        assert await DueSetSelector(store).due_sources(now) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), 1e10])
    async def test_invalid_stored_interval_is_skipped(self, store, now, value):
        """Test one source with an unusable stored interval does not block the others."""
        broken = make_source("https://play.google.com/broken", 1, IntervalUnit.HOURS,
                             last_checked=now - timedelta(days=1))
        healthy = make_source("https://play.google.com/healthy", 1, IntervalUnit.HOURS,
                              last_checked=now - timedelta(hours=2))
        await store.create_source(broken)
        await store.create_source(healthy)
        await store.update_interval(broken.source_id, value, IntervalUnit.DAYS)

        due = await DueSetSelector(store).due_sources(now)

        assert [s.source_id for s in due] == [healthy.source_id]
