"""
Test cases for the scheduler lock.
"""

from datetime import timedelta

from scheduler.lock import SchedulerLock


class TestSchedulerLock:
    """Test cases for SchedulerLock."""

    def test_acquire_and_release(self, now):
        """Test the lock can be acquired and released by its holder."""
        lock = SchedulerLock()

        assert lock.try_acquire("cycle-1", now) is True
        assert lock.held is True
        assert lock.holder_id == "cycle-1"
        assert lock.acquired_at == now

        assert lock.release("cycle-1") is True
        assert lock.held is False
        assert lock.holder_id is None

    def test_second_acquire_fails(self, now):
        """Test a held lock cannot be acquired again."""
        lock = SchedulerLock()
        lock.try_acquire("cycle-1", now)

        assert lock.try_acquire("cycle-2", now) is False
        assert lock.holder_id == "cycle-1"

    def test_release_by_other_holder(self, now):
        """Test only the holder may release the lock."""
        lock = SchedulerLock()
        lock.try_acquire("cycle-1", now)

        assert lock.release("cycle-2") is False
        assert lock.held is True

    def test_release_when_not_held(self):
        """Test releasing a free lock is a no-op."""
        assert SchedulerLock().release("cycle-1") is False

    def test_spacing(self, now):
        """Test runs inside the spacing window are too frequent."""
        lock = SchedulerLock()

        assert lock.too_frequent(now, 30) is False
        assert lock.next_allowed_run(30) is None

        lock.record_run(now)

        assert lock.next_allowed_run(30) == now + timedelta(seconds=30)
        assert lock.too_frequent(now + timedelta(seconds=10), 30) is True
        assert lock.too_frequent(now + timedelta(seconds=30), 30) is False

    def test_status(self, now):
        """Test the status snapshot mirrors lock state."""
        lock = SchedulerLock()
        lock.try_acquire("cycle-1", now)
        lock.record_run(now - timedelta(minutes=5))

        status = lock.status()

        assert status.held is True
        assert status.holder_id == "cycle-1"
        assert status.last_run == now - timedelta(minutes=5)
