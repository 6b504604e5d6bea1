"""Tests for the Reaper: timeout sweep, garbage collection and force reset."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING
from unittest.mock import Mock

import pytest

from watermark_queue import (
    AdmissionController,
    PromotionPolicy,
    QueueStatus,
    QueueStore,
    Reaper,
    ReleaseOutcome,
    StoreUnavailableError,
    SweepResult,
)
from watermark_queue.models import Base

if TYPE_CHECKING:
    from conftest import FakeClock
    from sqlalchemy.engine import Engine


def _status(controller: AdmissionController, owner_id: str) -> QueueStatus | None:
    entry = controller.get_status(owner_id).entry
    return entry.status if entry else None


# ============================================================================
# Timeout Sweep Tests
# ============================================================================


class TestSweepTimeouts:
    """Test suite for Reaper.sweep_timeouts."""

    def test_entry_past_timeout_is_failed(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that an entry started 11 minutes ago is reaped by a 10 minute sweep."""
        _ = controller.request_admission("owner-a")
        _ = clock.advance(minutes=11)

        count = reaper.sweep_timeouts(timedelta(minutes=10))

        assert count == 1
        entry = controller.get_status("owner-a").entry
        assert entry is not None
        assert entry.status == QueueStatus.failed
        assert entry.completed_at == clock.now

    def test_entry_within_timeout_is_kept(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that an entry started 9 minutes ago survives a 10 minute sweep."""
        _ = controller.request_admission("owner-a")
        _ = clock.advance(minutes=9)

        count = reaper.sweep_timeouts(timedelta(minutes=10))

        assert count == 0
        assert _status(controller, "owner-a") == QueueStatus.processing

    def test_only_expired_entries_are_failed(
        self, queue_store: QueueStore, clock: FakeClock
    ) -> None:
        """Test 11 and 9 minute old entries side by side."""
        controller = AdmissionController(queue_store, max_concurrent=2, clock=clock)
        reaper = Reaper(queue_store, controller.promotion, clock=clock)
        _ = controller.request_admission("owner-old")
        _ = clock.advance(minutes=2)
        _ = controller.request_admission("owner-new")
        _ = clock.advance(minutes=9)

        count = reaper.sweep_timeouts(timedelta(minutes=10))

        assert count == 1
        assert _status(controller, "owner-old") == QueueStatus.failed
        assert _status(controller, "owner-new") == QueueStatus.processing

    def test_timeout_promotes_waiter_in_same_sweep(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that the slot freed by a timeout goes to the oldest waiter."""
        _ = controller.request_admission("owner-a")
        _ = controller.request_admission("owner-b")
        _ = controller.request_admission("owner-c")
        _ = clock.advance(minutes=15)

        count = reaper.sweep_timeouts()

        assert count == 1
        assert _status(controller, "owner-a") == QueueStatus.failed
        promoted = controller.get_status("owner-b").entry
        assert promoted is not None
        assert promoted.status == QueueStatus.processing
        assert promoted.started_at == clock.now
        assert promoted.queue_position is None
        assert controller.get_status("owner-c").position == 1

    def test_batch_timeout_promotes_once_per_freed_slot(
        self, queue_store: QueueStore, clock: FakeClock
    ) -> None:
        """Test that two timed out slots promote exactly the two oldest waiters."""
        controller = AdmissionController(queue_store, max_concurrent=2, clock=clock)
        reaper = Reaper(queue_store, controller.promotion, clock=clock)
        for owner in ("p1", "p2", "w1", "w2", "w3"):
            _ = controller.request_admission(owner)
        _ = clock.advance(minutes=11)

        count = reaper.sweep_timeouts(timedelta(minutes=10))

        assert count == 2
        assert _status(controller, "w1") == QueueStatus.processing
        assert _status(controller, "w2") == QueueStatus.processing
        assert _status(controller, "w3") == QueueStatus.waiting
        stats = controller.get_status("w3").stats
        assert stats.processing_count == 2
        assert stats.total_waiting == 1

    def test_promoted_entries_are_not_reaped_immediately(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that a sweep run twice does not fail the entry it just promoted."""
        _ = controller.request_admission("owner-a")
        _ = controller.request_admission("owner-b")
        _ = clock.advance(minutes=11)

        assert reaper.sweep_timeouts() == 1
        assert reaper.sweep_timeouts() == 0
        assert _status(controller, "owner-b") == QueueStatus.processing

    def test_waiting_entries_never_time_out(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that waiting time does not count towards the processing timeout."""
        _ = controller.request_admission("owner-a")
        _ = controller.request_admission("owner-b")
        _ = clock.advance(minutes=5)
        _ = controller.release("owner-a", ReleaseOutcome.completed)
        _ = clock.advance(minutes=6)

        # owner-b waited 5 minutes and has been processing for 6
        assert reaper.sweep_timeouts() == 0

    def test_timeout_is_recorded(
        self, queue_store: QueueStore, controller: AdmissionController, clock: FakeClock
    ) -> None:
        """Test that a sweep that failed entries emits a status snapshot."""
        recorder = Mock()
        reaper = Reaper(queue_store, controller.promotion, recorder=recorder, clock=clock)
        _ = controller.request_admission("owner-a")
        _ = clock.advance(minutes=11)

        _ = reaper.sweep_timeouts()
        _ = reaper.sweep_timeouts()

        recorder.record.assert_called_once()
        assert recorder.record.call_args.args[0].event == "timed_out"


# ============================================================================
# Garbage Collection Tests
# ============================================================================


class TestSweepStaleEntries:
    """Test suite for Reaper.sweep_stale_entries."""

    def test_deletes_old_terminal_entries(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that completed and failed entries past retention are deleted."""
        _ = controller.request_admission("owner-a")
        _ = controller.release("owner-a", ReleaseOutcome.completed)
        _ = controller.request_admission("owner-b")
        _ = clock.advance(minutes=11)
        assert reaper.sweep_timeouts() == 1
        _ = clock.advance(hours=25)

        deleted = reaper.sweep_stale_entries(timedelta(hours=24))

        assert deleted == 2
        assert controller.get_status("owner-a").entry is None
        assert controller.get_status("owner-b").entry is None

    def test_second_sweep_deletes_nothing(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that garbage collection is idempotent."""
        _ = controller.request_admission("owner-a")
        _ = controller.release("owner-a", ReleaseOutcome.completed)
        _ = clock.advance(hours=25)

        assert reaper.sweep_stale_entries() == 1
        assert reaper.sweep_stale_entries() == 0

    def test_recent_terminal_entries_are_kept(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that entries finished within the retention window survive."""
        _ = controller.request_admission("owner-a")
        _ = controller.release("owner-a", ReleaseOutcome.completed)
        _ = clock.advance(hours=23)

        assert reaper.sweep_stale_entries() == 0
        assert _status(controller, "owner-a") == QueueStatus.completed

    def test_active_entries_are_never_deleted(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that garbage collection ignores waiting and processing entries."""
        _ = controller.request_admission("owner-a")
        _ = controller.request_admission("owner-b")
        _ = clock.advance(days=3)

        assert reaper.sweep_stale_entries() == 0
        assert _status(controller, "owner-a") == QueueStatus.processing
        assert _status(controller, "owner-b") == QueueStatus.waiting

    def test_positions_are_not_reused_after_cleanup(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that waiting positions keep increasing after rows are deleted."""
        _ = controller.request_admission("owner-a")
        _ = controller.request_admission("owner-b")
        _ = controller.release("owner-a", ReleaseOutcome.completed)
        _ = controller.release("owner-b", ReleaseOutcome.completed)
        _ = clock.advance(hours=25)
        assert reaper.sweep_stale_entries() == 2

        _ = controller.request_admission("owner-c")
        result = controller.request_admission("owner-d")

        assert result.entry.queue_position == 2


# ============================================================================
# Force Reset Tests
# ============================================================================


class TestForceReset:
    """Test suite for Reaper.force_reset."""

    def test_fails_all_active_entries_without_promotion(
        self, controller: AdmissionController, reaper: Reaper, clock: FakeClock
    ) -> None:
        """Test that one waiting and one processing entry both become failed."""
        _ = controller.request_admission("owner-a")
        _ = controller.request_admission("owner-b")

        count = reaper.force_reset()

        assert count == 2
        for owner in ("owner-a", "owner-b"):
            entry = controller.get_status(owner).entry
            assert entry is not None
            assert entry.status == QueueStatus.failed
            assert entry.completed_at == clock.now
        stats = controller.get_status("owner-a").stats
        assert stats.processing_count == 0
        assert stats.total_waiting == 0

    def test_leaves_terminal_entries_alone(
        self, controller: AdmissionController, reaper: Reaper
    ) -> None:
        """Test that completed entries are not counted or changed."""
        _ = controller.request_admission("owner-a")
        _ = controller.release("owner-a", ReleaseOutcome.completed)

        assert reaper.force_reset() == 0
        assert _status(controller, "owner-a") == QueueStatus.completed

    def test_queue_accepts_admissions_after_reset(
        self, controller: AdmissionController, reaper: Reaper
    ) -> None:
        """Test that reset owners can request admission again."""
        _ = controller.request_admission("owner-a")
        _ = reaper.force_reset()

        result = controller.request_admission("owner-a")

        assert result.can_start_immediately is True


# ============================================================================
# Combined Sweep and Failure Tests
# ============================================================================


def test_sweep_runs_timeouts_then_cleanup(
    controller: AdmissionController, reaper: Reaper, clock: FakeClock
) -> None:
    """Test the combined sweep with configured durations."""
    _ = controller.request_admission("owner-old")
    _ = controller.release("owner-old", ReleaseOutcome.completed)
    _ = clock.advance(hours=25)
    _ = controller.request_admission("owner-stuck")
    _ = clock.advance(minutes=11)

    result = reaper.sweep()

    assert result == SweepResult(timed_out=1, deleted=1)
    assert _status(controller, "owner-stuck") == QueueStatus.failed


def test_default_promotion_policy(queue_store: QueueStore) -> None:
    """Test that a reaper builds its own promotion policy when none is given."""
    reaper = Reaper(queue_store)

    assert isinstance(reaper.promotion, PromotionPolicy)
    assert reaper.promotion.store is queue_store


def test_zero_durations_are_kept(queue_store: QueueStore, clock: FakeClock) -> None:
    """Test that explicit zero durations are not replaced by the config defaults."""
    reaper = Reaper(
        queue_store, clock=clock, timeout=timedelta(0), retention=timedelta(0)
    )
    controller = AdmissionController(queue_store, max_concurrent=1, clock=clock)
    _ = controller.request_admission("owner-a")
    _ = clock.advance(seconds=1)

    assert reaper.timeout == timedelta(0)
    assert reaper.retention == timedelta(0)
    assert reaper.sweep() == SweepResult(timed_out=1, deleted=0)
    _ = clock.advance(seconds=1)
    assert reaper.sweep_stale_entries() == 1


def test_sweep_store_failure_is_reported(reaper: Reaper, in_memory_engine: Engine) -> None:
    """Test that store errors abort the sweep and reach the caller."""
    Base.metadata.drop_all(in_memory_engine)

    with pytest.raises(StoreUnavailableError):
        _ = reaper.sweep_timeouts()

    with pytest.raises(StoreUnavailableError):
        _ = reaper.force_reset()
