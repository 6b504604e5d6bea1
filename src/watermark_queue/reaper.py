"""Reaper: timeout sweep and garbage collection of the processing queue.

Nothing in this module runs on its own. A scheduler, an operator script
(utils/sweep_queue.py) or an opportunistic request handler calls it.
Each operation is one store transaction, so a failed sweep leaves no
partial update behind and the next run simply retries.
"""

import logging
from collections.abc import Callable
from datetime import timedelta

from .config import Config
from .promotion import PromotionPolicy
from .schemas import StatusSnapshot, SweepResult
from .store import QueueStore, now_ms
from .telemetry import NoOpStatusRecorder, StatusRecorder, build_snapshot, record_safely

logger = logging.getLogger(__name__)


def _to_ms(duration: timedelta) -> int:
    return int(duration.total_seconds() * 1000)


class Reaper:
    """Fails stuck processing entries and deletes old terminal ones."""

    def __init__(
        self,
        store: QueueStore,
        promotion: PromotionPolicy | None = None,
        *,
        recorder: StatusRecorder | None = None,
        clock: Callable[[], int] = now_ms,
        timeout: timedelta | None = None,
        retention: timedelta | None = None,
    ):
        self.store: QueueStore = store
        self.promotion: PromotionPolicy = promotion or PromotionPolicy(store)
        self.recorder: StatusRecorder = recorder or NoOpStatusRecorder()
        self.clock: Callable[[], int] = clock
        if timeout is None:
            timeout = timedelta(seconds=Config.QUEUE_TIMEOUT_SECONDS)
        if retention is None:
            retention = timedelta(seconds=Config.QUEUE_RETENTION_SECONDS)
        self.timeout: timedelta = timeout
        self.retention: timedelta = retention

    def sweep_timeouts(self, timeout: timedelta | None = None) -> int:
        """Fail processing entries started more than ``timeout`` ago.

        One promotion runs per failed entry, in the same transaction.

        Returns:
            Number of entries timed out
        """
        if timeout is None:
            timeout = self.timeout
        now = self.clock()
        cutoff = now - _to_ms(timeout)

        with self.store.transaction() as session:
            owners = self.store.fail_processing_started_before(session, cutoff, now)
            promoted = self.promotion.promote_freed(session, len(owners), now)

        if owners:
            logger.info(f"Cleaned up {len(owners)} timed out queue entries: {owners}")
            logger.info(f"Promoted {len(promoted)} waiting entries after timeouts")
            self._record_status("timed_out")
        return len(owners)

    def sweep_stale_entries(self, retention: timedelta | None = None) -> int:
        """Delete completed/failed entries finished more than ``retention`` ago.

        Returns:
            Number of entries deleted
        """
        if retention is None:
            retention = self.retention
        cutoff = self.clock() - _to_ms(retention)

        with self.store.transaction() as session:
            deleted = self.store.delete_terminal_completed_before(session, cutoff)

        if deleted:
            logger.info(f"Deleted {deleted} stale queue entries")
        return deleted

    def force_reset(self) -> int:
        """Fail every waiting and processing entry without promoting anyone.

        Operator escape hatch; callers must confirm before invoking it.

        Returns:
            Number of entries reset
        """
        now = self.clock()
        with self.store.transaction() as session:
            reset = self.store.fail_active(session, now)

        logger.warning(f"Force reset {reset} queue entries")
        return reset

    def sweep(self) -> SweepResult:
        """Run the timeout sweep, then garbage collection, with the configured durations."""
        timed_out = self.sweep_timeouts()
        deleted = self.sweep_stale_entries()
        return SweepResult(timed_out=timed_out, deleted=deleted)

    def _snapshot(self, event: str) -> StatusSnapshot:
        now = self.clock()
        with self.store.read_session() as session:
            stats = self.store.stats(session)
        return build_snapshot(event, stats, now)

    def _record_status(self, event: str) -> None:
        _ = record_safely(self.recorder, lambda: self._snapshot(event))
