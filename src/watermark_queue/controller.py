"""Admission controller for expensive image processing work.

The controller is stateless: every call opens its own store transaction, so
any number of server instances can share one queue database.

Example:
    engine = create_queue_engine()
    init_db(engine)
    session_factory = create_session_factory(engine)
    controller = AdmissionController(QueueStore(session_factory))

    result = controller.request_admission(session_id)
    if result.can_start_immediately:
        ...  # run the work, then
        controller.release(session_id, ReleaseOutcome.completed)
"""

import logging
from collections.abc import Callable

from .config import Config
from .entry_translator import db_entry_to_record, optional_record
from .exceptions import AlreadyQueuedError, EntryNotFoundError
from .models import QueueStatus
from .promotion import PromotionPolicy
from .schemas import (
    AdmissionResult,
    QueueStatusView,
    ReleaseOutcome,
    ReleaseResult,
    StatusSnapshot,
)
from .store import QueueStore, now_ms
from .telemetry import NoOpStatusRecorder, StatusRecorder, build_snapshot, record_safely

logger = logging.getLogger(__name__)


class AdmissionController:
    """Admits owners into a limited number of processing slots, queueing the rest.

    Args:
        store: Queue store shared by all server instances
        max_concurrent: Processing slots; defaults to QUEUE_MAX_CONCURRENT
        promotion: Promotion policy; defaults to one over the same store and limit
        recorder: Best-effort status recorder
        clock: Returns the current time in milliseconds
        status_window_seconds: Look-back window for status snapshots
    """

    def __init__(
        self,
        store: QueueStore,
        *,
        max_concurrent: int | None = None,
        promotion: PromotionPolicy | None = None,
        recorder: StatusRecorder | None = None,
        clock: Callable[[], int] = now_ms,
        status_window_seconds: int | None = None,
    ):
        self.store: QueueStore = store
        self.max_concurrent: int = (
            max_concurrent if max_concurrent is not None else Config.QUEUE_MAX_CONCURRENT
        )
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {self.max_concurrent}")

        self.promotion: PromotionPolicy = promotion or PromotionPolicy(store, self.max_concurrent)
        self.recorder: StatusRecorder = recorder or NoOpStatusRecorder()
        self.clock: Callable[[], int] = clock
        self.status_window_ms: int = (
            status_window_seconds
            if status_window_seconds is not None
            else Config.QUEUE_STATUS_WINDOW_SECONDS
        ) * 1000

    def request_admission(self, owner_id: str) -> AdmissionResult:
        """Start processing for the owner now, or put it at the back of the queue.

        Raises:
            AlreadyQueuedError: If the owner already has a waiting or processing entry
            StoreUnavailableError: If the store transaction failed
        """
        now = self.clock()
        with self.store.transaction() as session:
            if self.store.find_active(session, owner_id) is not None:
                raise AlreadyQueuedError(owner_id)

            # free slots go to existing waiters before any newcomer
            promoted = self.promotion.promote_freed(session, self.max_concurrent, now)
            if promoted:
                logger.info(f"Promoted {len(promoted)} waiting entries into free slots")

            processing = self.store.count_by_status(session, QueueStatus.processing)
            if processing < self.max_concurrent:
                entry = self.store.add_entry(
                    session, owner_id, QueueStatus.processing, now, started_at=now
                )
            else:
                position = self.store.next_position(session)
                entry = self.store.add_entry(
                    session, owner_id, QueueStatus.waiting, now, queue_position=position
                )
            record = db_entry_to_record(entry)

        can_start = record.status == QueueStatus.processing
        if can_start:
            logger.info(f"Owner {owner_id} admitted for processing (entry {record.id})")
        else:
            logger.info(f"Owner {owner_id} queued at position {record.queue_position}")

        self._record_status("admitted")
        return AdmissionResult(entry=record, can_start_immediately=can_start)

    def get_status(self, owner_id: str) -> QueueStatusView:
        """Return the owner's latest entry, its waiting rank and overall queue load."""
        with self.store.read_session() as session:
            entry = self.store.latest_for_owner(session, owner_id)
            position = None
            if (
                entry is not None
                and entry.status == QueueStatus.waiting.value
                and entry.queue_position is not None
            ):
                position = self.store.rank_of(session, entry.queue_position)

            return QueueStatusView(
                entry=optional_record(entry),
                position=position,
                stats=self.store.stats(session),
            )

    def release(self, owner_id: str, outcome: ReleaseOutcome) -> ReleaseResult:
        """Finish or cancel the owner's active entry and refill the freed slot.

        Completing requires a processing entry and keeps it as completed.
        Cancelling deletes a waiting or processing entry.

        Raises:
            EntryNotFoundError: If no matching active entry exists
            StoreUnavailableError: If the store transaction failed
        """
        outcome = ReleaseOutcome(outcome)
        now = self.clock()
        with self.store.transaction() as session:
            entry = self.store.find_active(session, owner_id)
            if entry is None:
                raise EntryNotFoundError(owner_id)

            was_processing = entry.status == QueueStatus.processing.value
            if outcome is ReleaseOutcome.completed:
                if not was_processing:
                    raise EntryNotFoundError(owner_id, "No processing queue entry")
                entry.status = QueueStatus.completed.value
                entry.completed_at = now
                session.flush()
                released = db_entry_to_record(entry)
            else:
                released = db_entry_to_record(entry)
                self.store.delete_entry(session, entry)

            promoted = self.promotion.promote(session, now) if was_processing else None
            promoted_record = optional_record(promoted)

        logger.info(f"Owner {owner_id} released queue entry {released.id} ({outcome.value})")
        self._record_status(outcome.value)
        return ReleaseResult(entry=released, outcome=outcome, promoted=promoted_record)

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    def _snapshot(self, event: str) -> StatusSnapshot:
        now = self.clock()
        with self.store.read_session() as session:
            stats = self.store.stats(session, created_since=now - self.status_window_ms)
        return build_snapshot(event, stats, now)

    def _record_status(self, event: str) -> None:
        _ = record_safely(self.recorder, lambda: self._snapshot(event))
