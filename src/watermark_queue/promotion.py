"""Promotion of waiting entries into freed processing slots."""

import logging

from sqlalchemy.orm import Session

from .config import Config
from .models import QueueEntry, QueueStatus
from .store import QueueStore

logger = logging.getLogger(__name__)


class PromotionPolicy:
    """Moves the oldest waiting entry into processing when a slot frees.

    Runs inside the caller's store transaction, which already holds the
    queue lock, so two releases can never fill the same slot.
    """

    def __init__(self, store: QueueStore, max_concurrent: int | None = None):
        self.store: QueueStore = store
        self.max_concurrent: int = (
            max_concurrent if max_concurrent is not None else Config.QUEUE_MAX_CONCURRENT
        )

    def promote(self, session: Session, now: int) -> QueueEntry | None:
        """Promote one waiting entry if a processing slot is free.

        Args:
            session: Session of the open store transaction
            now: Current time in milliseconds, used as started_at

        Returns:
            The promoted entry, or None if nothing was waiting or no slot is free
        """
        processing = self.store.count_by_status(session, QueueStatus.processing)
        if processing >= self.max_concurrent:
            logger.debug(f"No free slot to promote into ({processing}/{self.max_concurrent})")
            return None

        entry = self.store.oldest_waiting(session)
        if entry is None:
            return None

        entry.status = QueueStatus.processing.value
        entry.started_at = now
        entry.queue_position = None
        session.flush()

        logger.info(f"Queue promoted: owner {entry.owner_id} (entry {entry.id})")
        return entry

    def promote_freed(self, session: Session, freed_slots: int, now: int) -> list[QueueEntry]:
        """Run one promotion per freed slot, re-reading queue state each time."""
        promoted: list[QueueEntry] = []
        for _ in range(freed_slots):
            entry = self.promote(session, now)
            if entry is None:
                break
            promoted.append(entry)
        return promoted
