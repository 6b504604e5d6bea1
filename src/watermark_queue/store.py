"""SQLAlchemy-backed queue store.

Every state change of the processing queue goes through a transaction opened
by QueueStore.transaction(). The transaction first locks the queue counter
row, so admissions, releases, promotions and sweeps coming from different
server instances are applied one at a time:

- PostgreSQL/MySQL: SELECT ... FOR UPDATE on the counter row
- SQLite: the engine opens write transactions with BEGIN IMMEDIATE (see database.py)

Sessions from read_session() never touch the counter row. On SQLite they
begin a deferred transaction and can read while a writer holds the lock.

Store errors roll the transaction back and surface as StoreUnavailableError.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import QUEUE_COUNTER_NAME, READ_ONLY_OPTION
from .exceptions import AlreadyQueuedError, StoreUnavailableError
from .models import QueueCounter, QueueEntry, QueueStatus
from .models.queue import ACTIVE_STATUSES, TERMINAL_STATUSES
from .schemas import QueueStats

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class QueueStore:
    """Atomic read/update/delete operations on the processing queue table.

    Methods taking a ``session`` must be called inside ``transaction()`` (for
    writes) or ``read_session()`` (for reads); they never commit themselves.

    Example:
        store = QueueStore(session_factory)

        with store.transaction() as session:
            if store.find_active(session, "owner-1") is None:
                store.add_entry(session, "owner-1", QueueStatus.processing, now_ms())
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        """Initialize store with session factory.

        Args:
            session_factory: SQLAlchemy session factory (sessionmaker)
        """
        self.session_factory: sessionmaker[Session] = session_factory

    # -------------------------------------------------------------------------
    # Session management
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Open a locked write transaction, committed on normal exit.

        Raises:
            StoreUnavailableError: If the database fails at any point
        """
        try:
            with self.session_factory() as session, session.begin():
                self._lock_queue(session)
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Queue store transaction failed: {e}")
            raise StoreUnavailableError(f"Queue store transaction failed: {e}") from e

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """Open a session for reads only. Nothing is locked or committed."""
        try:
            with self.session_factory() as session:
                _ = session.connection(execution_options={READ_ONLY_OPTION: True})
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Queue store read failed: {e}")
            raise StoreUnavailableError(f"Queue store read failed: {e}") from e

    def _lock_queue(self, session: Session) -> QueueCounter:
        stmt = (
            select(QueueCounter)
            .where(QueueCounter.name == QUEUE_COUNTER_NAME)
            .with_for_update()
        )
        counter = session.execute(stmt).scalar_one_or_none()
        if counter is None:
            # init_db normally seeds this row
            counter = QueueCounter(name=QUEUE_COUNTER_NAME, value=0)
            session.add(counter)
            session.flush()
        return counter

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find_active(self, session: Session, owner_id: str) -> QueueEntry | None:
        """Return the owner's waiting or processing entry, if any."""
        stmt = select(QueueEntry).where(
            QueueEntry.owner_id == owner_id,
            QueueEntry.status.in_(ACTIVE_STATUSES),
        )
        return session.execute(stmt).scalars().first()

    def latest_for_owner(self, session: Session, owner_id: str) -> QueueEntry | None:
        """Return the owner's most recently created entry of any status."""
        stmt = (
            select(QueueEntry)
            .where(QueueEntry.owner_id == owner_id)
            .order_by(QueueEntry.created_at.desc(), QueueEntry.id.desc())
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def count_by_status(self, session: Session, status: QueueStatus) -> int:
        stmt = (
            select(func.count())
            .select_from(QueueEntry)
            .where(QueueEntry.status == status.value)
        )
        return session.execute(stmt).scalar_one()

    def rank_of(self, session: Session, queue_position: int) -> int:
        """1-based rank of a waiting position among all waiting entries."""
        stmt = (
            select(func.count())
            .select_from(QueueEntry)
            .where(
                QueueEntry.status == QueueStatus.waiting.value,
                QueueEntry.queue_position < queue_position,
            )
        )
        return session.execute(stmt).scalar_one() + 1

    def stats(self, session: Session, created_since: int | None = None) -> QueueStats:
        """Aggregate counts of active entries.

        Args:
            session: Open session
            created_since: Only count entries created at or after this time (ms)

        Returns:
            Waiting and processing totals and the smallest waiting position
        """
        is_waiting = QueueEntry.status == QueueStatus.waiting.value
        is_processing = QueueEntry.status == QueueStatus.processing.value
        stmt = select(
            func.coalesce(func.sum(case((is_waiting, 1), else_=0)), 0),
            func.coalesce(func.sum(case((is_processing, 1), else_=0)), 0),
            func.min(case((is_waiting, QueueEntry.queue_position))),
        ).where(QueueEntry.status.in_(ACTIVE_STATUSES))
        if created_since is not None:
            stmt = stmt.where(QueueEntry.created_at >= created_since)

        total_waiting, processing_count, next_position = session.execute(stmt).one()
        return QueueStats(
            total_waiting=int(total_waiting),
            processing_count=int(processing_count),
            next_position=next_position,
        )

    def oldest_waiting(self, session: Session) -> QueueEntry | None:
        """Return the waiting entry with the smallest position (lowest id on ties)."""
        stmt = (
            select(QueueEntry)
            .where(QueueEntry.status == QueueStatus.waiting.value)
            .order_by(QueueEntry.queue_position.asc(), QueueEntry.id.asc())
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def next_position(self, session: Session) -> int:
        """Issue the next waiting position.

        Positions come from the counter row, never from the rows currently
        waiting, so a position is not handed out twice even after its holder
        was promoted or deleted.
        """
        counter = self._lock_queue(session)
        max_waiting = session.execute(
            select(func.max(QueueEntry.queue_position)).where(
                QueueEntry.status == QueueStatus.waiting.value
            )
        ).scalar_one_or_none()
        counter.value = max(counter.value, max_waiting or 0) + 1
        session.flush()
        return counter.value

    def add_entry(
        self,
        session: Session,
        owner_id: str,
        status: QueueStatus,
        created_at: int,
        *,
        queue_position: int | None = None,
        started_at: int | None = None,
    ) -> QueueEntry:
        """Insert a new active entry.

        Raises:
            AlreadyQueuedError: If the owner already holds an active entry
        """
        entry = QueueEntry(
            owner_id=owner_id,
            status=status.value,
            queue_position=queue_position,
            started_at=started_at,
            created_at=created_at,
        )
        session.add(entry)
        try:
            session.flush()
        except IntegrityError as e:
            raise AlreadyQueuedError(owner_id) from e
        return entry

    def fail_processing_started_before(self, session: Session, cutoff: int, now: int) -> list[str]:
        """Fail every processing entry started before ``cutoff`` in one UPDATE.

        Returns:
            Owner ids of the failed entries
        """
        rows = session.execute(
            select(QueueEntry.id, QueueEntry.owner_id).where(
                QueueEntry.status == QueueStatus.processing.value,
                QueueEntry.started_at < cutoff,
            )
        ).all()
        if not rows:
            return []

        _ = session.execute(
            update(QueueEntry)
            .where(QueueEntry.id.in_([row.id for row in rows]))
            .values(status=QueueStatus.failed.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return [row.owner_id for row in rows]

    def fail_active(self, session: Session, now: int) -> int:
        """Fail every waiting or processing entry. Returns the number of rows changed."""
        result = session.execute(
            update(QueueEntry)
            .where(QueueEntry.status.in_(ACTIVE_STATUSES))
            .values(status=QueueStatus.failed.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # pyright: ignore[reportAttributeAccessIssue]

    def delete_terminal_completed_before(self, session: Session, cutoff: int) -> int:
        """Delete completed/failed entries finished before ``cutoff``. Returns rows deleted."""
        result = session.execute(
            delete(QueueEntry)
            .where(
                QueueEntry.status.in_(TERMINAL_STATUSES),
                QueueEntry.completed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # pyright: ignore[reportAttributeAccessIssue]

    def delete_entry(self, session: Session, entry: QueueEntry) -> None:
        session.delete(entry)
        session.flush()
