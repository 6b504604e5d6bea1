"""Queue entry model for processing admission control."""

from enum import StrEnum
from typing_extensions import override

from sqlalchemy import BigInteger, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueueStatus(StrEnum):
    """Lifecycle states of a queue entry.

    waiting -> processing -> completed | failed. Completed and failed are
    terminal and only leave the table through garbage collection.
    """

    waiting = "waiting"
    processing = "processing"
    completed = "completed"
    failed = "failed"


ACTIVE_STATUSES: tuple[str, ...] = (QueueStatus.waiting.value, QueueStatus.processing.value)
TERMINAL_STATUSES: tuple[str, ...] = (QueueStatus.completed.value, QueueStatus.failed.value)

_ACTIVE_OWNER_PREDICATE = text("status IN ('waiting', 'processing')")


class QueueEntry(Base):
    """One row per admission attempt.

    Shared by every server instance that admits image processing work; the
    table is the single source of truth for the queue.

    - queue_position: only set while waiting, drawn from QueueCounter
    - started_at: set when the entry starts processing
    - completed_at: set when the entry reaches a terminal status
    - all timestamps are milliseconds since the epoch
    """

    __tablename__ = "processing_queue"  # pyright: ignore[reportUnannotatedClassAttribute]
    __table_args__ = (  # pyright: ignore[reportUnannotatedClassAttribute]
        # At most one waiting/processing entry per owner
        Index(
            "uq_processing_queue_active_owner",
            "owner_id",
            unique=True,
            sqlite_where=_ACTIVE_OWNER_PREDICATE,
            postgresql_where=_ACTIVE_OWNER_PREDICATE,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    started_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    @override
    def __repr__(self) -> str:
        return (
            f"<QueueEntry(id={self.id}, owner_id={self.owner_id}, status={self.status}, "
            f"queue_position={self.queue_position})>"
        )
