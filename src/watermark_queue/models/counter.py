"""Named counters issuing queue positions."""

from typing_extensions import override

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueueCounter(Base):
    """Monotonic position counter for a queue.

    The row is also locked at the start of every mutating store transaction,
    so it serializes admissions, releases, promotions and sweeps across
    server instances sharing the database.
    """

    __tablename__ = "queue_counters"  # pyright: ignore[reportUnannotatedClassAttribute]

    name: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    @override
    def __repr__(self) -> str:
        return f"<QueueCounter(name={self.name}, value={self.value})>"
