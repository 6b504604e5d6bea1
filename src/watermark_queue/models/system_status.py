"""System status log model written by the database status recorder."""

from typing_extensions import override

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SystemStatusLog(Base):
    """Point-in-time snapshot of queue load, used by usage analytics."""

    __tablename__ = "system_status_logs"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event: Mapped[str] = mapped_column(String, nullable=False)
    active_queue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    waiting_queue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hour_bucket: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    recorded_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    @override
    def __repr__(self) -> str:
        return (
            f"<SystemStatusLog(event={self.event}, active={self.active_queue_count}, "
            f"waiting={self.waiting_queue_count})>"
        )
