"""Queue database models."""

from .base import Base
from .counter import QueueCounter
from .queue import QueueEntry, QueueStatus
from .system_status import SystemStatusLog

__all__ = ["Base", "QueueCounter", "QueueEntry", "QueueStatus", "SystemStatusLog"]
