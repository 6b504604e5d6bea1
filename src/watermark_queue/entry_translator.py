"""Conversion helpers between database rows and caller-facing records."""

from .models import QueueEntry
from .schemas import QueueEntryRecord


def db_entry_to_record(db_entry: QueueEntry) -> QueueEntryRecord:
    """Convert SQLAlchemy QueueEntry to Pydantic QueueEntryRecord.

    Must be called while the row is still loaded (before it is deleted
    or its session is closed with expired attributes).
    """
    return QueueEntryRecord.model_validate(db_entry)


def optional_record(db_entry: QueueEntry | None) -> QueueEntryRecord | None:
    if db_entry is None:
        return None
    return db_entry_to_record(db_entry)
