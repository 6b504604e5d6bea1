"""
Pydantic schemas returned to queue callers.
Shared by the admission controller, the reaper and the telemetry recorders.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .models.queue import QueueStatus


class ReleaseOutcome(StrEnum):
    """How the owner finished with its slot."""

    completed = "completed"
    cancelled = "cancelled"


class QueueEntryRecord(BaseModel):
    """Read-only view of a queue entry."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    owner_id: str
    status: QueueStatus
    queue_position: int | None = None
    started_at: int | None = None
    completed_at: int | None = None
    created_at: int


class AdmissionResult(BaseModel):
    entry: QueueEntryRecord
    can_start_immediately: bool


class QueueStats(BaseModel):
    total_waiting: int = Field(0, ge=0)
    processing_count: int = Field(0, ge=0)
    next_position: int | None = Field(None, description="Smallest waiting position, if any")


class QueueStatusView(BaseModel):
    """What an owner sees when polling the queue."""

    entry: QueueEntryRecord | None = Field(None, description="Owner's most recent entry")
    position: int | None = Field(None, ge=1, description="1-based rank among waiting entries")
    stats: QueueStats


class ReleaseResult(BaseModel):
    entry: QueueEntryRecord
    outcome: ReleaseOutcome
    promoted: QueueEntryRecord | None = None


class SweepResult(BaseModel):
    timed_out: int = 0
    deleted: int = 0


class StatusSnapshot(BaseModel):
    """Queue load at a point in time, written by status recorders."""

    event: str
    active_queue_count: int = Field(0, ge=0)
    waiting_queue_count: int = Field(0, ge=0)
    hour_bucket: int = Field(..., ge=0, le=23)
    recorded_at: int
