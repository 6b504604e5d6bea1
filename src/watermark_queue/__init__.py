"""Processing admission-control queue for the watermark service."""

from .config import Config
from .controller import AdmissionController
from .database import create_queue_engine, create_session_factory, init_db
from .exceptions import (
    AlreadyQueuedError,
    EntryNotFoundError,
    QueueError,
    StoreUnavailableError,
    TelemetryError,
)
from .models import QueueStatus
from .promotion import PromotionPolicy
from .reaper import Reaper
from .schemas import (
    AdmissionResult,
    QueueEntryRecord,
    QueueStats,
    QueueStatusView,
    ReleaseOutcome,
    ReleaseResult,
    StatusSnapshot,
    SweepResult,
)
from .store import QueueStore
from .telemetry import (
    BroadcastStatusRecorder,
    DatabaseStatusRecorder,
    NoOpStatusRecorder,
    StatusRecorder,
    get_status_recorder,
)

__all__ = [
    # Configuration
    "Config",
    # Database
    "create_queue_engine",
    "create_session_factory",
    "init_db",
    # Services
    "AdmissionController",
    "PromotionPolicy",
    "QueueStore",
    "Reaper",
    # Status recorders
    "BroadcastStatusRecorder",
    "DatabaseStatusRecorder",
    "NoOpStatusRecorder",
    "StatusRecorder",
    "get_status_recorder",
    # Pydantic models
    "AdmissionResult",
    "QueueEntryRecord",
    "QueueStats",
    "QueueStatus",
    "QueueStatusView",
    "ReleaseOutcome",
    "ReleaseResult",
    "StatusSnapshot",
    "SweepResult",
    # Errors
    "AlreadyQueuedError",
    "EntryNotFoundError",
    "QueueError",
    "StoreUnavailableError",
    "TelemetryError",
]
