"""System status recorders.

Status recording is best effort: the admission controller and the reaper
call ``record_safely``, which logs and swallows every failure so a broken
recorder can never change an admission decision.
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from typing_extensions import override

from .config import Config
from .exceptions import TelemetryError
from .models import SystemStatusLog
from .mqtt import MQTTBroadcaster, NoOpBroadcaster, get_broadcaster
from .schemas import QueueStats, StatusSnapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class StatusRecorder(Protocol):
    def record(self, snapshot: StatusSnapshot) -> None:
        """Persist or publish one snapshot.

        Raises:
            TelemetryError: If the snapshot could not be written
        """
        ...


class NoOpStatusRecorder(StatusRecorder):
    @override
    def record(self, snapshot: StatusSnapshot) -> None:
        pass


class DatabaseStatusRecorder(StatusRecorder):
    """Writes snapshots to the system_status_logs table in its own transaction."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory: sessionmaker[Session] = session_factory

    @override
    def record(self, snapshot: StatusSnapshot) -> None:
        try:
            with self.session_factory() as session, session.begin():
                session.add(SystemStatusLog(**snapshot.model_dump()))
        except SQLAlchemyError as e:
            raise TelemetryError(f"Could not write system status log: {e}") from e


class BroadcastStatusRecorder(StatusRecorder):
    """Publishes each snapshot as an MQTT event and as the retained queue status."""

    def __init__(self, broadcaster: MQTTBroadcaster | NoOpBroadcaster | None = None):
        if broadcaster is None:
            broadcaster = get_broadcaster(
                broadcast_type=Config.BROADCAST_TYPE,
                broker=Config.MQTT_BROKER,
                port=Config.MQTT_PORT,
                topic=Config.MQTT_TOPIC,
            )
        self.broadcaster: MQTTBroadcaster | NoOpBroadcaster = broadcaster

    @override
    def record(self, snapshot: StatusSnapshot) -> None:
        data = snapshot.model_dump()
        if not self.broadcaster.publish_event(event_type=snapshot.event, data=data):
            raise TelemetryError(f"Could not publish '{snapshot.event}' status event")
        _ = self.broadcaster.publish_retained(
            self.broadcaster.status_topic, snapshot.model_dump_json()
        )


def get_status_recorder(
    kind: str | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> StatusRecorder:
    """Build the recorder selected by STATUS_RECORDER (database, mqtt or none)."""
    if kind is None:
        kind = Config.STATUS_RECORDER

    if kind == "database":
        if session_factory is None:
            raise ValueError("The database status recorder needs a session factory")
        return DatabaseStatusRecorder(session_factory)
    if kind == "mqtt":
        return BroadcastStatusRecorder()
    return NoOpStatusRecorder()


def build_snapshot(event: str, stats: QueueStats, recorded_at: int) -> StatusSnapshot:
    return StatusSnapshot(
        event=event,
        active_queue_count=stats.processing_count,
        waiting_queue_count=stats.total_waiting,
        hour_bucket=time.localtime(recorded_at / 1000).tm_hour,
        recorded_at=recorded_at,
    )


def record_safely(recorder: StatusRecorder, snapshot_factory: Callable[[], StatusSnapshot]) -> bool:
    """Build and record a snapshot, never raising.

    Args:
        recorder: Destination of the snapshot
        snapshot_factory: Builds the snapshot; failures here are swallowed too

    Returns:
        True if the snapshot was recorded
    """
    try:
        snapshot = snapshot_factory()
        recorder.record(snapshot)
    except Exception as e:
        logger.warning(f"Failed to record system status log: {e}")
        return False

    logger.info(
        f"System status recorded: event={snapshot.event}, "
        f"waiting={snapshot.waiting_queue_count}, processing={snapshot.active_queue_count}"
    )
    return True
