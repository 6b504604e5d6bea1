"""Shared test fixtures for watermark_queue tests."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.pool import StaticPool

from watermark_queue import (
    AdmissionController,
    QueueStore,
    Reaper,
    create_queue_engine,
    create_session_factory,
    init_db,
)

if TYPE_CHECKING:
    from collections.abc import Generator

    from sqlalchemy.engine import Engine
    from sqlalchemy.orm import Session, sessionmaker


START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now: int = start

    def __call__(self) -> int:
        return self.now

    def advance(self, **kwargs: float) -> int:
        self.now += int(timedelta(**kwargs).total_seconds() * 1000)
        return self.now


@pytest.fixture
def in_memory_engine() -> Generator[Engine, None, None]:
    """Create SQLite in-memory engine with all queue tables created.

    Yields:
        Engine: SQLAlchemy engine with in-memory SQLite database
    """
    engine = create_queue_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(in_memory_engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(in_memory_engine)


@pytest.fixture
def queue_store(session_factory: sessionmaker[Session]) -> QueueStore:
    return QueueStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller(queue_store: QueueStore, clock: FakeClock) -> AdmissionController:
    """Single-slot admission controller driven by the fake clock."""
    return AdmissionController(queue_store, max_concurrent=1, clock=clock)


@pytest.fixture
def reaper(queue_store: QueueStore, controller: AdmissionController, clock: FakeClock) -> Reaper:
    """Reaper sharing the controller's promotion policy (same slot limit)."""
    return Reaper(
        queue_store,
        controller.promotion,
        clock=clock,
        timeout=timedelta(minutes=10),
        retention=timedelta(hours=24),
    )
