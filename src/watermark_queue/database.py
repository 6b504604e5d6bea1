"""Engine and session factory setup for the queue store."""

import logging
from typing import Any

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker

from .config import Config
from .models import Base, QueueCounter

logger = logging.getLogger(__name__)

QUEUE_COUNTER_NAME = "processing_queue"

# Execution option set on connections that only read the queue
READ_ONLY_OPTION = "queue_read_only"


def _enable_sqlite_write_lock(engine: Engine) -> None:
    """Open SQLite write transactions with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, which lets two connections
    read the same queue state before either takes the write lock. Emitting
    BEGIN IMMEDIATE ourselves takes the database lock when the transaction
    starts. Connections marked with READ_ONLY_OPTION get a plain deferred
    BEGIN so status reads never wait for the write lock.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, _connection_record: Any) -> None:  # pyright: ignore[reportUnusedFunction]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Any) -> None:  # pyright: ignore[reportUnusedFunction]
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_queue_engine(database_url: str | None = None, **engine_kwargs: Any) -> Engine:
    """Create an engine for the queue database.

    Args:
        database_url: SQLAlchemy URL. If None, uses QUEUE_DATABASE_URL from config.
        **engine_kwargs: Passed through to create_engine

    Returns:
        Configured SQLAlchemy engine
    """
    if database_url is None:
        database_url = Config.QUEUE_DATABASE_URL

    _ = engine_kwargs.setdefault("echo", Config.QUEUE_DATABASE_ECHO)
    engine = create_engine(database_url, **engine_kwargs)

    if engine.dialect.name == "sqlite":
        _enable_sqlite_write_lock(engine)

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the queue engine.

    Objects stay readable after commit so callers can convert them
    once the transaction has finished.
    """
    return sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create the queue tables and seed the position counter row."""
    Base.metadata.create_all(engine)

    with Session(engine) as session, session.begin():
        stmt = select(QueueCounter).where(QueueCounter.name == QUEUE_COUNTER_NAME)
        if session.execute(stmt).scalar_one_or_none() is None:
            session.add(QueueCounter(name=QUEUE_COUNTER_NAME, value=0))
            logger.info(f"Seeded queue counter '{QUEUE_COUNTER_NAME}'")
