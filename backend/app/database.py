import time
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import settings
from app.services.errors import PersistenceError, PersistenceTimeoutError

logger = structlog.get_logger()

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
)


def use_immediate_transactions(sqlite_engine) -> None:
    """
    Make SQLite take the write lock when a transaction begins.

    pysqlite defers locking to the first write, so two sessions that both
    read before writing can fail with "database is locked" instead of waiting.
    """

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


if settings.database_url.startswith("sqlite"):
    use_immediate_transactions(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    """Dependency for FastAPI endpoints to get a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# SQLite VM instructions between deadline polls
SQLITE_PROGRESS_STEPS = 1000


class Deadline:
    """
    Caller-supplied time budget for a unit of work.

    A ``None`` timeout never expires. ``check`` is called before each commit;
    an expired deadline raises and the surrounding guard rolls back. While a
    guard holds the deadline, statements still running when it expires are
    interrupted by the database.
    """

    def __init__(self, timeout: float | None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    @property
    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def check(self, operation: str) -> None:
        if self.expired:
            raise PersistenceTimeoutError(operation)

    def _interrupt(self) -> int:
        return int(self.expired)

    @contextmanager
    def bound(self, db: Session) -> Iterator[None]:
        """
        Hand the remaining budget to the database for the enclosed statements.

        SQLite polls the deadline through a progress handler; PostgreSQL gets a
        transaction-local ``statement_timeout``.
        """
        driver_connection = None
        if self._expires_at is not None:
            dialect = db.get_bind().dialect.name
            if dialect == "sqlite":
                driver_connection = db.connection().connection.driver_connection
                driver_connection.set_progress_handler(self._interrupt, SQLITE_PROGRESS_STEPS)
            elif dialect == "postgresql":
                milliseconds = max(1, int(self.remaining * 1000))
                db.execute(
                    text("SELECT set_config('statement_timeout', :value, true)"),
                    {"value": str(milliseconds)},
                )
        try:
            yield
        finally:
            if driver_connection is not None:
                driver_connection.set_progress_handler(None, SQLITE_PROGRESS_STEPS)


@contextmanager
def persistence_guard(db: Session, operation: str, deadline: Deadline | None = None) -> Iterator[None]:
    """
    Translate SQLAlchemy failures into PersistenceError.

    Any failure inside the block rolls the session back so a half-applied
    unit of work is never committed. With a ``deadline``, a statement
    interrupted because the budget ran out surfaces as PersistenceTimeoutError.
    """
    try:
        if deadline is None:
            yield
        else:
            with deadline.bound(db):
                yield
    except PersistenceTimeoutError:
        db.rollback()
        logger.warning("persistence_deadline_exceeded", operation=operation)
        raise
    except SQLAlchemyError as e:
        db.rollback()
        if deadline is not None and deadline.expired:
            logger.warning("persistence_deadline_exceeded", operation=operation)
            raise PersistenceTimeoutError(operation) from e
        logger.error("persistence_failure", operation=operation, error=str(e), exc_info=True)
        raise PersistenceError(operation) from e
