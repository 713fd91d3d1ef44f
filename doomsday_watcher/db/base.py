"""Database configuration and base setup for Doomsday Watcher."""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Iterator, Optional

import structlog
from sqlalchemy import DateTime, Engine, create_engine, event, text
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from ..config import get_settings
from ..errors import OperationTimeoutError
from ..primitives import ensure_utc

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on read; values come back naive and are re-tagged
    as UTC here.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):  # type: ignore[override]
        return ensure_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect):  # type: ignore[override]
        return ensure_utc(value)


def _ensure_sync_driver(url: URL) -> URL:
    """Force a synchronous driver for Alembic and the ORM engine."""

    if url.drivername.startswith("postgresql"):
        # Normalize plain and async variants to psycopg (sync)
        if url.drivername == "postgresql" or any(
            token in url.drivername for token in ("async", "aiopg")
        ):
            url = url.set(drivername="postgresql+psycopg")
    elif url.drivername.startswith("sqlite+"):
        if "aiosqlite" in url.drivername:
            url = url.set(drivername="sqlite")

    return url


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Return a database URL with a guaranteed synchronous driver."""

    url = make_url(raw_url or get_settings().database_url)
    # render_as_string keeps the password; str(url) would mask it
    return _ensure_sync_driver(url).render_as_string(hide_password=False)


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(raw_url: Optional[str] = None) -> Engine:
    """Create an engine with explicit connect and statement timeouts."""
    settings = get_settings()
    database_url = get_database_url(raw_url)

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.db_connect_timeout_seconds,
            },
            poolclass=StaticPool,
        )
        enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args={
            "connect_timeout": settings.db_connect_timeout_seconds,
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        },
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """
    Create and cache the database engine.

    Lazy so that environment variables are read at runtime rather than at
    import time.
    """
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_local() -> sessionmaker:
    """Get a sessionmaker bound to the current engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    session_local = get_session_local()
    db = session_local()
    try:
        yield db
    finally:
        db.close()


def _is_timeout(exc: OperationalError) -> bool:
    # 57014 is PostgreSQL query_canceled, raised when statement_timeout fires
    if getattr(exc.orig, "sqlstate", None) == "57014":
        return True
    message = str(exc.orig).lower()
    return "timeout" in message or "timed out" in message or "database is locked" in message


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Run a block as one short, explicitly bounded transaction.

    Commits on success and rolls back on any error. Lock and statement
    timeouts are re-raised as ``OperationTimeoutError``.
    """
    try:
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if _is_timeout(exc):
            raise OperationTimeoutError(
                "Database operation timed out", details={"reason": str(exc.orig)}
            ) from exc
        raise
    except BaseException:
        db.rollback()
        raise


class DatabaseBootstrap:
    """Idempotent schema setup owned by one application instance.

    Replaces a process-wide "initialized" flag: whoever starts the
    application creates one bootstrap and calls ``ensure_initialized()``.
    Repeated calls are no-ops.
    """

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or get_engine()
        self._lock = threading.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def check_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except OperationalError as exc:
            logger.error("Database connection check failed", error=str(exc))
            return False

    def ensure_initialized(self) -> bool:
        """Create all tables once. Returns True when the schema is ready."""
        with self._lock:
            if self._initialized:
                return True

            if not self.check_connection():
                return False

            # Import models so they register with Base
            from . import models  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            self._initialized = True
            logger.info("Database initialized", url=self.engine.url.render_as_string())
            return True

    def drop_all(self) -> None:
        """Drop all tables. Use with caution!"""
        from . import models  # noqa: F401

        with self._lock:
            Base.metadata.drop_all(bind=self.engine)
            self._initialized = False
