"""Database connection and session management."""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config.loader import ServiceConfig

# Execution option read by the SQLite ``begin`` listener
SQLITE_BEGIN_MODE = "sqlite_begin_mode"


def configure_sqlite(engine: Engine) -> None:
    """Make SQLite run DDL inside real transactions.

    pysqlite only opens a transaction implicitly before DML statements, so a
    ``CREATE TABLE`` would otherwise autocommit and a failed changeset could
    leave half of its operations behind. Driver-level transaction handling is
    disabled and SQLAlchemy emits ``BEGIN`` itself, as ``BEGIN IMMEDIATE`` for
    connections opened through :func:`write_transaction`.
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn: Connection) -> None:
        mode = conn.get_execution_options().get(SQLITE_BEGIN_MODE)
        conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


@contextmanager
def write_transaction(engine: Engine) -> Generator[Connection, None, None]:
    """Open a transaction that intends to write, committed on success.

    SQLite hands a deferred transaction that reads before it writes an
    immediate ``database is locked`` when another connection is already
    writing. Taking the write lock at ``BEGIN`` makes contending connections
    wait out the busy timeout instead. Other dialects get a plain transaction.
    """
    with engine.connect() as conn:
        conn.execution_options(**{SQLITE_BEGIN_MODE: "IMMEDIATE"})
        with conn.begin():
            yield conn


class DatabaseManager:
    """Owns the engine and session factory for one database URL."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 10,
        pool_timeout: int = 30,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: Database connection URL.
            echo: Whether to echo SQL statements to stdout.
            pool_size: Number of connections to maintain in the pool.
            pool_timeout: Seconds to wait for a pooled connection; for SQLite,
                the busy timeout on a locked database file.
        """
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.pool_timeout = pool_timeout

        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "DatabaseManager":
        return cls(
            database_url=config.database_url,
            echo=config.echo_sql,
            pool_size=config.pool_size,
            pool_timeout=config.pool_timeout,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine)
        return self._session_factory

    def _create_engine(self) -> Engine:
        engine_kwargs: dict[str, Any] = {"echo": self.echo, "pool_pre_ping": True}

        if self.is_sqlite:
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": self.pool_timeout,
            }
            if ":memory:" in self.database_url or self.database_url == "sqlite://":
                # One shared connection, or every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_size"] = self.pool_size
            engine_kwargs["pool_timeout"] = self.pool_timeout

        engine = create_engine(self.database_url, **engine_kwargs)
        if self.is_sqlite:
            configure_sqlite(engine)
        return engine

    def close(self) -> None:
        """Dispose of pooled connections; the engine is rebuilt on next use."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
        self._session_factory = None

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session with automatic cleanup.

        Yields:
            Database session that will be automatically committed/rolled back.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
