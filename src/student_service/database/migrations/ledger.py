"""Migration ledger and advisory lock tables."""

import os
import socket
import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    delete,
    func,
    insert,
    inspect,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ...utils.logging import DatabaseError, LogContext, get_logger
from ..connection import write_transaction
from .changeset import Changeset, ChangesetIdentity, LedgerEntry
from .exceptions import LockTimeout, MigrationError

logger = get_logger(__name__, LogContext.LEDGER)

LEDGER_TABLE = "databasechangelog"
LOCK_TABLE = "databasechangeloglock"
LOCK_ROW_ID = 1


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the ledger."""
    return datetime.now(UTC).replace(tzinfo=None)


class MigrationLedger:
    """Durable record of applied changesets, keyed by changeset identity."""

    def __init__(
        self,
        engine: Engine,
        ledger_table: str = LEDGER_TABLE,
        lock_table: str = LOCK_TABLE,
    ) -> None:
        """Initialize the ledger.

        Args:
            engine: Database engine.
            ledger_table: Name of the table recording applied changesets.
            lock_table: Name of the single-row advisory lock table.
        """
        self.engine = engine
        self.metadata = MetaData()
        self.owner = f"{socket.gethostname()} ({os.getpid()})"
        self._tables_ready = False
        self._lock_held = False

        self.table = Table(
            ledger_table,
            self.metadata,
            Column("id", String(255), nullable=False),
            Column("author", String(255), nullable=False),
            Column("filename", String(255), nullable=False),
            Column("dateexecuted", DateTime, nullable=False),
            Column("orderexecuted", Integer, nullable=False),
            Column("exectype", String(10), nullable=False),
            Column("md5sum", String(35)),
            Column("description", String(255)),
            Column("comments", String(255)),
            Column("tag", String(255)),
            UniqueConstraint("id", "author", "filename", name=f"uq_{ledger_table}_identity"),
        )
        self.lock_table = Table(
            lock_table,
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=False),
            Column("locked", Boolean, nullable=False),
            Column("lockgranted", DateTime),
            Column("lockedby", String(255)),
        )

    def ensure_tables(self) -> None:
        """Create the ledger and lock tables on first use.

        Runners starting together on a fresh database all get here at once.
        Creation and seeding of the lock row happen in one write transaction,
        and a failure is tolerated when another runner finished the job.
        """
        if self._tables_ready:
            return

        try:
            with write_transaction(self.engine) as conn:
                self.metadata.create_all(conn, checkfirst=True)
                self._seed_lock_row(conn)
        except SQLAlchemyError as e:
            if not self._bootstrapped():
                raise DatabaseError(f"Failed to create ledger tables: {e}") from e
            logger.debug("Ledger tables created by another runner", error=str(e))

        self._tables_ready = True

    def _seed_lock_row(self, conn: Connection) -> None:
        lock_row = conn.execute(
            select(self.lock_table.c.id).where(self.lock_table.c.id == LOCK_ROW_ID)
        ).first()
        if lock_row is None:
            conn.execute(insert(self.lock_table).values(id=LOCK_ROW_ID, locked=False))

    def _bootstrapped(self) -> bool:
        try:
            with self.engine.connect() as conn:
                names = set(inspect(conn).get_table_names())
                if not {self.table.name, self.lock_table.name} <= names:
                    return False
                return (
                    conn.execute(
                        select(self.lock_table.c.id).where(
                            self.lock_table.c.id == LOCK_ROW_ID
                        )
                    ).first()
                    is not None
                )
        except SQLAlchemyError:
            return False

    # Lock handling

    def try_acquire_lock(self) -> bool:
        """Make one attempt to take the advisory lock."""
        self.ensure_tables()
        with write_transaction(self.engine) as conn:
            result = conn.execute(
                update(self.lock_table)
                .where(
                    self.lock_table.c.id == LOCK_ROW_ID,
                    self.lock_table.c.locked.is_(False),
                )
                .values(locked=True, lockgranted=utcnow(), lockedby=self.owner)
            )
        self._lock_held = result.rowcount == 1
        return self._lock_held

    def acquire_lock(self, timeout: float, poll_interval: float = 1.0) -> None:
        """Take the advisory lock, waiting at most ``timeout`` seconds.

        Raises:
            LockTimeout: If another runner still holds the lock when the wait expires.
        """
        deadline = time.monotonic() + timeout
        while not self.try_acquire_lock():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockTimeout(timeout, self.lock_status()["locked_by"])
            logger.info(
                "Waiting for migration lock",
                locked_by=self.lock_status()["locked_by"],
                remaining=round(remaining, 2),
            )
            time.sleep(min(poll_interval, remaining))

        logger.info("Migration lock acquired", owner=self.owner)

    def release_lock(self) -> None:
        """Release the lock if this ledger instance holds it."""
        if not self._lock_held:
            return
        self._reset_lock()
        self._lock_held = False
        logger.info("Migration lock released", owner=self.owner)

    def force_release(self) -> None:
        """Release the lock regardless of holder, for recovering from a crashed runner."""
        self.ensure_tables()
        self._reset_lock()
        self._lock_held = False
        logger.warning("Migration lock forcibly released", owner=self.owner)

    def _reset_lock(self) -> None:
        with write_transaction(self.engine) as conn:
            conn.execute(
                update(self.lock_table)
                .where(self.lock_table.c.id == LOCK_ROW_ID)
                .values(locked=False, lockgranted=None, lockedby=None)
            )

    @contextmanager
    def lock(self, timeout: float, poll_interval: float = 1.0) -> Generator[None, None, None]:
        """Hold the advisory lock for the duration of the block."""
        self.acquire_lock(timeout, poll_interval)
        try:
            yield
        finally:
            self.release_lock()

    def lock_status(self) -> dict[str, Any]:
        """Report whether the lock is held, by whom and since when."""
        self.ensure_tables()
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.lock_table).where(self.lock_table.c.id == LOCK_ROW_ID)
            ).first()

        if row is None:
            return {"locked": False, "locked_by": None, "lock_granted": None}
        return {
            "locked": bool(row.locked),
            "locked_by": row.lockedby,
            "lock_granted": row.lockgranted,
        }

    # Ledger entries

    def list_applied(self) -> list[LedgerEntry]:
        """Return all ledger entries in execution order."""
        self.ensure_tables()
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(self.table).order_by(
                    self.table.c.orderexecuted, self.table.c.dateexecuted
                )
            ).all()
        return [self._to_entry(row) for row in rows]

    def get(self, identity: ChangesetIdentity) -> LedgerEntry | None:
        self.ensure_tables()
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.table).where(*self._identity_clause(identity))
            ).first()
        return self._to_entry(row) if row is not None else None

    def has_applied(self, identity: ChangesetIdentity) -> bool:
        return self.get(identity) is not None

    def next_sequence(self, conn: Connection) -> int:
        """Next ``orderexecuted`` value, read inside the caller's transaction."""
        current = conn.execute(select(func.max(self.table.c.orderexecuted))).scalar()
        return (current or 0) + 1

    def record(
        self,
        conn: Connection,
        changeset: Changeset,
        sequence: int,
        executed_at: datetime | None = None,
    ) -> None:
        """Insert the ledger entry for a changeset inside the caller's transaction."""
        identity = changeset.identity
        conn.execute(
            insert(self.table).values(
                id=identity.id,
                author=identity.author,
                filename=identity.filename,
                dateexecuted=executed_at or utcnow(),
                orderexecuted=sequence,
                exectype="EXECUTED",
                md5sum=changeset.checksum,
                description=changeset.description[:255],
                comments=(changeset.comment or "")[:255] or None,
                tag=changeset.tag,
            )
        )

    def remove(self, conn: Connection, identity: ChangesetIdentity) -> None:
        """Delete the ledger entry for a changeset inside the caller's transaction."""
        conn.execute(delete(self.table).where(*self._identity_clause(identity)))

    def find_tag(self, tag: str) -> LedgerEntry | None:
        """Most recent ledger entry carrying ``tag``."""
        for entry in reversed(self.list_applied()):
            if entry.tag == tag:
                return entry
        return None

    def tag_last(self, tag: str) -> LedgerEntry:
        """Attach a tag to the most recently applied changeset."""
        applied = self.list_applied()
        if not applied:
            raise MigrationError("Cannot tag an empty ledger")

        last = applied[-1]
        with write_transaction(self.engine) as conn:
            conn.execute(
                update(self.table)
                .where(*self._identity_clause(last.identity))
                .values(tag=tag)
            )
        last.tag = tag
        logger.info("Ledger tagged", tag=tag, changeset=str(last.identity))
        return last

    def _identity_clause(self, identity: ChangesetIdentity) -> tuple:
        return (
            self.table.c.id == identity.id,
            self.table.c.author == identity.author,
            self.table.c.filename == identity.filename,
        )

    @staticmethod
    def _to_entry(row: Any) -> LedgerEntry:
        return LedgerEntry(
            id=row.id,
            author=row.author,
            filename=row.filename,
            date_executed=row.dateexecuted,
            order_executed=row.orderexecuted,
            md5sum=row.md5sum,
            description=row.description,
            comments=row.comments,
            tag=row.tag,
            exec_type=row.exectype,
        )
