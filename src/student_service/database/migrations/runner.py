"""Migration runner: applies pending changesets and rolls them back."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ...config.loader import ServiceConfig
from ...utils.logging import LogContext, audit_log, get_logger, log_performance
from ..connection import write_transaction
from .changelog import ChangelogStore
from .changeset import Changeset, ChangesetIdentity, ChangesetState, LedgerEntry
from .exceptions import (
    ChecksumMismatch,
    MigrationFailed,
    NoRollbackDefined,
    UnknownRollbackTarget,
)
from .ledger import MigrationLedger

logger = get_logger(__name__, LogContext.MIGRATION)


class MigrationRunner:
    """Compares the changelog with the ledger and brings the schema up to date.

    Every pass holds the ledger's advisory lock, so runners in different
    processes sharing one database never interleave.
    """

    def __init__(
        self,
        engine: Engine,
        changelog: ChangelogStore,
        ledger: MigrationLedger | None = None,
        lock_timeout: float = 60.0,
        lock_poll_interval: float = 1.0,
    ) -> None:
        """Initialize migration runner.

        Args:
            engine: Database engine.
            changelog: Source of changesets.
            ledger: Ledger to record applied changesets in.
            lock_timeout: Seconds to wait for the migration lock.
            lock_poll_interval: Seconds between lock attempts.
        """
        self.engine = engine
        self.changelog = changelog
        self.ledger = ledger or MigrationLedger(engine)
        self.lock_timeout = lock_timeout
        self.lock_poll_interval = lock_poll_interval
        self.states: dict[ChangesetIdentity, ChangesetState] = {}

    @classmethod
    def from_config(cls, engine: Engine, config: ServiceConfig) -> "MigrationRunner":
        return cls(
            engine,
            ChangelogStore(config.changelog_root_path, config.changelog_file),
            lock_timeout=config.lock_wait_timeout,
            lock_poll_interval=config.lock_poll_interval,
        )

    @log_performance()
    @audit_log("update")
    def update(self, dry_run: bool = False) -> list[ChangesetIdentity]:
        """Apply every pending changeset in changelog order.

        Args:
            dry_run: Only report what would be applied.

        Returns:
            Identities of the changesets applied (or pending, for a dry run).

        Raises:
            LockTimeout: Another runner holds the lock.
            MalformedChangelog: The changelog is invalid; nothing was applied.
            ChecksumMismatch: An applied changeset was modified; nothing was applied.
            MigrationFailed: A changeset failed; earlier changesets stay applied.
        """
        with self.ledger.lock(self.lock_timeout, self.lock_poll_interval):
            changesets = self.changelog.load()
            applied = {entry.identity: entry for entry in self.ledger.list_applied()}
            self._verify_checksums(changesets, applied)

            pending = [c for c in changesets if c.identity not in applied]
            for changeset in changesets:
                self.states[changeset.identity] = (
                    ChangesetState.APPLIED
                    if changeset.identity in applied
                    else ChangesetState.PENDING
                )

            if dry_run:
                return [changeset.identity for changeset in pending]

            newly_applied = []
            for changeset in pending:
                self._apply(changeset)
                newly_applied.append(changeset.identity)

        if newly_applied:
            logger.info("Schema updated", applied=len(newly_applied))
        else:
            logger.info("No pending changesets; schema is up to date")
        return newly_applied

    def _apply(self, changeset: Changeset) -> None:
        self._transition(changeset.identity, ChangesetState.APPLYING)
        try:
            with write_transaction(self.engine) as conn:
                for operation in changeset.operations:
                    operation.execute(conn)
                self.ledger.record(conn, changeset, self.ledger.next_sequence(conn))
        except SQLAlchemyError as e:
            self._transition(changeset.identity, ChangesetState.FAILED)
            logger.error(f"Changeset {changeset.identity} failed", exception=e)
            raise MigrationFailed(changeset.identity, e) from e

        self._transition(changeset.identity, ChangesetState.APPLIED)

    @audit_log("rollback")
    def rollback(
        self,
        count: int | None = None,
        to_date: datetime | None = None,
        to_tag: str | None = None,
    ) -> list[ChangesetIdentity]:
        """Undo applied changesets, most recent first.

        Exactly one selector must be given:

        - ``count``: the last ``count`` applied changesets.
        - ``to_date``: every changeset applied after this time.
        - ``to_tag``: every changeset applied after the one carrying the tag.

        Every targeted changeset must declare a rollback; otherwise
        ``NoRollbackDefined`` is raised before anything is undone.

        Returns:
            Identities of the changesets rolled back, in rollback order.
        """
        selectors = [value for value in (count, to_date, to_tag) if value is not None]
        if len(selectors) != 1:
            raise ValueError("Exactly one of count, to_date or to_tag is required")
        if count is not None and count < 0:
            raise ValueError("count must not be negative")

        with self.ledger.lock(self.lock_timeout, self.lock_poll_interval):
            changesets = {c.identity: c for c in self.changelog.load()}
            applied = self.ledger.list_applied()
            self._verify_checksums(
                list(changesets.values()), {entry.identity: entry for entry in applied}
            )

            plan = []
            for entry in self._select_rollback(applied, count, to_date, to_tag):
                changeset = changesets.get(entry.identity)
                if changeset is None:
                    raise NoRollbackDefined(
                        entry.identity,
                        f"Changeset {entry.identity} is no longer in the changelog",
                    )
                if not changeset.has_rollback:
                    raise NoRollbackDefined(entry.identity)
                plan.append(changeset)

            for changeset in plan:
                self._roll_back(changeset)

        logger.info("Rollback complete", rolled_back=len(plan))
        return [changeset.identity for changeset in plan]

    def _select_rollback(
        self,
        applied: list[LedgerEntry],
        count: int | None,
        to_date: datetime | None,
        to_tag: str | None,
    ) -> list[LedgerEntry]:
        newest_first = list(reversed(applied))

        if count is not None:
            return newest_first[:count]

        if to_date is not None:
            if to_date.tzinfo is not None:
                to_date = to_date.astimezone(UTC).replace(tzinfo=None)
            return [entry for entry in newest_first if entry.date_executed > to_date]

        tagged = self.ledger.find_tag(to_tag)
        if tagged is None:
            raise UnknownRollbackTarget(
                f"Tag '{to_tag}' not found in the ledger", {"tag": to_tag}
            )
        return [
            entry for entry in newest_first if entry.order_executed > tagged.order_executed
        ]

    def _roll_back(self, changeset: Changeset) -> None:
        self._transition(changeset.identity, ChangesetState.ROLLING_BACK)
        try:
            with write_transaction(self.engine) as conn:
                for operation in changeset.rollback or []:
                    operation.execute(conn)
                self.ledger.remove(conn, changeset.identity)
        except SQLAlchemyError as e:
            self._transition(changeset.identity, ChangesetState.FAILED)
            logger.error(f"Rollback of {changeset.identity} failed", exception=e)
            raise MigrationFailed(changeset.identity, e) from e

        self._transition(changeset.identity, ChangesetState.PENDING)

    def _verify_checksums(
        self,
        changesets: list[Changeset],
        applied: dict[ChangesetIdentity, LedgerEntry],
    ) -> None:
        for changeset in changesets:
            entry = applied.get(changeset.identity)
            if entry is not None and not changeset.accepts_checksum(entry.md5sum):
                logger.error(
                    "Applied changeset was modified",
                    changeset=str(changeset.identity),
                    expected=entry.md5sum,
                    actual=changeset.checksum,
                )
                raise ChecksumMismatch(changeset.identity, entry.md5sum, changeset.checksum)

    def _transition(self, identity: ChangesetIdentity, state: ChangesetState) -> None:
        self.states[identity] = state
        logger.info(
            f"Changeset {identity} -> {state.value}",
            changeset=str(identity),
            state=state.value,
        )

    def validate(self) -> None:
        """Check the changelog structure and every applied checksum without applying."""
        changesets = self.changelog.load()
        applied = {entry.identity: entry for entry in self.ledger.list_applied()}
        self._verify_checksums(changesets, applied)

    def history(self) -> list[LedgerEntry]:
        return self.ledger.list_applied()

    def tag(self, name: str) -> LedgerEntry:
        """Tag the current schema state as a rollback boundary."""
        return self.ledger.tag_last(name)

    def release_locks(self) -> None:
        self.ledger.force_release()

    def status(self) -> dict[str, Any]:
        """Get migration status information.

        Returns:
            Dictionary with applied and pending changesets and the lock state.
        """
        changesets = self.changelog.load()
        applied = self.ledger.list_applied()
        applied_ids = {entry.identity for entry in applied}
        pending = [c for c in changesets if c.identity not in applied_ids]

        return {
            "applied_count": len(applied),
            "pending_count": len(pending),
            "applied_changesets": [entry.to_dict() for entry in applied],
            "pending_changesets": [
                {
                    "id": changeset.identity.id,
                    "author": changeset.identity.author,
                    "filename": changeset.identity.filename,
                    "description": changeset.description,
                }
                for changeset in pending
            ],
            "lock": {
                key: (value.isoformat() if isinstance(value, datetime) else value)
                for key, value in self.ledger.lock_status().items()
            },
        }
