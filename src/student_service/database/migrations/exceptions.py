"""Exceptions raised by the changelog, ledger and migration runner."""

from typing import Any

from ...utils.logging import DatabaseError


class MigrationError(DatabaseError):
    """Base class for all migration errors.

    Every migration error is fatal to process startup.
    """

    pass


class MalformedChangelog(MigrationError):
    """The changelog is structurally invalid (cycle, duplicate id, bad operation)."""

    def __init__(self, message: str, source: str | None = None):
        context: dict[str, Any] = {}
        if source:
            context["source"] = source
            message = f"{source}: {message}"
        super().__init__(message, context)
        self.source = source


class ChecksumMismatch(MigrationError):
    """A previously applied changeset was modified after it ran."""

    def __init__(self, identity: Any, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for changeset {identity}: "
            f"ledger has {expected}, changelog now computes {actual}",
            {"changeset": str(identity), "expected": expected, "actual": actual},
        )
        self.identity = identity
        self.expected = expected
        self.actual = actual


class MigrationFailed(MigrationError):
    """An operation failed while a changeset was being applied."""

    def __init__(self, identity: Any, cause: BaseException):
        super().__init__(
            f"Changeset {identity} failed: {cause}",
            {"changeset": str(identity), "cause": type(cause).__name__},
        )
        self.identity = identity
        self.cause = cause


class LockTimeout(MigrationError):
    """The migration lock could not be acquired within the bounded wait."""

    def __init__(self, timeout: float, locked_by: str | None = None):
        holder = f" (held by {locked_by})" if locked_by else ""
        super().__init__(
            f"Could not acquire migration lock within {timeout:g}s{holder}",
            {"timeout": timeout, "locked_by": locked_by},
        )
        self.timeout = timeout
        self.locked_by = locked_by


class NoRollbackDefined(MigrationError):
    """A rollback was requested for a changeset that declares no rollback."""

    def __init__(self, identity: Any, reason: str | None = None):
        super().__init__(
            reason or f"Changeset {identity} does not define a rollback",
            {"changeset": str(identity)},
        )
        self.identity = identity


class UnknownRollbackTarget(MigrationError):
    """The rollback selector does not match anything in the ledger."""

    pass


class SchemaMismatch(MigrationError):
    """The entity mapping does not agree with the migrated schema."""

    def __init__(self, problems: list[str]):
        super().__init__(
            "Entity mapping does not match the database schema: " + "; ".join(problems),
            {"problems": problems},
        )
        self.problems = problems
