"""Changelog-driven schema migration system."""

from .changelog import ChangelogStore
from .changeset import Changeset, ChangesetIdentity, ChangesetState, LedgerEntry
from .exceptions import (
    ChecksumMismatch,
    LockTimeout,
    MalformedChangelog,
    MigrationError,
    MigrationFailed,
    NoRollbackDefined,
    SchemaMismatch,
    UnknownRollbackTarget,
)
from .ledger import MigrationLedger
from .runner import MigrationRunner

__all__ = [
    "ChangelogStore",
    "Changeset",
    "ChangesetIdentity",
    "ChangesetState",
    "LedgerEntry",
    "MigrationLedger",
    "MigrationRunner",
    # Errors
    "MigrationError",
    "MalformedChangelog",
    "ChecksumMismatch",
    "MigrationFailed",
    "LockTimeout",
    "NoRollbackDefined",
    "UnknownRollbackTarget",
    "SchemaMismatch",
]
