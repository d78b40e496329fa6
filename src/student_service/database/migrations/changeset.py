"""Changeset and ledger entry types."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from .operations import Operation

CHECKSUM_VERSION = "1"
ANY_CHECKSUM = "ANY"


class ChangesetIdentity(NamedTuple):
    """Identity of a changeset: (id, author, filename)."""

    id: str
    author: str
    filename: str

    def __str__(self) -> str:
        return f"{self.filename}::{self.id}::{self.author}"


class ChangesetState(Enum):
    """Lifecycle state of a changeset during a runner pass."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"


def compute_checksum(changes: list[Any]) -> str:
    """Compute the content checksum of a changeset's forward operations.

    The raw changelog entries are serialised to canonical JSON so that
    formatting, key order and comments in the source file do not matter.
    """
    canonical = json.dumps(changes, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.md5(canonical.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{CHECKSUM_VERSION}:{digest}"


@dataclass
class Changeset:
    """One immutable, identified unit of schema change."""

    identity: ChangesetIdentity
    operations: list[Operation]
    changes: list[Any]
    rollback: list[Operation] | None = None
    tag: str | None = None
    comment: str | None = None
    valid_checksums: list[str] = field(default_factory=list)

    @property
    def checksum(self) -> str:
        return compute_checksum(self.changes)

    @property
    def description(self) -> str:
        return "; ".join(operation.describe() for operation in self.operations)

    @property
    def has_rollback(self) -> bool:
        return bool(self.rollback)

    def accepts_checksum(self, stored: str | None) -> bool:
        """Whether a checksum recorded in the ledger still matches this changeset."""
        if stored is None or stored == self.checksum:
            return True
        for valid in self.valid_checksums:
            if valid.upper() == ANY_CHECKSUM or valid == stored:
                return True
        return False

    def __str__(self) -> str:
        return f"Changeset {self.identity}"


@dataclass
class LedgerEntry:
    """A row of the ledger table recording one applied changeset."""

    id: str
    author: str
    filename: str
    date_executed: datetime
    order_executed: int
    md5sum: str | None
    description: str | None = None
    comments: str | None = None
    tag: str | None = None
    exec_type: str = "EXECUTED"

    @property
    def identity(self) -> ChangesetIdentity:
        return ChangesetIdentity(self.id, self.author, self.filename)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "filename": self.filename,
            "date_executed": self.date_executed.isoformat(),
            "order_executed": self.order_executed,
            "md5sum": self.md5sum,
            "description": self.description,
            "tag": self.tag,
        }

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(identity='{self.identity}', "
            f"order_executed={self.order_executed})>"
        )
