"""Changelog loading.

A changelog is a YAML document whose ``databaseChangeLog`` key holds an
ordered list of ``changeSet``, ``include`` and ``includeAll`` entries.
Includes are expanded in place, so the resulting sequence of changesets is
deterministic: file order plus include order.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from ...utils.logging import LogContext, get_logger
from .changeset import Changeset, ChangesetIdentity
from .exceptions import MalformedChangelog
from .operations import Operation, RawSql, parse_operation

logger = get_logger(__name__, LogContext.CHANGELOG)

CHANGELOG_SUFFIXES = (".yaml", ".yml")


class ChangelogStore:
    """Ordered, lazily loaded collection of changesets."""

    def __init__(self, root: Path | str, master_file: Path | str) -> None:
        """Initialize changelog store.

        Args:
            root: Directory that include paths and ledger filenames are relative to.
            master_file: Master changelog, absolute or relative to ``root``.
        """
        self.root = Path(root).expanduser().resolve()
        master = Path(master_file).expanduser()
        self.master_file = master if master.is_absolute() else self.root / master

    def iter_changesets(self) -> Iterator[Changeset]:
        """Yield every changeset in changelog order.

        Raises:
            MalformedChangelog: On include cycles, duplicate identities,
                unreadable files or invalid changeset definitions.
        """
        seen: set[ChangesetIdentity] = set()
        yield from self._iter_file(self.master_file.resolve(), [], seen)

    def load(self) -> list[Changeset]:
        """Load the full changelog, validating it as a whole."""
        changesets = list(self.iter_changesets())
        logger.debug(
            "Changelog loaded",
            master_file=str(self.master_file),
            changesets=len(changesets),
        )
        return changesets

    def relative_name(self, path: Path) -> str:
        """Filename recorded in the ledger for a changelog file."""
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def _read(self, path: Path) -> list[Any]:
        source = self.relative_name(path)
        if not path.is_file():
            raise MalformedChangelog("Changelog file not found", source)

        try:
            with open(path, encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedChangelog(f"Invalid YAML: {e}", source) from e

        if document is None:
            return []
        if not isinstance(document, dict) or "databaseChangeLog" not in document:
            raise MalformedChangelog("Missing 'databaseChangeLog' root key", source)

        entries = document["databaseChangeLog"] or []
        if not isinstance(entries, list):
            raise MalformedChangelog("'databaseChangeLog' must be a list", source)
        return entries

    def _iter_file(
        self, path: Path, stack: list[Path], seen: set[ChangesetIdentity]
    ) -> Iterator[Changeset]:
        source = self.relative_name(path)
        if path in stack:
            chain = " -> ".join(self.relative_name(p) for p in [*stack, path])
            raise MalformedChangelog(f"Include cycle detected: {chain}", source)

        entries = self._read(path)
        stack.append(path)
        try:
            for entry in entries:
                if not isinstance(entry, dict) or len(entry) != 1:
                    raise MalformedChangelog(
                        "Each changelog entry must have exactly one key", source
                    )
                kind, body = next(iter(entry.items()))

                if kind == "changeSet":
                    changeset = self._parse_changeset(body, source)
                    if changeset.identity in seen:
                        raise MalformedChangelog(
                            f"Duplicate changeset identity {changeset.identity}", source
                        )
                    seen.add(changeset.identity)
                    yield changeset
                elif kind == "include":
                    target = self._resolve(body, "file", path)
                    yield from self._iter_file(target, stack, seen)
                elif kind == "includeAll":
                    directory = self._resolve(body, "path", path)
                    if not directory.is_dir():
                        raise MalformedChangelog(
                            f"includeAll directory not found: {directory}", source
                        )
                    for target in sorted(
                        p for p in directory.iterdir() if p.suffix in CHANGELOG_SUFFIXES
                    ):
                        yield from self._iter_file(target.resolve(), stack, seen)
                else:
                    raise MalformedChangelog(f"Unknown changelog entry '{kind}'", source)
        finally:
            stack.pop()

    def _resolve(self, body: Any, key: str, current: Path) -> Path:
        source = self.relative_name(current)
        if not isinstance(body, dict) or not body.get(key):
            raise MalformedChangelog(f"Include requires '{key}'", source)

        base = current.parent if body.get("relativeToChangelogFile") else self.root
        target = Path(str(body[key]))
        if not target.is_absolute():
            target = base / target
        return target.resolve()

    def _parse_changeset(self, body: Any, source: str) -> Changeset:
        if not isinstance(body, dict):
            raise MalformedChangelog("changeSet must be a mapping", source)

        changeset_id = body.get("id")
        author = body.get("author")
        if changeset_id is None or str(changeset_id) == "":
            raise MalformedChangelog("changeSet requires 'id'", source)
        if not author:
            raise MalformedChangelog(f"changeSet '{changeset_id}' requires 'author'", source)

        identity = ChangesetIdentity(str(changeset_id), str(author), source)
        where = f"{source}::{changeset_id}"

        changes = body.get("changes")
        if not isinstance(changes, list) or not changes:
            raise MalformedChangelog("changeSet requires a non-empty 'changes' list", where)
        operations = [parse_operation(change, where) for change in changes]

        valid_checksums = body.get("validCheckSum") or []
        if isinstance(valid_checksums, str):
            valid_checksums = [valid_checksums]

        return Changeset(
            identity=identity,
            operations=operations,
            changes=changes,
            rollback=self._parse_rollback(body.get("rollback"), where),
            tag=str(body["tag"]) if body.get("tag") is not None else None,
            comment=body.get("comment"),
            valid_checksums=[str(value) for value in valid_checksums],
        )

    def _parse_rollback(self, rollback: Any, where: str) -> list[Operation] | None:
        if not rollback:
            return None
        if isinstance(rollback, str):
            return [RawSql(rollback)]
        if isinstance(rollback, dict):
            rollback = [rollback]
        if not isinstance(rollback, list):
            raise MalformedChangelog("rollback must be a list of changes", where)
        return [parse_operation(change, where) for change in rollback]
