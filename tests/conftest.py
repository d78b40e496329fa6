"""
Pytest configuration and shared fixtures for student-service tests.
"""

import logging
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import yaml

from student_service.config.loader import ServiceConfig
from student_service.database.connection import DatabaseManager
from student_service.database.migrations import ChangelogStore, MigrationRunner


@pytest.fixture(autouse=True)
def reset_root_logger() -> Generator[None, None, None]:
    """Undo handlers installed by setup_logging during a test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level

    yield

    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def changelog_root(tmp_path: Path) -> Path:
    """Empty directory to write changelog files into."""
    root = tmp_path / "changelog"
    root.mkdir()
    return root


@pytest.fixture
def write_changelog(changelog_root: Path) -> Callable[..., Path]:
    """Write a changelog file; entries are ``databaseChangeLog`` list items."""

    def _write(name: str, entries: list[dict[str, Any]]) -> Path:
        path = changelog_root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump({"databaseChangeLog": entries}, sort_keys=False))
        return path

    return _write


@pytest.fixture
def create_students() -> dict[str, Any]:
    """Changeset creating the students table."""
    return {
        "changeSet": {
            "id": "create-students",
            "author": "tester",
            "changes": [
                {
                    "createTable": {
                        "tableName": "students",
                        "columns": [
                            {
                                "column": {
                                    "name": "id",
                                    "type": "BIGINT",
                                    "autoIncrement": True,
                                    "constraints": {"primaryKey": True, "nullable": False},
                                }
                            },
                            {
                                "column": {
                                    "name": "first_name",
                                    "type": "VARCHAR(255)",
                                    "constraints": {"nullable": False},
                                }
                            },
                            {
                                "column": {
                                    "name": "last_name",
                                    "type": "VARCHAR(255)",
                                    "constraints": {"nullable": False},
                                }
                            },
                            {
                                "column": {
                                    "name": "email",
                                    "type": "VARCHAR(255)",
                                    "constraints": {"nullable": False},
                                }
                            },
                        ],
                    }
                }
            ],
            "rollback": [{"dropTable": {"tableName": "students"}}],
        }
    }


@pytest.fixture
def add_phone_number() -> dict[str, Any]:
    """Changeset adding the nullable phone_number column."""
    return {
        "changeSet": {
            "id": "add-phone-number",
            "author": "tester",
            "changes": [
                {
                    "addColumn": {
                        "tableName": "students",
                        "columns": [
                            {"column": {"name": "phone_number", "type": "VARCHAR(255)"}}
                        ],
                    }
                }
            ],
            "rollback": [
                {"dropColumn": {"tableName": "students", "columnName": "phone_number"}}
            ],
        }
    }


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'students.db'}"


@pytest.fixture
def db_manager(database_url: str) -> Generator[DatabaseManager, None, None]:
    """Database manager over a temporary SQLite file."""
    manager = DatabaseManager(database_url=database_url)

    yield manager

    manager.close()


@pytest.fixture
def service_config(database_url: str, changelog_root: Path) -> ServiceConfig:
    return ServiceConfig(
        database_url=database_url,
        changelog_root=str(changelog_root),
        changelog_file="master.yaml",
        lock_wait_timeout=0.5,
        lock_poll_interval=0.05,
    )


@pytest.fixture
def make_runner(
    db_manager: DatabaseManager, changelog_root: Path
) -> Callable[..., MigrationRunner]:
    """Build a runner over the temporary database and changelog."""

    def _make(master: str = "master.yaml", lock_timeout: float = 0.5) -> MigrationRunner:
        return MigrationRunner(
            db_manager.engine,
            ChangelogStore(changelog_root, master),
            lock_timeout=lock_timeout,
            lock_poll_interval=0.05,
        )

    return _make
