"""Database models, migrations and data access."""

from .connection import DatabaseManager
from .migrations import (
    ChangelogStore,
    MigrationLedger,
    MigrationRunner,
)
from .models import Base, Student
from .repository import (
    RepositoryError,
    StorageUnavailable,
    StudentRepository,
    ValidationError,
)
from .schema import find_schema_problems, validate_schema

__all__ = [
    # Connection management
    "DatabaseManager",
    # Migrations
    "ChangelogStore",
    "MigrationLedger",
    "MigrationRunner",
    # Models
    "Base",
    "Student",
    # Data access
    "StudentRepository",
    "RepositoryError",
    "StorageUnavailable",
    "ValidationError",
    # Schema checks
    "find_schema_problems",
    "validate_schema",
]
