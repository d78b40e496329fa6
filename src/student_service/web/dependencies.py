"""
FastAPI dependencies for database access.

Sessions are handed out only after the startup migration pass has finished,
so no request ever reads a schema that is still being changed.
"""

from collections.abc import Generator
from typing import cast

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..database.connection import DatabaseManager
from ..database.repository import StudentRepository
from ..utils.logging import LogContext, get_logger
from .exceptions import SchemaNotReadyError

logger = get_logger(__name__, LogContext.WEB)


def get_database_manager(request: Request) -> DatabaseManager:
    """Get the database manager from application state."""
    if not getattr(request.app.state, "schema_ready", False):
        logger.warning("Request received before schema was ready")
        raise SchemaNotReadyError()
    return cast(DatabaseManager, request.app.state.db_manager)


def get_db_session(
    db_manager: DatabaseManager = Depends(get_database_manager),
) -> Generator[Session, None, None]:
    """Get a read-only database session for request handling."""
    session = db_manager.session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def get_student_repository(
    session: Session = Depends(get_db_session),
) -> StudentRepository:
    return StudentRepository(session)
