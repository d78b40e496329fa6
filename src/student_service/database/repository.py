"""Data access for student records."""

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..utils.logging import DatabaseError, LogContext, get_logger
from .models import Student

logger = get_logger(__name__, LogContext.DATABASE)


class RepositoryError(DatabaseError):
    """Base exception for repository operations."""

    pass


class ValidationError(RepositoryError):
    """Validation error for repository operations."""

    pass


class StorageUnavailable(RepositoryError):
    """The underlying database could not be reached."""

    pass


class StudentRepository:
    """Student operations the application needs, and nothing more."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_all(self) -> list[Student]:
        """Get every student, ordered by ID.

        Returns:
            List of students.

        Raises:
            StorageUnavailable: If the database cannot be reached. Not retried.
        """
        try:
            return list(self.session.scalars(select(Student).order_by(Student.id)))
        except DBAPIError as e:
            logger.error("Failed to read students", exception=e)
            raise StorageUnavailable(
                "Student storage is unavailable", {"operation": "find_all"}
            ) from e

    def create(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone_number: str | None = None,
    ) -> Student:
        """Create a new student.

        Args:
            first_name: Given name.
            last_name: Family name.
            email: Contact email.
            phone_number: Optional phone number.

        Returns:
            Created student.

        Raises:
            ValidationError: If a required field is blank or a constraint fails.
            StorageUnavailable: If the database cannot be reached.
        """
        fields = {"first_name": first_name, "last_name": last_name, "email": email}
        for name, value in fields.items():
            if not value or not value.strip():
                raise ValidationError(f"{name} is required", {"field": name})

        student = Student(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email.strip(),
            phone_number=phone_number.strip() if phone_number else None,
        )

        try:
            self.session.add(student)
            self.session.flush()
        except IntegrityError as e:
            raise ValidationError(f"Student violates a constraint: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error("Failed to create student", exception=e)
            raise StorageUnavailable(
                "Student storage is unavailable", {"operation": "create"}
            ) from e

        return student
