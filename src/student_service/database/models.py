"""SQLAlchemy entity mappings for student-service.

The mappings describe tables owned by the changelog. They are never used to
create or alter tables; ``schema.validate_schema`` checks them against the
migrated database at startup instead.
"""

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all entity mappings."""

    pass


class Student(Base):
    """A student record."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    # Added by the add-phone-number changeset
    phone_number: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, email='{self.email}')>"
