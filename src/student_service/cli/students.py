"""Student record commands."""

import click

from ..database.repository import StudentRepository
from .utils import (
    error_handler,
    get_db_manager,
    output_json,
    output_table,
    success_message,
    wants_json,
)


def _student_dict(student) -> dict:
    return {
        "id": student.id,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "email": student.email,
        "phone_number": student.phone_number,
    }


@click.group()
def students() -> None:
    """Read and add student records."""
    pass


@students.command("list")
@click.pass_context
@error_handler
def list_students(ctx: click.Context) -> None:
    """List every student."""
    with get_db_manager(ctx).get_session() as session:
        records = [_student_dict(s) for s in StudentRepository(session).find_all()]

    if wants_json(ctx):
        output_json(records)
        return

    output_table(
        ["ID", "First name", "Last name", "Email", "Phone"],
        [
            [r["id"], r["first_name"], r["last_name"], r["email"], r["phone_number"] or ""]
            for r in records
        ],
    )


@students.command()
@click.argument("first_name")
@click.argument("last_name")
@click.argument("email")
@click.option("--phone", help="Phone number")
@click.pass_context
@error_handler
def add(
    ctx: click.Context, first_name: str, last_name: str, email: str, phone: str | None
) -> None:
    """Add a student."""
    with get_db_manager(ctx).get_session() as session:
        record = _student_dict(
            StudentRepository(session).create(first_name, last_name, email, phone)
        )

    if wants_json(ctx):
        output_json(record)
    else:
        success_message(f"Added student {record['id']}: {first_name} {last_name}")
