"""Checks of the entity mappings against the live database schema."""

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from ..utils.logging import LogContext, get_logger
from .migrations.exceptions import SchemaMismatch
from .models import Base

logger = get_logger(__name__, LogContext.DATABASE)


def get_model_classes() -> list[type]:
    """Get all mapped entity classes."""
    return [mapper.class_ for mapper in Base.registry.mappers]


def find_schema_problems(engine: Engine) -> list[str]:
    """Compare every mapped column with the reflected database table.

    Checks that each mapped table and column exists and that nullability
    and declared uniqueness agree. Columns present in the database but not mapped are ignored.
    """
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())
    problems: list[str] = []

    for model in get_model_classes():
        table = model.__table__
        if table.name not in existing_tables:
            problems.append(f"table '{table.name}' does not exist")
            continue

        live_columns = {column["name"]: column for column in inspector.get_columns(table.name)}
        unique_sets = {
            tuple(constraint["column_names"])
            for constraint in inspector.get_unique_constraints(table.name)
        } | {
            tuple(index["column_names"])
            for index in inspector.get_indexes(table.name)
            if index.get("unique")
        }

        for column in table.columns:
            live = live_columns.get(column.name)
            if live is None:
                problems.append(f"column '{table.name}.{column.name}' does not exist")
                continue
            if column.primary_key:
                continue
            if bool(live["nullable"]) != bool(column.nullable):
                expected = "nullable" if column.nullable else "NOT NULL"
                problems.append(f"column '{table.name}.{column.name}' should be {expected}")
            if column.unique and (column.name,) not in unique_sets:
                problems.append(f"column '{table.name}.{column.name}' should be unique")

    return problems


def validate_schema(engine: Engine) -> None:
    """Raise ``SchemaMismatch`` if the mappings disagree with the database.

    Raises:
        SchemaMismatch: Listing every disagreement found.
    """
    problems = find_schema_problems(engine)
    if problems:
        raise SchemaMismatch(problems)
    logger.info("Entity mappings match the database schema", tables=len(get_model_classes()))
