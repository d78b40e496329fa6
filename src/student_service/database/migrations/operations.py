"""Schema change operations that a changeset is built from.

Each operation is parsed from one changelog entry such as::

    - addColumn:
        tableName: students
        columns:
          - column:
              name: phone_number
              type: VARCHAR(255)

and executes against an open SQLAlchemy connection. Operations never commit;
the runner owns the transaction.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Connection
from sqlalchemy.schema import CreateColumn
from sqlalchemy.types import CHAR, TypeEngine

from .exceptions import MalformedChangelog

_TYPE_PATTERN = re.compile(
    r"^\s*(?P<name>[A-Za-z]+)\s*(?:\(\s*(?P<p>\d+)\s*(?:,\s*(?P<s>\d+)\s*)?\))?\s*$"
)


def parse_column_type(type_name: str, source: str | None = None) -> TypeEngine:
    """Translate a changelog column type such as ``VARCHAR(255)`` into a SQLAlchemy type."""
    match = _TYPE_PATTERN.match(str(type_name))
    if not match:
        raise MalformedChangelog(f"Unsupported column type '{type_name}'", source)

    name = match.group("name").upper()
    precision = int(match.group("p")) if match.group("p") else None
    scale = int(match.group("s")) if match.group("s") else None

    if name == "BIGINT":
        return BigInteger()
    if name in ("INT", "INTEGER"):
        return Integer()
    if name == "SMALLINT":
        return SmallInteger()
    if name == "VARCHAR":
        return String(precision)
    if name == "CHAR":
        return CHAR(precision)
    if name in ("TEXT", "CLOB"):
        return Text()
    if name in ("BOOLEAN", "BOOL"):
        return Boolean()
    if name == "DATE":
        return Date()
    if name in ("DATETIME", "TIMESTAMP"):
        return DateTime()
    if name in ("DECIMAL", "NUMERIC"):
        return Numeric(precision, scale)
    if name in ("FLOAT", "DOUBLE", "REAL"):
        return Float()

    raise MalformedChangelog(f"Unsupported column type '{type_name}'", source)


def _require(body: dict[str, Any], key: str, operation: str, source: str | None) -> Any:
    value = body.get(key)
    if value is None or value == "":
        raise MalformedChangelog(f"{operation} requires '{key}'", source)
    return value


def _unwrap_list(
    items: Any, key: str, operation: str, source: str | None
) -> list[dict[str, Any]]:
    """Unwrap ``[{column: {...}}, ...]`` into ``[{...}, ...]``."""
    if not isinstance(items, list) or not items:
        raise MalformedChangelog(f"{operation} requires a non-empty list of {key}s", source)

    unwrapped = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get(key), dict):
            raise MalformedChangelog(f"{operation}: expected '{key}' entries", source)
        unwrapped.append(item[key])
    return unwrapped


def _quote(connection: Connection, name: str) -> str:
    return connection.dialect.identifier_preparer.quote(name)


@dataclass(frozen=True)
class ColumnSpec:
    """A column definition as written in a changelog."""

    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    auto_increment: bool = False
    default_value: str | None = None

    @classmethod
    def from_dict(cls, body: dict[str, Any], source: str | None = None) -> "ColumnSpec":
        name = _require(body, "name", "column", source)
        type_name = _require(body, "type", "column", source)
        parse_column_type(type_name, source)

        constraints = body.get("constraints") or {}
        if not isinstance(constraints, dict):
            raise MalformedChangelog(
                f"column '{name}' constraints must be a mapping", source
            )
        primary_key = bool(constraints.get("primaryKey", False))
        nullable = bool(constraints.get("nullable", not primary_key))
        default = body.get("defaultValue")

        return cls(
            name=str(name),
            type=str(type_name),
            nullable=nullable and not primary_key,
            primary_key=primary_key,
            unique=bool(constraints.get("unique", False)),
            auto_increment=bool(body.get("autoIncrement", False)),
            default_value=None if default is None else str(default),
        )

    def to_column(self) -> Column:
        column_type = parse_column_type(self.type)
        if self.auto_increment and isinstance(column_type, BigInteger):
            # SQLite only generates rowid aliases for INTEGER PRIMARY KEY
            column_type = BigInteger().with_variant(Integer(), "sqlite")

        kwargs: dict[str, Any] = {
            "nullable": self.nullable,
            "primary_key": self.primary_key,
            "unique": self.unique or None,
            "autoincrement": True if self.auto_increment else "auto",
        }
        if self.default_value is not None:
            kwargs["server_default"] = text(_literal(self.default_value))

        return Column(self.name, column_type, **kwargs)


def _literal(value: str) -> str:
    if re.fullmatch(r"-?\d+(\.\d+)?", value) or value.upper() in ("TRUE", "FALSE", "NULL"):
        return value
    return "'" + value.replace("'", "''") + "'"


class Operation(ABC):
    """A single schema change inside a changeset."""

    name: ClassVar[str]

    @classmethod
    @abstractmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "Operation":
        """Build the operation from its changelog body."""

    @abstractmethod
    def execute(self, connection: Connection) -> None:
        """Run the operation on an open connection."""

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable summary used in the ledger description."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


class CreateTable(Operation):
    name = "createTable"

    def __init__(self, table_name: str, columns: list[ColumnSpec]) -> None:
        self.table_name = table_name
        self.columns = columns

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "CreateTable":
        table_name = _require(body, "tableName", cls.name, source)
        columns = [
            ColumnSpec.from_dict(column, source)
            for column in _unwrap_list(body.get("columns"), "column", cls.name, source)
        ]
        return cls(str(table_name), columns)

    def execute(self, connection: Connection) -> None:
        table = Table(
            self.table_name, MetaData(), *(spec.to_column() for spec in self.columns)
        )
        table.create(connection)

    def describe(self) -> str:
        return f"createTable tableName={self.table_name}"


class DropTable(Operation):
    name = "dropTable"

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "DropTable":
        return cls(str(_require(body, "tableName", cls.name, source)))

    def execute(self, connection: Connection) -> None:
        connection.execute(text(f"DROP TABLE {_quote(connection, self.table_name)}"))

    def describe(self) -> str:
        return f"dropTable tableName={self.table_name}"


class AddColumn(Operation):
    name = "addColumn"

    def __init__(self, table_name: str, columns: list[ColumnSpec]) -> None:
        self.table_name = table_name
        self.columns = columns

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "AddColumn":
        table_name = _require(body, "tableName", cls.name, source)
        columns = [
            ColumnSpec.from_dict(column, source)
            for column in _unwrap_list(body.get("columns"), "column", cls.name, source)
        ]
        for spec in columns:
            if spec.primary_key or spec.auto_increment:
                raise MalformedChangelog(
                    f"addColumn cannot add primary key column '{spec.name}'", source
                )
        return cls(str(table_name), columns)

    def execute(self, connection: Connection) -> None:
        table = _quote(connection, self.table_name)
        for spec in self.columns:
            column = spec.to_column()
            # Attached to a throwaway table so the DDL compiler can render it
            Table(self.table_name, MetaData(), column)
            definition = CreateColumn(column).compile(dialect=connection.dialect)
            connection.execute(text(f"ALTER TABLE {table} ADD COLUMN {definition}"))

            if spec.unique:
                index_name = f"uq_{self.table_name}_{spec.name}"
                connection.execute(
                    text(
                        f"CREATE UNIQUE INDEX {_quote(connection, index_name)} "
                        f"ON {table} ({_quote(connection, spec.name)})"
                    )
                )

    def describe(self) -> str:
        names = ", ".join(spec.name for spec in self.columns)
        return f"addColumn tableName={self.table_name} columns={names}"


class DropColumn(Operation):
    name = "dropColumn"

    def __init__(self, table_name: str, column_name: str) -> None:
        self.table_name = table_name
        self.column_name = column_name

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "DropColumn":
        return cls(
            str(_require(body, "tableName", cls.name, source)),
            str(_require(body, "columnName", cls.name, source)),
        )

    def execute(self, connection: Connection) -> None:
        connection.execute(
            text(
                f"ALTER TABLE {_quote(connection, self.table_name)} "
                f"DROP COLUMN {_quote(connection, self.column_name)}"
            )
        )

    def describe(self) -> str:
        return f"dropColumn tableName={self.table_name} columnName={self.column_name}"


class RenameColumn(Operation):
    name = "renameColumn"

    def __init__(self, table_name: str, old_name: str, new_name: str) -> None:
        self.table_name = table_name
        self.old_name = old_name
        self.new_name = new_name

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "RenameColumn":
        return cls(
            str(_require(body, "tableName", cls.name, source)),
            str(_require(body, "oldColumnName", cls.name, source)),
            str(_require(body, "newColumnName", cls.name, source)),
        )

    def execute(self, connection: Connection) -> None:
        connection.execute(
            text(
                f"ALTER TABLE {_quote(connection, self.table_name)} "
                f"RENAME COLUMN {_quote(connection, self.old_name)} "
                f"TO {_quote(connection, self.new_name)}"
            )
        )

    def describe(self) -> str:
        return (
            f"renameColumn tableName={self.table_name} "
            f"{self.old_name}->{self.new_name}"
        )


class CreateIndex(Operation):
    name = "createIndex"

    def __init__(
        self, index_name: str, table_name: str, columns: list[str], unique: bool
    ) -> None:
        self.index_name = index_name
        self.table_name = table_name
        self.columns = columns
        self.unique = unique

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "CreateIndex":
        columns = [
            str(_require(column, "name", cls.name, source))
            for column in _unwrap_list(body.get("columns"), "column", cls.name, source)
        ]
        return cls(
            str(_require(body, "indexName", cls.name, source)),
            str(_require(body, "tableName", cls.name, source)),
            columns,
            bool(body.get("unique", False)),
        )

    def execute(self, connection: Connection) -> None:
        unique = "UNIQUE " if self.unique else ""
        columns = ", ".join(_quote(connection, column) for column in self.columns)
        connection.execute(
            text(
                f"CREATE {unique}INDEX {_quote(connection, self.index_name)} "
                f"ON {_quote(connection, self.table_name)} ({columns})"
            )
        )

    def describe(self) -> str:
        return f"createIndex indexName={self.index_name} tableName={self.table_name}"


class DropIndex(Operation):
    name = "dropIndex"

    def __init__(self, index_name: str) -> None:
        self.index_name = index_name

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "DropIndex":
        return cls(str(_require(body, "indexName", cls.name, source)))

    def execute(self, connection: Connection) -> None:
        connection.execute(text(f"DROP INDEX {_quote(connection, self.index_name)}"))

    def describe(self) -> str:
        return f"dropIndex indexName={self.index_name}"


class RawSql(Operation):
    name = "sql"

    def __init__(self, sql: str, split_statements: bool = True) -> None:
        self.sql = sql
        self.split_statements = split_statements

    @classmethod
    def from_dict(cls, body: Any, source: str | None = None) -> "RawSql":
        if isinstance(body, str):
            return cls(body)
        if not isinstance(body, dict):
            raise MalformedChangelog("sql requires a statement", source)
        return cls(
            str(_require(body, "sql", cls.name, source)),
            bool(body.get("splitStatements", True)),
        )

    def statements(self) -> list[str]:
        if not self.split_statements:
            return [self.sql.strip()]
        return [part.strip() for part in self.sql.split(";") if part.strip()]

    def execute(self, connection: Connection) -> None:
        for statement in self.statements():
            connection.exec_driver_sql(statement)

    def describe(self) -> str:
        return "sql"


OPERATIONS: dict[str, type[Operation]] = {
    operation.name: operation
    for operation in (
        CreateTable,
        DropTable,
        AddColumn,
        DropColumn,
        RenameColumn,
        CreateIndex,
        DropIndex,
        RawSql,
    )
}


def parse_operation(entry: Any, source: str | None = None) -> Operation:
    """Parse one ``{operationName: body}`` changelog entry."""
    if not isinstance(entry, dict) or len(entry) != 1:
        raise MalformedChangelog(
            "Each change must be a mapping with exactly one operation", source
        )

    name, body = next(iter(entry.items()))
    operation_class = OPERATIONS.get(name)
    if operation_class is None:
        raise MalformedChangelog(f"Unknown operation '{name}'", source)

    if operation_class is not RawSql and not isinstance(body, dict):
        raise MalformedChangelog(f"{name} requires a mapping body", source)

    return operation_class.from_dict(body, source)
