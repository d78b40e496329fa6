"""Tests for changelog schema operations."""

import pytest
from sqlalchemy import BigInteger, Integer, Numeric, String, inspect, text
from sqlalchemy.types import CHAR

from student_service.database.migrations.changelog import ChangelogStore
from student_service.database.migrations.exceptions import MalformedChangelog
from student_service.database.migrations.operations import (
    AddColumn,
    ColumnSpec,
    CreateIndex,
    CreateTable,
    DropColumn,
    DropIndex,
    DropTable,
    RawSql,
    RenameColumn,
    parse_column_type,
    parse_operation,
)


def _column(name, type_name="VARCHAR(50)", **constraints):
    body = {"name": name, "type": type_name}
    if constraints:
        body["constraints"] = constraints
    return {"column": body}


class TestParseColumnType:
    """Test changelog column type parsing."""

    def test_varchar_length(self):
        column_type = parse_column_type("VARCHAR(255)")
        assert isinstance(column_type, String)
        assert column_type.length == 255

    def test_case_and_whitespace_insensitive(self):
        assert isinstance(parse_column_type(" bigint "), BigInteger)
        assert isinstance(parse_column_type("char( 2 )"), CHAR)

    def test_integer_aliases(self):
        assert isinstance(parse_column_type("INT"), Integer)
        assert isinstance(parse_column_type("INTEGER"), Integer)

    def test_decimal_precision_and_scale(self):
        column_type = parse_column_type("DECIMAL(10, 2)")
        assert isinstance(column_type, Numeric)
        assert column_type.precision == 10
        assert column_type.scale == 2

    @pytest.mark.parametrize("type_name", ["GEOMETRY", "VARCHAR(abc)", "", "INT(1,2,3)"])
    def test_unsupported_type(self, type_name):
        with pytest.raises(MalformedChangelog, match="Unsupported column type"):
            parse_column_type(type_name)


class TestColumnSpec:
    """Test column definitions."""

    def test_defaults(self):
        spec = ColumnSpec.from_dict({"name": "email", "type": "VARCHAR(255)"})

        assert spec.nullable is True
        assert spec.primary_key is False
        assert spec.unique is False
        assert spec.default_value is None

    def test_primary_key_is_never_nullable(self):
        spec = ColumnSpec.from_dict(
            {"name": "id", "type": "BIGINT", "constraints": {"primaryKey": True}}
        )
        assert spec.primary_key is True
        assert spec.nullable is False

    def test_missing_name(self):
        with pytest.raises(MalformedChangelog, match="requires 'name'"):
            ColumnSpec.from_dict({"type": "INT"}, "master.yaml")

    def test_missing_type(self):
        with pytest.raises(MalformedChangelog, match="requires 'type'"):
            ColumnSpec.from_dict({"name": "x"})

    def test_default_value_rendered_as_server_default(self):
        column = ColumnSpec.from_dict(
            {"name": "status", "type": "VARCHAR(10)", "defaultValue": "new"}
        ).to_column()
        assert str(column.server_default.arg) == "'new'"

    def test_constraints_must_be_a_mapping(self):
        with pytest.raises(MalformedChangelog, match="constraints must be a mapping"):
            ColumnSpec.from_dict(
                {"name": "id", "type": "BIGINT", "constraints": [{"nullable": False}]},
                "master.yaml",
            )

    def test_list_constraints_reported_from_changelog(self, changelog_root, write_changelog):
        write_changelog(
            "master.yaml",
            [
                {
                    "changeSet": {
                        "id": "a",
                        "author": "tester",
                        "changes": [
                            {
                                "createTable": {
                                    "tableName": "people",
                                    "columns": [
                                        {
                                            "column": {
                                                "name": "id",
                                                "type": "INT",
                                                "constraints": [{"nullable": False}],
                                            }
                                        }
                                    ],
                                }
                            }
                        ],
                    }
                }
            ],
        )

        with pytest.raises(MalformedChangelog, match="master.yaml::a"):
            ChangelogStore(changelog_root, "master.yaml").load()


class TestParseOperation:
    """Test parsing of change entries."""

    def test_known_operations(self):
        operation = parse_operation({"dropTable": {"tableName": "students"}})
        assert isinstance(operation, DropTable)
        assert operation.table_name == "students"

    def test_unknown_operation(self):
        with pytest.raises(MalformedChangelog, match="Unknown operation 'mergeTables'"):
            parse_operation({"mergeTables": {"tableName": "x"}})

    def test_entry_must_have_one_key(self):
        with pytest.raises(MalformedChangelog, match="exactly one operation"):
            parse_operation({"dropTable": {"tableName": "a"}, "dropIndex": {}})

    def test_body_must_be_mapping(self):
        with pytest.raises(MalformedChangelog, match="requires a mapping body"):
            parse_operation({"dropTable": "students"})

    def test_missing_required_attribute(self):
        with pytest.raises(MalformedChangelog, match="renameColumn requires 'newColumnName'"):
            parse_operation(
                {"renameColumn": {"tableName": "students", "oldColumnName": "email"}}
            )

    def test_create_table_requires_columns(self):
        with pytest.raises(MalformedChangelog, match="non-empty list of columns"):
            parse_operation({"createTable": {"tableName": "students", "columns": []}})

    def test_add_column_rejects_primary_key(self):
        with pytest.raises(MalformedChangelog, match="cannot add primary key"):
            parse_operation(
                {
                    "addColumn": {
                        "tableName": "students",
                        "columns": [_column("id", "BIGINT", primaryKey=True)],
                    }
                }
            )

    def test_sql_as_string(self):
        operation = parse_operation({"sql": "INSERT INTO a VALUES (1); INSERT INTO a VALUES (2)"})
        assert isinstance(operation, RawSql)
        assert operation.statements() == ["INSERT INTO a VALUES (1)", "INSERT INTO a VALUES (2)"]

    def test_sql_without_splitting(self):
        operation = parse_operation({"sql": {"sql": "SELECT 1; ", "splitStatements": False}})
        assert operation.statements() == ["SELECT 1;"]

    def test_describe(self):
        operation = parse_operation(
            {"addColumn": {"tableName": "students", "columns": [_column("phone_number")]}}
        )
        assert operation.describe() == "addColumn tableName=students columns=phone_number"


class TestOperationExecution:
    """Test operations against a real SQLite database."""

    @pytest.fixture
    def engine(self, db_manager):
        return db_manager.engine

    @pytest.fixture
    def people(self, engine):
        operation = CreateTable(
            "people",
            [
                ColumnSpec("id", "BIGINT", nullable=False, primary_key=True, auto_increment=True),
                ColumnSpec("name", "VARCHAR(50)", nullable=False),
            ],
        )
        with engine.begin() as conn:
            operation.execute(conn)
        return "people"

    def _columns(self, engine, table):
        return {column["name"]: column for column in inspect(engine).get_columns(table)}

    def test_create_table(self, engine, people):
        columns = self._columns(engine, people)

        assert set(columns) == {"id", "name"}
        assert columns["name"]["nullable"] is False

    def test_create_table_generates_ids(self, engine, people):
        with engine.begin() as conn:
            conn.execute(text("INSERT INTO people (name) VALUES ('a'), ('b')"))
            ids = conn.execute(text("SELECT id FROM people ORDER BY id")).scalars().all()

        assert ids == [1, 2]

    def test_add_column(self, engine, people):
        operation = AddColumn(
            people,
            [ColumnSpec("nickname", "VARCHAR(20)"), ColumnSpec("code", "CHAR(3)", unique=True)],
        )
        with engine.begin() as conn:
            operation.execute(conn)

        columns = self._columns(engine, people)
        assert columns["nickname"]["nullable"] is True
        indexes = {index["name"]: index for index in inspect(engine).get_indexes(people)}
        assert indexes["uq_people_code"]["unique"]

    def test_rename_and_drop_column(self, engine, people):
        with engine.begin() as conn:
            AddColumn(people, [ColumnSpec("nick", "VARCHAR(20)")]).execute(conn)
            RenameColumn(people, "nick", "nickname").execute(conn)

        assert "nickname" in self._columns(engine, people)

        with engine.begin() as conn:
            DropColumn(people, "nickname").execute(conn)

        assert set(self._columns(engine, people)) == {"id", "name"}

    def test_create_and_drop_index(self, engine, people):
        with engine.begin() as conn:
            CreateIndex("idx_people_name", people, ["name"], unique=False).execute(conn)

        assert [i["name"] for i in inspect(engine).get_indexes(people)] == ["idx_people_name"]

        with engine.begin() as conn:
            DropIndex("idx_people_name").execute(conn)

        assert inspect(engine).get_indexes(people) == []

    def test_raw_sql(self, engine, people):
        with engine.begin() as conn:
            RawSql(
                "INSERT INTO people (name) VALUES ('x'); "
                "INSERT INTO people (name) VALUES ('y')"
            ).execute(conn)
            count = conn.execute(text("SELECT COUNT(*) FROM people")).scalar()

        assert count == 2

    def test_drop_table(self, engine, people):
        with engine.begin() as conn:
            DropTable(people).execute(conn)

        assert people not in inspect(engine).get_table_names()

    def test_ddl_rolls_back_with_transaction(self, engine):
        with pytest.raises(RuntimeError):
            with engine.begin() as conn:
                CreateTable(
                    "scratch", [ColumnSpec("id", "INT", nullable=False, primary_key=True)]
                ).execute(conn)
                raise RuntimeError("abort")

        assert "scratch" not in inspect(engine).get_table_names()
