"""Unit tests for the SQL dialect targets."""

import pytest

from changeforge.dialects import ClickHouseTarget, GenericSqlTarget, format_literal, get_target
from changeforge.exceptions import StatementNotSupportedError
from changeforge.statements import (
    AddColumnStatement,
    CreateIndexStatement,
    CreateTableStatement,
    DropColumnStatement,
    DropIndexStatement,
    DropTableStatement,
    RawSqlStatement,
    RenameColumnStatement,
    RenameTableStatement,
    SqlStatement,
)
from changeforge.structure import ColumnConfig

PERSON_COLUMNS = (
    ColumnConfig("id", "int", nullable=False, primary_key=True),
    ColumnConfig("name", "varchar(100)"),
    ColumnConfig("active", "boolean", default_value=True),
)


@pytest.mark.parametrize("statement, expected", [
    (CreateTableStatement("person", PERSON_COLUMNS),
     "CREATE TABLE person (id INT NOT NULL, name VARCHAR(100), active BOOLEAN DEFAULT TRUE, PRIMARY KEY (id))"),
    (DropTableStatement("person"), "DROP TABLE person"),
    (DropTableStatement("person", cascade=True), "DROP TABLE person CASCADE"),
    (RenameTableStatement("person", "people"), "ALTER TABLE person RENAME TO people"),
    (AddColumnStatement("person", ColumnConfig("age", "int")), "ALTER TABLE person ADD COLUMN age INT"),
    (AddColumnStatement("person", ColumnConfig("age", "int"), schema_name="hr"),
     "ALTER TABLE hr.person ADD COLUMN age INT"),
    (AddColumnStatement("person", ColumnConfig("code", "string(50)")), "ALTER TABLE person ADD COLUMN code VARCHAR(50)"),
    (AddColumnStatement("person", ColumnConfig("note", "string")), "ALTER TABLE person ADD COLUMN note VARCHAR(255)"),
    (DropColumnStatement("person", "age"), "ALTER TABLE person DROP COLUMN age"),
    (RenameColumnStatement("person", "age", "years"), "ALTER TABLE person RENAME COLUMN age TO years"),
    (CreateIndexStatement("idx_age", "person", ("age",)), "CREATE INDEX idx_age ON person (age)"),
    (CreateIndexStatement("uq_name", "person", ("name", "age"), unique=True),
     "CREATE UNIQUE INDEX uq_name ON person (name, age)"),
    (DropIndexStatement("idx_age", "person"), "DROP INDEX idx_age"),
    (RawSqlStatement("SELECT 1"), "SELECT 1"),
])
def test_generic_rendering(statement, expected):
    assert GenericSqlTarget().render(statement) == expected


@pytest.mark.parametrize("statement, expected", [
    (CreateTableStatement("person", PERSON_COLUMNS),
     "CREATE TABLE person (id Int32, name Nullable(String), active Nullable(Bool) DEFAULT TRUE) "
     "ENGINE = MergeTree() ORDER BY (id)"),
    (CreateTableStatement("events", (ColumnConfig("payload", "text", nullable=False),), remarks="raw events"),
     "CREATE TABLE events (payload String) ENGINE = MergeTree() ORDER BY tuple() COMMENT 'raw events'"),
    (RenameTableStatement("person", "people", schema_name="hr"), "RENAME TABLE hr.person TO hr.people"),
    (AddColumnStatement("person", ColumnConfig("age", "int")),
     "ALTER TABLE person ADD COLUMN age Nullable(Int32)"),
    (AddColumnStatement("person", ColumnConfig("tags", "Array(String)", nullable=False)),
     "ALTER TABLE person ADD COLUMN tags Array(String)"),
    (AddColumnStatement("person", ColumnConfig("amount", "decimal(10, 2)", nullable=False)),
     "ALTER TABLE person ADD COLUMN amount Decimal(10, 2)"),
    (CreateIndexStatement("idx_age", "person", ("age",)),
     "ALTER TABLE person ADD INDEX idx_age (age) TYPE minmax GRANULARITY 1"),
    (DropIndexStatement("idx_age", "person"), "ALTER TABLE person DROP INDEX idx_age"),
])
def test_clickhouse_rendering(statement, expected):
    assert ClickHouseTarget().render(statement) == expected


@pytest.mark.parametrize("statement", [
    CreateIndexStatement("uq", "person", ("email",), unique=True),
    DropTableStatement("person", cascade=True),
    AddColumnStatement("person", ColumnConfig("amount", "decimal")),
])
def test_clickhouse_rejects_inexpressible_statements(statement):
    with pytest.raises(StatementNotSupportedError) as excinfo:
        ClickHouseTarget().render(statement)
    assert excinfo.value.target_name == "clickhouse"


def test_unknown_statement_type_is_unsupported():
    class VacuumStatement(SqlStatement):
        pass

    target = GenericSqlTarget()
    assert target.supports(VacuumStatement()) is False
    with pytest.raises(StatementNotSupportedError):
        target.render(VacuumStatement())


@pytest.mark.parametrize("value, expected", [
    (None, "NULL"),
    (True, "TRUE"),
    (42, "42"),
    (1.5, "1.5"),
    ("O'Brien", "'O''Brien'"),
])
def test_format_literal(value, expected):
    assert format_literal(value) == expected


def test_get_target():
    assert isinstance(get_target("generic"), GenericSqlTarget)
    assert isinstance(get_target("ClickHouse"), ClickHouseTarget)
    with pytest.raises(ValueError):
        get_target("oracle")
