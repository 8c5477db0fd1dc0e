# src/changeforge/dialects.py
"""
Concrete DatabaseTarget implementations.

`GenericSqlTarget` renders ANSI-style DDL understood by most relational
databases (and by SQLite, which the test-suite uses as a live database).
`ClickHouseTarget` renders ClickHouse DDL.
"""
import logging
import re
from typing import Any, Dict, Optional

from .database import DatabaseTarget
from .exceptions import StatementNotSupportedError
from .statements import (
    AddColumnStatement,
    CreateIndexStatement,
    CreateTableStatement,
    DropColumnStatement,
    DropIndexStatement,
    DropTableStatement,
    RenameColumnStatement,
    RenameTableStatement,
)
from .structure import ColumnConfig

logger = logging.getLogger(__name__)

# Splits "varchar(255)" into ("varchar", "255")
_TYPE_PATTERN = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_ ]*?)\s*(?:\((.*)\))?\s*$")


def _split_type(type_name: str):
    match = _TYPE_PATTERN.match(type_name or "")
    if not match:
        return None, None
    return match.group(1).lower(), match.group(2)


def format_literal(value: Any) -> str:
    """
    Formats a Python value as an SQL literal.

    Strings are single-quoted with embedded quotes doubled.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


class GenericSqlTarget(DatabaseTarget):
    """Renders ANSI-style DDL."""
    short_name = "generic"

    _TYPES = {
        "int": "INT",
        "integer": "INT",
        "bigint": "BIGINT",
        "smallint": "SMALLINT",
        "bool": "BOOLEAN",
        "boolean": "BOOLEAN",
        "text": "TEXT",
        "string": "VARCHAR(255)",
        "varchar": "VARCHAR",
        "char": "CHAR",
        "datetime": "TIMESTAMP",
        "timestamp": "TIMESTAMP",
        "date": "DATE",
        "float": "FLOAT",
        "double": "DOUBLE PRECISION",
        "decimal": "DECIMAL",
        "uuid": "UUID",
    }

    def _renderers(self):
        return {
            CreateTableStatement: self._create_table,
            DropTableStatement: self._drop_table,
            RenameTableStatement: self._rename_table,
            AddColumnStatement: self._add_column,
            DropColumnStatement: self._drop_column,
            RenameColumnStatement: self._rename_column,
            CreateIndexStatement: self._create_index,
            DropIndexStatement: self._drop_index,
        }

    def qualify(self, name: str, schema_name: Optional[str] = None) -> str:
        return f"{schema_name}.{name}" if schema_name else name

    def column_type(self, type_name: str) -> str:
        base, args = _split_type(type_name)
        if base is None:
            return type_name
        mapped = self._TYPES.get(base, base.upper())
        if args is not None:
            # Declared arguments replace the default ones, e.g. string(50) -> VARCHAR(50)
            return f"{mapped.split('(')[0]}({args})"
        return mapped

    def column_definition(self, column: ColumnConfig) -> str:
        parts = [column.name, self.column_type(column.type)]
        if column.default_value is not None:
            parts.append(f"DEFAULT {format_literal(column.default_value)}")
        if not column.nullable or column.primary_key:
            parts.append("NOT NULL")
        return " ".join(parts)

    def _create_table(self, statement: CreateTableStatement) -> str:
        definitions = [self.column_definition(c) for c in statement.columns]
        primary_key = [c.name for c in statement.columns if c.primary_key]
        if primary_key:
            definitions.append(f"PRIMARY KEY ({', '.join(primary_key)})")
        table = self.qualify(statement.table_name, statement.schema_name)
        return f"CREATE TABLE {table} ({', '.join(definitions)})"

    def _drop_table(self, statement: DropTableStatement) -> str:
        sql = f"DROP TABLE {self.qualify(statement.table_name, statement.schema_name)}"
        if statement.cascade:
            sql += " CASCADE"
        return sql

    def _rename_table(self, statement: RenameTableStatement) -> str:
        return (f"ALTER TABLE {self.qualify(statement.old_table_name, statement.schema_name)} "
                f"RENAME TO {statement.new_table_name}")

    def _add_column(self, statement: AddColumnStatement) -> str:
        return (f"ALTER TABLE {self.qualify(statement.table_name, statement.schema_name)} "
                f"ADD COLUMN {self.column_definition(statement.column)}")

    def _drop_column(self, statement: DropColumnStatement) -> str:
        return (f"ALTER TABLE {self.qualify(statement.table_name, statement.schema_name)} "
                f"DROP COLUMN {statement.column_name}")

    def _rename_column(self, statement: RenameColumnStatement) -> str:
        return (f"ALTER TABLE {self.qualify(statement.table_name, statement.schema_name)} "
                f"RENAME COLUMN {statement.old_column_name} TO {statement.new_column_name}")

    def _create_index(self, statement: CreateIndexStatement) -> str:
        unique = "UNIQUE " if statement.unique else ""
        return (f"CREATE {unique}INDEX {statement.index_name} "
                f"ON {self.qualify(statement.table_name, statement.schema_name)} "
                f"({', '.join(statement.columns)})")

    def _drop_index(self, statement: DropIndexStatement) -> str:
        return f"DROP INDEX {self.qualify(statement.index_name, statement.schema_name)}"


class ClickHouseTarget(GenericSqlTarget):
    """
    Renders ClickHouse DDL.

    Tables are created with the MergeTree engine ordered by their primary key
    columns. Indexes are data-skipping indexes; unique indexes and cascading
    drops cannot be expressed.
    """
    short_name = "clickhouse"

    _TYPES = {
        "int": "Int32",
        "integer": "Int32",
        "bigint": "Int64",
        "smallint": "Int16",
        "bool": "Bool",
        "boolean": "Bool",
        "text": "String",
        "string": "String",
        "varchar": "String",
        "char": "String",
        "datetime": "DateTime",
        "timestamp": "DateTime",
        "date": "Date",
        "float": "Float32",
        "double": "Float64",
        "decimal": "Decimal",
        "uuid": "UUID",
    }

    def __init__(self, engine: str = "MergeTree()", index_type: str = "minmax", granularity: int = 1):
        self.engine = engine
        self.index_type = index_type
        self.granularity = granularity
        super().__init__()

    def column_type(self, type_name: str) -> str:
        base, args = _split_type(type_name)
        if base is None or base not in self._TYPES:
            # ClickHouse type names are case-sensitive, pass unknown ones through
            return type_name
        mapped = self._TYPES[base]
        if mapped == "Decimal":
            if not args:
                raise StatementNotSupportedError(
                    f"ClickHouse Decimal needs a precision, e.g. 'decimal(10, 2)', got '{type_name}'",
                    target_name=self.short_name,
                )
            return f"Decimal({args})"
        return mapped

    def column_definition(self, column: ColumnConfig) -> str:
        type_sql = self.column_type(column.type)
        if column.nullable and not column.primary_key:
            type_sql = f"Nullable({type_sql})"
        parts = [column.name, type_sql]
        if column.default_value is not None:
            parts.append(f"DEFAULT {format_literal(column.default_value)}")
        return " ".join(parts)

    def _create_table(self, statement: CreateTableStatement) -> str:
        definitions = [self.column_definition(c) for c in statement.columns]
        primary_key = [c.name for c in statement.columns if c.primary_key]
        order_by = f"({', '.join(primary_key)})" if primary_key else "tuple()"
        table = self.qualify(statement.table_name, statement.schema_name)
        sql = f"CREATE TABLE {table} ({', '.join(definitions)}) ENGINE = {self.engine} ORDER BY {order_by}"
        if statement.remarks:
            sql += f" COMMENT {format_literal(statement.remarks)}"
        return sql

    def _drop_table(self, statement: DropTableStatement) -> str:
        if statement.cascade:
            raise StatementNotSupportedError(
                "ClickHouse does not support DROP TABLE ... CASCADE",
                statement=statement, target_name=self.short_name,
            )
        return f"DROP TABLE {self.qualify(statement.table_name, statement.schema_name)}"

    def _rename_table(self, statement: RenameTableStatement) -> str:
        return (f"RENAME TABLE {self.qualify(statement.old_table_name, statement.schema_name)} "
                f"TO {self.qualify(statement.new_table_name, statement.schema_name)}")

    def _create_index(self, statement: CreateIndexStatement) -> str:
        if statement.unique:
            raise StatementNotSupportedError(
                f"ClickHouse does not support unique index '{statement.index_name}'",
                statement=statement, target_name=self.short_name,
            )
        return (f"ALTER TABLE {self.qualify(statement.table_name, statement.schema_name)} "
                f"ADD INDEX {statement.index_name} ({', '.join(statement.columns)}) "
                f"TYPE {self.index_type} GRANULARITY {self.granularity}")

    def _drop_index(self, statement: DropIndexStatement) -> str:
        return (f"ALTER TABLE {self.qualify(statement.table_name, statement.schema_name)} "
                f"DROP INDEX {statement.index_name}")


_TARGETS = {
    GenericSqlTarget.short_name: GenericSqlTarget,
    ClickHouseTarget.short_name: ClickHouseTarget,
}


def get_target(name: str) -> DatabaseTarget:
    """
    Returns a new DatabaseTarget for the given dialect name.

    Raises:
        ValueError: If no target is registered under that name.
    """
    target_cls = _TARGETS.get((name or "").lower())
    if target_cls is None:
        logger.error(f"Unknown database dialect: '{name}'. Known dialects: {', '.join(sorted(_TARGETS))}")
        raise ValueError(f"Unknown database dialect: '{name}'")
    return target_cls()
