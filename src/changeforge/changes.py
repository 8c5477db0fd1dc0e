# src/changeforge/changes.py
"""
Built-in change kinds.

Structural changes with a clean inverse declare it through `create_inverses()`.
Destructive changes (drop table/column/index) have none and cannot be rolled
back. SQL changes roll back through explicitly supplied rollback SQL.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Set

from .change import Change
from .exceptions import SetupError
from .statements import (
    AddColumnStatement,
    CreateIndexStatement,
    CreateTableStatement,
    DropColumnStatement,
    DropIndexStatement,
    DropTableStatement,
    RawSqlStatement,
    RenameColumnStatement,
    RenameTableStatement,
    StatementSet,
)
from .structure import Column, ColumnConfig, DatabaseObject, Index, Table
from .util.templating import render_sql

logger = logging.getLogger(__name__)


def _columns_from_params(raw_columns) -> List[ColumnConfig]:
    """
    Builds column definitions from changelog entries.

    Raises:
        SetupError: If `raw_columns` is not a list of column mappings.
    """
    if raw_columns is None:
        return []
    if not isinstance(raw_columns, (list, tuple)):
        raise SetupError(f"'columns' must be a list of column definitions, got {raw_columns!r}")
    columns = []
    for position, entry in enumerate(raw_columns):
        if isinstance(entry, ColumnConfig):
            columns.append(entry)
        elif isinstance(entry, dict):
            columns.append(ColumnConfig.from_params(entry))
        else:
            raise SetupError(f"column #{position + 1} must be a mapping with 'name' and 'type', got {entry!r}")
    return columns


def _check_columns(columns: List[ColumnConfig]) -> List[str]:
    problems = []
    seen = set()
    for position, column in enumerate(columns):
        if not column.name:
            problems.append(f"column #{position + 1} is missing 'name'")
            continue
        if not column.type:
            problems.append(f"column '{column.name}' is missing 'type'")
        if column.name in seen:
            problems.append(f"column '{column.name}' is declared more than once")
        seen.add(column.name)
    return problems


def _required(change: Change, *names: str) -> List[str]:
    return [f"'{name}' is required" for name in names if not getattr(change, name)]


class CreateTableChange(Change):
    change_name = "createTable"
    tag_name = "create_table"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "columns", "remarks")

    def __init__(self, table_name: str = None, columns: List[ColumnConfig] = None,
                 schema_name: Optional[str] = None, remarks: Optional[str] = None):
        super().__init__()
        self.table_name = table_name
        self.columns = _columns_from_params(columns)
        self.schema_name = schema_name
        self.remarks = remarks

    def validate(self):
        problems = _required(self, "table_name")
        if not self.columns:
            problems.append("at least one column is required")
        return problems + _check_columns(self.columns)

    def build_statements(self):
        return [CreateTableStatement(self.table_name, tuple(self.columns), self.schema_name, self.remarks)]

    def create_inverses(self):
        return [DropTableChange(table_name=self.table_name, schema_name=self.schema_name)]

    def affected_objects(self) -> Set[DatabaseObject]:
        table = Table(self.table_name, self.schema_name)
        return {table} | {Column(c.name, table) for c in self.columns}

    def confirmation_message(self):
        return f"Table {self.table_name} created"


class DropTableChange(Change):
    change_name = "dropTable"
    tag_name = "drop_table"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "cascade")

    def __init__(self, table_name: str = None, schema_name: Optional[str] = None, cascade: bool = False):
        super().__init__()
        self.table_name = table_name
        self.schema_name = schema_name
        self.cascade = bool(cascade)

    def validate(self):
        return _required(self, "table_name")

    def build_statements(self):
        return [DropTableStatement(self.table_name, self.schema_name, self.cascade)]

    def affected_objects(self):
        return {Table(self.table_name, self.schema_name)}

    def confirmation_message(self):
        return f"Table {self.table_name} dropped"


class RenameTableChange(Change):
    change_name = "renameTable"
    tag_name = "rename_table"
    SERIALIZED_FIELDS = ("schema_name", "old_table_name", "new_table_name")

    def __init__(self, old_table_name: str = None, new_table_name: str = None,
                 schema_name: Optional[str] = None):
        super().__init__()
        self.old_table_name = old_table_name
        self.new_table_name = new_table_name
        self.schema_name = schema_name

    def validate(self):
        problems = _required(self, "old_table_name", "new_table_name")
        if not problems and self.old_table_name == self.new_table_name:
            problems.append("'old_table_name' and 'new_table_name' are identical")
        return problems

    def build_statements(self):
        return [RenameTableStatement(self.old_table_name, self.new_table_name, self.schema_name)]

    def create_inverses(self):
        return [RenameTableChange(old_table_name=self.new_table_name,
                                  new_table_name=self.old_table_name,
                                  schema_name=self.schema_name)]

    def affected_objects(self):
        return {Table(self.old_table_name, self.schema_name), Table(self.new_table_name, self.schema_name)}

    def confirmation_message(self):
        return f"Table {self.old_table_name} renamed to {self.new_table_name}"


class AddColumnChange(Change):
    change_name = "addColumn"
    tag_name = "add_column"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "columns")

    def __init__(self, table_name: str = None, columns: List[ColumnConfig] = None,
                 schema_name: Optional[str] = None):
        super().__init__()
        self.table_name = table_name
        self.columns = _columns_from_params(columns)
        self.schema_name = schema_name

    def validate(self):
        problems = _required(self, "table_name")
        if not self.columns:
            problems.append("at least one column is required")
        problems.extend(_check_columns(self.columns))
        for column in self.columns:
            if column.primary_key:
                problems.append(f"column '{column.name}' cannot be added as a primary key")
        return problems

    def build_statements(self):
        return [AddColumnStatement(self.table_name, column, self.schema_name) for column in self.columns]

    def create_inverses(self):
        return [DropColumnChange(table_name=self.table_name, column_name=column.name,
                                 schema_name=self.schema_name)
                for column in self.columns]

    def affected_objects(self):
        table = Table(self.table_name, self.schema_name)
        return {Column(c.name, table) for c in self.columns}

    def confirmation_message(self):
        names = ", ".join(f"{c.name}({c.type})" for c in self.columns)
        return f"Columns {names} added to {self.table_name}"


class DropColumnChange(Change):
    change_name = "dropColumn"
    tag_name = "drop_column"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "column_name")

    def __init__(self, table_name: str = None, column_name: str = None, schema_name: Optional[str] = None):
        super().__init__()
        self.table_name = table_name
        self.column_name = column_name
        self.schema_name = schema_name

    def validate(self):
        return _required(self, "table_name", "column_name")

    def build_statements(self):
        return [DropColumnStatement(self.table_name, self.column_name, self.schema_name)]

    def affected_objects(self):
        return {Column(self.column_name, Table(self.table_name, self.schema_name))}

    def confirmation_message(self):
        return f"Column {self.table_name}.{self.column_name} dropped"


class RenameColumnChange(Change):
    change_name = "renameColumn"
    tag_name = "rename_column"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "old_column_name", "new_column_name")

    def __init__(self, table_name: str = None, old_column_name: str = None,
                 new_column_name: str = None, schema_name: Optional[str] = None):
        super().__init__()
        self.table_name = table_name
        self.old_column_name = old_column_name
        self.new_column_name = new_column_name
        self.schema_name = schema_name

    def validate(self):
        problems = _required(self, "table_name", "old_column_name", "new_column_name")
        if not problems and self.old_column_name == self.new_column_name:
            problems.append("'old_column_name' and 'new_column_name' are identical")
        return problems

    def build_statements(self):
        return [RenameColumnStatement(self.table_name, self.old_column_name,
                                      self.new_column_name, self.schema_name)]

    def create_inverses(self):
        return [RenameColumnChange(table_name=self.table_name,
                                   old_column_name=self.new_column_name,
                                   new_column_name=self.old_column_name,
                                   schema_name=self.schema_name)]

    def affected_objects(self):
        table = Table(self.table_name, self.schema_name)
        return {Column(self.old_column_name, table), Column(self.new_column_name, table)}

    def confirmation_message(self):
        return f"Column {self.table_name}.{self.old_column_name} renamed to {self.new_column_name}"


class CreateIndexChange(Change):
    change_name = "createIndex"
    tag_name = "create_index"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "index_name", "columns", "unique")

    def __init__(self, index_name: str = None, table_name: str = None, columns: List[str] = None,
                 unique: bool = False, schema_name: Optional[str] = None):
        super().__init__()
        self.index_name = index_name
        self.table_name = table_name
        # Accept both plain names and column entries ({"name": ...})
        if isinstance(columns, (list, tuple)):
            columns = [c.get("name") if isinstance(c, dict) else c for c in columns]
        self.columns = columns if columns is not None else []
        self.unique = bool(unique)
        self.schema_name = schema_name

    def validate(self):
        problems = _required(self, "index_name", "table_name")
        if not isinstance(self.columns, list):
            problems.append(f"'columns' must be a list of column names, got {self.columns!r}")
            return problems
        invalid = [f"index column #{position + 1} must be a column name, got {name!r}"
                   for position, name in enumerate(self.columns)
                   if not isinstance(name, str) or not name]
        if invalid:
            return problems + invalid
        if not self.columns:
            problems.append("at least one column is required")
        if len(set(self.columns)) != len(self.columns):
            problems.append("index columns must be distinct")
        return problems

    def build_statements(self):
        return [CreateIndexStatement(self.index_name, self.table_name, tuple(self.columns),
                                     self.unique, self.schema_name)]

    def create_inverses(self):
        return [DropIndexChange(index_name=self.index_name, table_name=self.table_name,
                                schema_name=self.schema_name)]

    def affected_objects(self):
        table = Table(self.table_name, self.schema_name)
        objects: Set[DatabaseObject] = {Index(self.index_name, table, tuple(self.columns))}
        objects.update(Column(name, table) for name in self.columns)
        return objects

    def confirmation_message(self):
        return f"Index {self.index_name} created on {self.table_name}({', '.join(self.columns)})"


class DropIndexChange(Change):
    change_name = "dropIndex"
    tag_name = "drop_index"
    SERIALIZED_FIELDS = ("schema_name", "table_name", "index_name")

    def __init__(self, index_name: str = None, table_name: str = None, schema_name: Optional[str] = None):
        super().__init__()
        self.index_name = index_name
        self.table_name = table_name
        self.schema_name = schema_name

    def validate(self):
        return _required(self, "index_name", "table_name")

    def build_statements(self):
        return [DropIndexStatement(self.index_name, self.table_name, self.schema_name)]

    def affected_objects(self):
        return {Index(self.index_name, Table(self.table_name, self.schema_name))}

    def confirmation_message(self):
        return f"Index {self.index_name} dropped"


def split_sql(sql: str, end_delimiter: str = ";", split_statements: bool = True) -> List[str]:
    """
    Splits an SQL script into statements on `end_delimiter`.

    Empty statements and surrounding whitespace are dropped. With
    `split_statements` False the whole script is one statement.
    """
    if not sql:
        return []
    if not split_statements or not end_delimiter:
        stripped = sql.strip()
        return [stripped] if stripped else []
    return [part.strip() for part in sql.split(end_delimiter) if part.strip()]


class RawSqlChange(Change):
    """
    Runs literal SQL. Rolls back only when `rollback_sql` is supplied.
    """
    change_name = "sql"
    tag_name = "sql"
    SERIALIZED_FIELDS = ("sql", "rollback_sql", "split_statements", "end_delimiter", "comment")

    def __init__(self, sql: str = None, rollback_sql: Optional[str] = None, split_statements: bool = True,
                 end_delimiter: str = ";", comment: Optional[str] = None):
        super().__init__()
        self.sql = sql
        self.rollback_sql = rollback_sql
        self.split_statements = bool(split_statements)
        self.end_delimiter = end_delimiter
        self.comment = comment

    def validate(self):
        problems = []
        if not split_sql(self.sql, self.end_delimiter, self.split_statements):
            problems.append("'sql' must contain at least one statement")
        return problems

    def build_statements(self):
        return [RawSqlStatement(s) for s in split_sql(self.sql, self.end_delimiter, self.split_statements)]

    def has_custom_rollback(self):
        return bool(split_sql(self.rollback_sql, self.end_delimiter, self.split_statements))

    def generate_custom_rollback(self, target):
        statements = split_sql(self.rollback_sql, self.end_delimiter, self.split_statements)
        return StatementSet(target.render(RawSqlStatement(s)) for s in statements)

    def affected_objects(self):
        # Literal SQL is opaque
        return set()

    def confirmation_message(self):
        return self.comment or "Custom SQL executed"


class SqlFileChange(RawSqlChange):
    """
    Runs SQL read from a Jinja2 template file, rendered with the changelog variables.

    The rendered text is part of the checksum, so editing the file after it
    was applied is reported as drift.
    """
    change_name = "sqlFile"
    tag_name = "sql_file"
    SERIALIZED_FIELDS = ("path", "sql", "rollback_path", "rollback_sql", "split_statements", "end_delimiter")

    def __init__(self, path: str = None, rollback_path: Optional[str] = None, split_statements: bool = True,
                 end_delimiter: str = ";", base_dir: Optional[str] = None,
                 variables: Optional[Dict[str, Any]] = None, macros_dir: Optional[str] = None):
        super().__init__(sql=None, rollback_sql=None, split_statements=split_statements,
                         end_delimiter=end_delimiter)
        self.path = path
        self.rollback_path = rollback_path
        self.base_dir = base_dir
        self.variables = variables or {}
        self.macros_dir = macros_dir

    @classmethod
    def from_params(cls, params, **context):
        return cls(base_dir=context.get("base_dir"), variables=context.get("variables"),
                   macros_dir=context.get("macros_dir"), **params)

    def _resolve(self, path: str) -> str:
        if self.base_dir and not os.path.isabs(path):
            return os.path.join(self.base_dir, path)
        return path

    def _render(self, path: str) -> str:
        full_path = self._resolve(path)
        if not os.path.isfile(full_path):
            raise FileNotFoundError(f"SQL file not found: {full_path}")
        return render_sql(os.path.abspath(full_path), self.variables, macros_dir=self.macros_dir)

    def validate(self):
        if not self.path:
            return ["'path' is required"]
        try:
            self.sql = self._render(self.path)
            if self.rollback_path:
                self.rollback_sql = self._render(self.rollback_path)
        except Exception as e:
            return [f"could not load SQL file: {e}"]
        return super().validate()

    def to_dict(self):
        params = {"path": self.path}
        if self.rollback_path:
            params["rollback_path"] = self.rollback_path
        if not self.split_statements:
            params["split_statements"] = False
        if self.end_delimiter != ";":
            params["end_delimiter"] = self.end_delimiter
        return {self.tag_name: params}

    def confirmation_message(self):
        return f"SQL in file {self.path} executed"
