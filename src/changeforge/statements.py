# src/changeforge/statements.py
"""
Dialect-neutral statements and the rendered StatementSet.

Changes describe what they do with the statement dataclasses below. A
DatabaseTarget turns each of them into SQL for one database product; the
rendered SQL of one generation call is carried by a StatementSet.
"""
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Tuple

from .structure import ColumnConfig


@dataclass(frozen=True)
class SqlStatement:
    """Base for dialect-neutral statements."""


@dataclass(frozen=True)
class CreateTableStatement(SqlStatement):
    table_name: str
    columns: Tuple[ColumnConfig, ...]
    schema_name: Optional[str] = None
    remarks: Optional[str] = None


@dataclass(frozen=True)
class DropTableStatement(SqlStatement):
    table_name: str
    schema_name: Optional[str] = None
    cascade: bool = False


@dataclass(frozen=True)
class RenameTableStatement(SqlStatement):
    old_table_name: str
    new_table_name: str
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class AddColumnStatement(SqlStatement):
    table_name: str
    column: ColumnConfig
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class DropColumnStatement(SqlStatement):
    table_name: str
    column_name: str
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class RenameColumnStatement(SqlStatement):
    table_name: str
    old_column_name: str
    new_column_name: str
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class CreateIndexStatement(SqlStatement):
    index_name: str
    table_name: str
    columns: Tuple[str, ...]
    unique: bool = False
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class DropIndexStatement(SqlStatement):
    index_name: str
    table_name: str
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class RawSqlStatement(SqlStatement):
    """Literal SQL passed through every target unchanged."""
    sql: str


class StatementSet:
    """
    An ordered, immutable sequence of rendered SQL statements.

    Two sets are equal when they hold the same statements in the same order.
    """
    __slots__ = ("_statements",)

    def __init__(self, statements: Iterable[str] = ()):
        self._statements: Tuple[str, ...] = tuple(statements)

    @classmethod
    def concat(cls, sets: Iterable["StatementSet"]) -> "StatementSet":
        merged = []
        for statement_set in sets:
            merged.extend(statement_set)
        return cls(merged)

    def __iter__(self) -> Iterator[str]:
        return iter(self._statements)

    def __len__(self) -> int:
        return len(self._statements)

    def __getitem__(self, index):
        return self._statements[index]

    def __bool__(self) -> bool:
        return bool(self._statements)

    def __add__(self, other: "StatementSet") -> "StatementSet":
        if not isinstance(other, StatementSet):
            return NotImplemented
        return StatementSet(self._statements + other._statements)

    def __eq__(self, other):
        if not isinstance(other, StatementSet):
            return NotImplemented
        return self._statements == other._statements

    def __hash__(self):
        return hash(self._statements)

    def __repr__(self):
        return f"StatementSet({list(self._statements)!r})"
