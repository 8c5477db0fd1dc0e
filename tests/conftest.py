"""
Shared fixtures: live database doubles and ready-made changes.
"""
import sqlite3

import pytest

from changeforge.changes import AddColumnChange, CreateIndexChange, CreateTableChange, DropColumnChange
from changeforge.changeset import ChangeSet
from changeforge.database import LiveDatabase
from changeforge.dialects import GenericSqlTarget
from changeforge.exceptions import StatementExecutionError
from changeforge.history import InMemoryChangeHistory
from changeforge.structure import ColumnConfig


class SqliteDatabase(LiveDatabase):
    """Runs statements against an in-memory SQLite database and exposes its schema."""

    def __init__(self):
        self.connection = sqlite3.connect(":memory:")
        self.executed = []
        self.acquired = 0
        self.released = 0

    def acquire(self):
        self.acquired += 1

    def release(self):
        self.released += 1

    def execute(self, sql):
        try:
            self.connection.execute(sql)
        except sqlite3.Error as e:
            raise StatementExecutionError(f"SQLite rejected statement: {e}", sql=sql) from e
        self.executed.append(sql)

    def schema(self):
        rows = self.connection.execute(
            "SELECT type, name, tbl_name FROM sqlite_master WHERE name NOT LIKE 'sqlite%' ORDER BY type, name"
        ).fetchall()
        tables = {}
        indexes = []
        for type_, name, table_name in rows:
            if type_ == "table":
                tables[name] = [info[1] for info in self.connection.execute(f"PRAGMA table_info({name})")]
            elif type_ == "index":
                indexes.append((name, table_name))
        return {"tables": tables, "indexes": indexes}


class RecordingDatabase(LiveDatabase):
    """Records statements; raises for any statement containing one of `fail_on`."""

    def __init__(self, fail_on=()):
        self.executed = []
        self.fail_on = list(fail_on)
        self.acquired = 0
        self.released = 0

    def acquire(self):
        self.acquired += 1

    def release(self):
        self.released += 1

    def execute(self, sql):
        for fragment in self.fail_on:
            if fragment in sql:
                raise RuntimeError(f"boom: {fragment}")
        self.executed.append(sql)


def ready(change):
    change.set_up()
    return change


def add_age_column():
    return ready(AddColumnChange(table_name="person", columns=[ColumnConfig("age", "int")]))


def create_age_index():
    return ready(CreateIndexChange(index_name="idx_person_age", table_name="person", columns=["age"]))


def create_person_table():
    return ready(CreateTableChange(table_name="person", columns=[
        ColumnConfig("id", "int", nullable=False, primary_key=True),
        ColumnConfig("name", "varchar(100)"),
    ]))


@pytest.fixture
def target():
    return GenericSqlTarget()


@pytest.fixture
def sqlite_db():
    db = SqliteDatabase()
    yield db
    db.connection.close()


@pytest.fixture
def recording_db():
    return RecordingDatabase()


@pytest.fixture
def history():
    return InMemoryChangeHistory()


@pytest.fixture
def change_sets():
    """Three change sets: create table, add column plus index, then drop a column (irreversible)."""
    return [
        ChangeSet("1", "alice", "changelog.yaml", changes=[create_person_table()]),
        ChangeSet("2", "alice", "changelog.yaml", changes=[add_age_column(), create_age_index()]),
        ChangeSet("3", "bob", "changelog.yaml",
                  changes=[ready(DropColumnChange(table_name="person", column_name="name"))]),
    ]
