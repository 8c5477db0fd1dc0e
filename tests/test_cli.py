"""Tests for the commands that need no database connection."""

import pytest
from click.testing import CliRunner

from changeforge.cli import main

CHANGELOG = """\
changeSets:
  - id: 1
    author: alice
    changes:
      - create_table:
          table_name: person
          columns:
            - column: {name: id, type: int, nullable: false, primary_key: true}
  - id: 2
    author: alice
    changes:
      - add_column:
          table_name: person
          columns:
            - column: {name: age, type: int}
"""


@pytest.fixture
def changelog(tmp_path):
    path = tmp_path / "master-changelog.yaml"
    path.write_text(CHANGELOG)
    return path


def test_checksums(changelog):
    result = CliRunner().invoke(main, ["checksums", "--change-log-file", str(changelog)])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("1:")
    assert lines[0].endswith("  master-changelog.yaml::1::alice")


def test_update_sql_offline(changelog, tmp_path):
    output = tmp_path / "update.sql"

    result = CliRunner().invoke(main, ["update-sql", "--offline", "--dialect", "generic",
                                       "--change-log-file", str(changelog), "--output-file", str(output)])

    assert result.exit_code == 0
    script = output.read_text()
    assert "CREATE TABLE person (id INT NOT NULL, PRIMARY KEY (id));" in script
    assert "ALTER TABLE person ADD COLUMN age INT;" in script
    assert "-- Changeset master-changelog.yaml::2::alice" in script


def test_update_sql_for_clickhouse(changelog, tmp_path):
    output = tmp_path / "update.sql"

    result = CliRunner().invoke(main, ["update-sql", "--offline", "--change-log-file", str(changelog),
                                       "--output-file", str(output)])

    assert result.exit_code == 0
    assert "ENGINE = MergeTree() ORDER BY (id)" in output.read_text()


def test_rollback_sql_offline(changelog, tmp_path):
    output = tmp_path / "rollback.sql"

    result = CliRunner().invoke(main, ["rollback", "--sql", "--offline", "--count", "1", "--dialect", "generic",
                                       "--change-log-file", str(changelog), "--output-file", str(output)])

    assert result.exit_code == 0
    script = output.read_text()
    assert "ALTER TABLE person DROP COLUMN age;" in script
    assert "DROP TABLE person" not in script


def test_rollback_offline_requires_sql(changelog):
    result = CliRunner().invoke(main, ["rollback", "--offline", "--count", "1", "--change-log-file", str(changelog)])

    assert result.exit_code == 2
    assert "--offline requires --sql" in result.output


def test_invalid_changelog_exits_with_error(tmp_path):
    path = tmp_path / "master-changelog.yaml"
    path.write_text("changeSets:\n  - id: 1\n    author: alice\n    changes:\n      - explode: {}\n")

    result = CliRunner().invoke(main, ["checksums", "--change-log-file", str(path)])

    assert result.exit_code == 1


def test_missing_changelog_exits_with_error(tmp_path):
    result = CliRunner().invoke(main, ["update-sql", "--offline", "--change-log-file", str(tmp_path / "none.yaml")])

    assert result.exit_code == 1


def test_help_lists_commands():
    result = CliRunner().invoke(main, ["help"])

    assert result.exit_code == 0
    for command in ("update", "update-sql", "rollback", "status", "checksums", "init"):
        assert command in result.output
