"""Unit tests for ExecutionCoordinator runs, dry runs and rollbacks."""

import io

import pytest

from changeforge import coordinator as coordinator_module
from changeforge.changes import AddColumnChange, RawSqlChange
from changeforge.changeset import ChangeSet
from changeforge.coordinator import ChangeSetStatus, ExecutionCoordinator, RunReport
from changeforge.exceptions import (
    ChangeSetApplyError,
    ChecksumMismatchError,
    RollbackImpossibleError,
    RunError,
)
from changeforge.history import ExecType
from changeforge.sink import ScriptSink
from changeforge.structure import ColumnConfig

from conftest import RecordingDatabase, add_age_column, create_age_index, create_person_table, ready


def identities(change_sets):
    return [cs.identity for cs in change_sets]


def test_run_applies_in_order_and_records_history(change_sets, sqlite_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)

    report = coordinator.run(change_sets, db=sqlite_db)

    assert report.succeeded
    assert report.completed == identities(change_sets)
    assert sqlite_db.schema()["tables"] == {"person": ["id", "age"]}
    ran = history.get_ran_change_sets()
    assert [ran[cs.identity].order_executed for cs in change_sets] == [1, 2, 3]
    assert all(ran[cs.identity].checksum == cs.checksum() for cs in change_sets)


def test_rerun_of_applied_change_sets_is_a_noop(change_sets, recording_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets, db=recording_db)
    executed = list(recording_db.executed)

    report = coordinator.run(change_sets, db=recording_db)

    assert report.succeeded
    assert report.completed == []
    assert report.skipped == identities(change_sets)
    assert recording_db.executed == executed


def test_failure_stops_run_and_keeps_completed_history(change_sets, target, history):
    db = RecordingDatabase(fail_on=["CREATE INDEX"])
    coordinator = ExecutionCoordinator(target, history=history)

    report = coordinator.run(change_sets, db=db)

    assert not report.succeeded
    assert report.completed == [change_sets[0].identity]
    assert report.failed == change_sets[1].identity
    assert report.not_attempted == [change_sets[2].identity]
    assert isinstance(report.error, ChangeSetApplyError)
    assert report.error.committed == 1
    assert set(history.get_ran_change_sets()) == {change_sets[0].identity}
    assert "failed at changelog.yaml::2::alice" in report.summary()


def test_retried_run_resumes_after_last_committed_change_set(change_sets, target, history):
    failing = RecordingDatabase(fail_on=["DROP COLUMN"])
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets, db=failing)

    fixed = RecordingDatabase()
    report = coordinator.run(change_sets, db=fixed)

    assert report.succeeded
    assert report.skipped == identities(change_sets[:2])
    assert report.completed == [change_sets[2].identity]
    assert fixed.executed == ["ALTER TABLE person DROP COLUMN name"]


def test_live_database_is_released_on_every_path(change_sets, target, history):
    db = RecordingDatabase(fail_on=["CREATE TABLE"])

    ExecutionCoordinator(target, history=history).run(change_sets, db=db)

    assert (db.acquired, db.released) == (1, 1)


def test_modified_change_set_is_reported_and_skipped(change_sets, recording_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets[:1], db=recording_db)
    edited = ChangeSet("1", "alice", "changelog.yaml",
                       changes=[create_person_table(), ready(RawSqlChange(sql="SELECT 1"))])

    report = coordinator.run([edited], db=recording_db)

    assert report.succeeded
    assert report.skipped == [edited.identity]
    assert [m.identity for m in report.modified] == [edited.identity]
    assert report.modified[0].current_checksum == edited.checksum()


def test_modified_change_set_fails_run_in_strict_mode(change_sets, recording_db, target, history):
    ExecutionCoordinator(target, history=history).run(change_sets[:1], db=recording_db)
    edited = ChangeSet("1", "alice", "changelog.yaml", changes=[ready(RawSqlChange(sql="SELECT 1"))])
    strict = ExecutionCoordinator(target, history=history, on_drift="fail")

    report = strict.run([edited] + change_sets[1:], db=recording_db)

    assert report.failed == edited.identity
    assert isinstance(report.error, ChecksumMismatchError)
    assert report.not_attempted == identities(change_sets[1:])


def test_run_on_change_reruns_modified_change_set(recording_db, target, history):
    original = ChangeSet("v", "alice", "views.yaml", run_on_change=True,
                         changes=[ready(RawSqlChange(sql="CREATE VIEW v AS SELECT 1"))])
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run([original], db=recording_db)
    edited = ChangeSet("v", "alice", "views.yaml", run_on_change=True,
                       changes=[ready(RawSqlChange(sql="CREATE VIEW v AS SELECT 2"))])

    report = coordinator.run([edited], db=recording_db)

    assert report.completed == [edited.identity]
    assert recording_db.executed[-1] == "CREATE VIEW v AS SELECT 2"
    record = history.get_ran(edited.identity)
    assert record.exec_type is ExecType.RERAN
    assert record.checksum == edited.checksum()


def test_always_run_change_set_runs_every_time(recording_db, target, history):
    change_set = ChangeSet("grants", "alice", "changelog.yaml", always_run=True,
                           changes=[ready(RawSqlChange(sql="GRANT SELECT ON person TO reader"))])
    coordinator = ExecutionCoordinator(target, history=history)

    coordinator.run([change_set], db=recording_db)
    coordinator.run([change_set], db=recording_db)

    assert recording_db.executed == ["GRANT SELECT ON person TO reader"] * 2


def test_context_filter_skips_change_sets(recording_db, target, history):
    dev_only = ChangeSet("seed", "alice", "changelog.yaml", contexts=["dev"],
                         changes=[ready(RawSqlChange(sql="INSERT INTO person VALUES (1, 'x')"))])
    coordinator = ExecutionCoordinator(target, history=history, contexts=["prod"])

    report = coordinator.run([dev_only], db=recording_db)

    assert report.skipped == [dev_only.identity]
    assert recording_db.executed == []


def test_dry_run_writes_same_statements_without_executing(change_sets, target, history):
    stream = io.StringIO()
    coordinator = ExecutionCoordinator(target, history=history, max_workers=3)

    report = coordinator.run(change_sets, sink=ScriptSink(stream))

    assert report.succeeded and report.dry_run
    assert report.completed == identities(change_sets)
    assert history.get_ran_change_sets() == {}
    script = stream.getvalue()
    live = RecordingDatabase()
    ExecutionCoordinator(target).run(change_sets, db=live)
    statement_lines = [line[:-1] for line in script.splitlines() if line and not line.startswith("--")]
    assert statement_lines == live.executed
    assert "-- Changeset changelog.yaml::2::alice" in script


def test_dry_run_reports_generation_failure(target):
    never_set_up = AddColumnChange(table_name="person", columns=[ColumnConfig("age", "int")])
    broken = ChangeSet("bad", "alice", "changelog.yaml", changes=[never_set_up])
    later = ChangeSet("later", "alice", "changelog.yaml", changes=[create_age_index()])

    report = ExecutionCoordinator(target).run([broken, later], sink=ScriptSink(io.StringIO()))

    assert report.failed == broken.identity
    assert report.not_attempted == [later.identity]


@pytest.mark.parametrize("kwargs", [{}, {"db": RecordingDatabase(), "sink": ScriptSink(io.StringIO())}])
def test_run_requires_exactly_one_destination(target, kwargs):
    with pytest.raises(RunError):
        ExecutionCoordinator(target).run([], **kwargs)


def test_invalid_drift_policy(target):
    with pytest.raises(ValueError):
        ExecutionCoordinator(target, on_drift="ignore")


def test_rollback_reverts_in_reverse_order_and_forgets_history(sqlite_db, target, history):
    change_sets = [
        ChangeSet("1", "alice", "changelog.yaml", changes=[create_person_table()]),
        ChangeSet("2", "alice", "changelog.yaml", changes=[add_age_column(), create_age_index()]),
    ]
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets, db=sqlite_db)
    sqlite_db.executed.clear()

    report = coordinator.rollback_to(change_sets, db=sqlite_db)

    assert report.succeeded and report.rollback
    assert report.completed == [change_sets[1].identity, change_sets[0].identity]
    assert sqlite_db.executed == [
        "DROP INDEX idx_person_age",
        "ALTER TABLE person DROP COLUMN age",
        "DROP TABLE person",
    ]
    assert sqlite_db.schema() == {"tables": {}, "indexes": []}
    assert history.get_ran_change_sets() == {}


def test_rollback_skips_change_sets_not_applied(change_sets, recording_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets[:1], db=recording_db)
    recording_db.executed.clear()

    report = coordinator.rollback_to(change_sets[:2], db=recording_db)

    assert report.skipped == [change_sets[1].identity]
    assert report.completed == [change_sets[0].identity]
    assert recording_db.executed == ["DROP TABLE person"]


def test_rollback_preflight_rejects_irreversible_change_set(change_sets, recording_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets, db=recording_db)
    recording_db.executed.clear()

    report = coordinator.rollback_to(change_sets, db=recording_db)

    assert report.failed == change_sets[2].identity
    assert isinstance(report.error, RollbackImpossibleError)
    assert report.completed == []
    assert recording_db.executed == []
    assert len(history.get_ran_change_sets()) == 3


def test_rollback_script_to_sink(target):
    change_sets = [ChangeSet("2", "alice", "changelog.yaml", changes=[add_age_column(), create_age_index()])]
    stream = io.StringIO()

    report = ExecutionCoordinator(target).rollback_to(change_sets, sink=ScriptSink(stream))

    assert report.succeeded
    script = stream.getvalue()
    assert "-- Rollback changelog.yaml::2::alice" in script
    assert script.index("DROP INDEX idx_person_age;") < script.index("ALTER TABLE person DROP COLUMN age;")


def test_select_for_rollback(change_sets, recording_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets[:2], db=recording_db)

    assert coordinator.select_for_rollback(change_sets, count=1) == [change_sets[1]]
    assert coordinator.select_for_rollback(change_sets, count=5) == change_sets[:2]
    assert coordinator.select_for_rollback(change_sets, to_id="1") == [change_sets[1]]
    with pytest.raises(RunError):
        coordinator.select_for_rollback(change_sets, to_id="3")
    with pytest.raises(RunError):
        coordinator.select_for_rollback(change_sets)


def test_status(change_sets, recording_db, target, history):
    coordinator = ExecutionCoordinator(target, history=history)
    coordinator.run(change_sets[:2], db=recording_db)
    edited = ChangeSet("2", "alice", "changelog.yaml", changes=[add_age_column()])

    states = coordinator.status([change_sets[0], edited, change_sets[2]])

    assert [state for _, state in states] == [
        ChangeSetStatus.APPLIED, ChangeSetStatus.MODIFIED, ChangeSetStatus.PENDING,
    ]


def test_report_summary():
    report = RunReport()

    assert report.succeeded
    assert report.summary() == "0 change set(s) applied, 0 skipped"


def test_thread_pool_is_only_used_for_script_output(change_sets, target, monkeypatch):
    pools = []
    real_executor = coordinator_module.ThreadPoolExecutor

    def tracking_executor(*args, **kwargs):
        pool = real_executor(*args, **kwargs)
        pools.append(pool)
        return pool

    monkeypatch.setattr(coordinator_module, "ThreadPoolExecutor", tracking_executor)
    coordinator = ExecutionCoordinator(target)

    coordinator.run(change_sets, db=RecordingDatabase())
    assert pools == []

    coordinator.run(change_sets, sink=ScriptSink(io.StringIO()))
    assert len(pools) == 1
