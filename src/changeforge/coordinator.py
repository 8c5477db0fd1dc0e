# src/changeforge/coordinator.py
"""
Drives a migration run over an ordered list of change sets.

Change sets are processed strictly in the given order against one live
database (executing statements and recording history) or one script sink
(dry run: statements are generated and written, nothing is executed or
recorded). Both modes use the same generation code. The first failure stops
the run; the returned RunReport tells which change sets completed, which one
failed, and which were never attempted.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .changeset import ChangeSet, ChangeSetIdentity, ChangeSetModified
from .database import DatabaseTarget, LiveDatabase
from .exceptions import ChangeForgeError, ChecksumMismatchError, RollbackImpossibleError, RunError
from .history import ChangeHistory, ExecType, RanChangeSet
from .sink import ScriptSink

logger = logging.getLogger(__name__)

DRIFT_POLICIES = ("warn", "fail")


class ChangeSetStatus(Enum):
    PENDING = "pending"
    APPLIED = "applied"
    MODIFIED = "modified"


@dataclass
class RunReport:
    """
    Outcome of a run or a rollback.

    Attributes:
        dry_run (bool): Statements were written to a sink instead of executed.
        rollback (bool): The run reverted change sets.
        completed (List[ChangeSetIdentity]): Change sets applied (or reverted, or written).
        skipped (List[ChangeSetIdentity]): Change sets not needing work (already applied,
                                           not applied yet for rollbacks, or excluded by context).
        failed (Optional[ChangeSetIdentity]): The change set that stopped the run.
        not_attempted (List[ChangeSetIdentity]): Change sets after the failure.
        modified (List[ChangeSetModified]): Drift detected on applied change sets.
        error (Optional[Exception]): The error that stopped the run.
    """
    dry_run: bool = False
    rollback: bool = False
    completed: List[ChangeSetIdentity] = field(default_factory=list)
    skipped: List[ChangeSetIdentity] = field(default_factory=list)
    failed: Optional[ChangeSetIdentity] = None
    not_attempted: List[ChangeSetIdentity] = field(default_factory=list)
    modified: List[ChangeSetModified] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.failed is None and self.error is None

    def record_failure(self, change_set: ChangeSet, error: Exception, remaining: Iterable[ChangeSet]):
        self.failed = change_set.identity
        self.error = error
        self.not_attempted.extend(cs.identity for cs in remaining)

    def summary(self) -> str:
        if self.dry_run:
            action = "written to rollback script" if self.rollback else "written to update script"
        else:
            action = "rolled back" if self.rollback else "applied"
        parts = [f"{len(self.completed)} change set(s) {action}",
                 f"{len(self.skipped)} skipped"]
        if self.modified:
            parts.append(f"{len(self.modified)} modified since applied")
        if self.failed is not None:
            parts.append(f"failed at {self.failed}, {len(self.not_attempted)} not attempted")
        return ", ".join(parts)


class ExecutionCoordinator:
    """
    Applies and rolls back change sets against a live database or a script sink.

    Attributes:
        target (DatabaseTarget): Dialect statements are generated for.
        history (Optional[ChangeHistory]): Record of applied change sets. Without
            one, every change set is treated as not applied and nothing is recorded.
        contexts (List[str]): Only change sets matching these contexts run.
        on_drift (str): 'warn' reports modified change sets, 'fail' stops the run.
        max_workers (int): Threads used to generate statements in dry-run mode.
    """
    def __init__(self,
                 target: DatabaseTarget,
                 history: Optional[ChangeHistory] = None,
                 contexts: Optional[Iterable[str]] = None,
                 on_drift: str = "warn",
                 max_workers: int = 4):
        if on_drift not in DRIFT_POLICIES:
            raise ValueError(f"on_drift must be one of {DRIFT_POLICIES}, got '{on_drift}'")
        self.target = target
        self.history = history
        self.contexts = list(contexts or [])
        self.on_drift = on_drift
        self.max_workers = max(1, int(max_workers))

    # --- helpers ---------------------------------------------------------------

    @staticmethod
    def _check_mode(db: Optional[LiveDatabase], sink: Optional[ScriptSink]):
        if (db is None) == (sink is None):
            raise RunError("Exactly one of a live database or a script sink must be given")

    @contextmanager
    def _exclusive(self, db: Optional[LiveDatabase]):
        """Holds the live database for the duration of a run and always releases it."""
        if db is None:
            yield
            return
        db.acquire()
        try:
            yield
        finally:
            db.release()

    @contextmanager
    def _generation_pool(self, sink: Optional[ScriptSink]):
        """Yields a thread pool for rendering a script concurrently, or None for live runs."""
        if sink is None:
            yield None
            return
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            yield pool

    def _ran_change_sets(self) -> Dict[ChangeSetIdentity, RanChangeSet]:
        return self.history.get_ran_change_sets() if self.history is not None else {}

    def _exec_type(self, change_set: ChangeSet, ran: Optional[RanChangeSet],
                   report: RunReport) -> Optional[ExecType]:
        """
        Decides whether a change set runs, and how it is recorded.

        Returns None when it should be skipped.

        Raises:
            ChecksumMismatchError: When drift is found and `on_drift` is 'fail'.
        """
        if ran is None:
            return ExecType.EXECUTED
        modified = change_set.check_drift(ran.checksum)
        if modified is not None:
            report.modified.append(modified)
            if change_set.run_on_change:
                logger.info(f"{modified}. Running it again (run_on_change).")
                return ExecType.RERAN
            if self.on_drift == "fail":
                raise ChecksumMismatchError(modified)
            logger.warning(str(modified))
        if change_set.always_run:
            return ExecType.RERAN
        return None

    def _record(self, change_set: ChangeSet, exec_type: ExecType):
        try:
            self.history.mark_ran(change_set, exec_type)
        except Exception as e:
            raise RunError(f"Change set {change_set.identity} was applied but could not be recorded: {e}") from e

    def _forget(self, change_set: ChangeSet):
        try:
            self.history.remove_ran(change_set)
        except Exception as e:
            raise RunError(f"Change set {change_set.identity} was rolled back but its record could not be removed: {e}") from e

    # --- queries -----------------------------------------------------------------

    def status(self, change_sets: Sequence[ChangeSet]) -> List[Tuple[ChangeSet, ChangeSetStatus]]:
        """Returns each change set with its state against the history."""
        ran = self._ran_change_sets()
        result = []
        for change_set in change_sets:
            record = ran.get(change_set.identity)
            if record is None:
                state = ChangeSetStatus.PENDING
            elif change_set.check_drift(record.checksum) is not None:
                state = ChangeSetStatus.MODIFIED
            else:
                state = ChangeSetStatus.APPLIED
            result.append((change_set, state))
        return result

    def select_for_rollback(self, change_sets: Sequence[ChangeSet], count: Optional[int] = None,
                            to_id: Optional[str] = None) -> List[ChangeSet]:
        """
        Picks the applied change sets a rollback should undo, in the order they were applied.

        Args:
            change_sets: Change sets defined in the changelog.
            count: Undo the last `count` applied change sets.
            to_id: Undo every change set applied after the one with this id.

        Raises:
            RunError: If neither or both selectors are given, or `to_id` is not applied.
        """
        if (count is None) == (to_id is None):
            raise RunError("Exactly one of a rollback count or a change set id must be given")
        ran = self._ran_change_sets()
        if self.history is None:
            applied = list(change_sets)
        else:
            applied = sorted((cs for cs in change_sets if cs.identity in ran),
                             key=lambda cs: ran[cs.identity].order_executed)
        if count is not None:
            return applied[len(applied) - count:] if count > 0 else []
        positions = [i for i, cs in enumerate(applied) if cs.id == str(to_id)]
        if not positions:
            raise RunError(f"Change set '{to_id}' is not applied; nothing to roll back to")
        return applied[positions[-1] + 1:]

    # --- runs ------------------------------------------------------------------

    def run(self, change_sets: Sequence[ChangeSet], db: Optional[LiveDatabase] = None,
            sink: Optional[ScriptSink] = None) -> RunReport:
        """
        Applies pending change sets in order, or writes their statements to a sink.

        Already applied change sets are skipped unless they are marked
        `always_run`, or were modified and are marked `run_on_change`. After a
        successful apply the change set is recorded in the history (live mode only).

        Args:
            change_sets: Change sets in changelog order.
            db: Live database to execute against.
            sink: Script sink for a dry run.

        Returns:
            RunReport: The outcome; `report.succeeded` is False when the run stopped early.

        Raises:
            RunError: If neither or both of `db` and `sink` are given.
        """
        self._check_mode(db, sink)
        change_sets = list(change_sets)
        report = RunReport(dry_run=sink is not None)
        ran = self._ran_change_sets()
        logger.info(f"Starting {'dry run' if sink else 'update'} of {len(change_sets)} change set(s) "
                    f"on {self.target.short_name}")

        if sink is not None:
            sink.write_header("Update script", self.target.short_name)

        with self._exclusive(db), self._generation_pool(sink) as pool:
            generated = {}
            if sink is not None:
                # Generation is pure, so the script's change sets can be rendered concurrently
                for change_set in change_sets:
                    if change_set.matches_contexts(self.contexts):
                        generated[change_set.identity] = pool.submit(change_set.generate_statements, self.target)

            for position, change_set in enumerate(change_sets):
                if not change_set.matches_contexts(self.contexts):
                    logger.info(f"Skipping {change_set.identity}: contexts {sorted(change_set.contexts)} not selected")
                    report.skipped.append(change_set.identity)
                    continue
                try:
                    exec_type = self._exec_type(change_set, ran.get(change_set.identity), report)
                    if exec_type is None:
                        logger.debug(f"Skipping already applied change set {change_set.identity}")
                        report.skipped.append(change_set.identity)
                        continue
                    if sink is not None:
                        sink.write_change_set(change_set, generated[change_set.identity].result())
                    else:
                        change_set.apply(db, self.target)
                        if self.history is not None:
                            self._record(change_set, exec_type)
                    report.completed.append(change_set.identity)
                except ChangeForgeError as e:
                    logger.error(f"Aborting run at change set {change_set.identity}: {e}")
                    report.record_failure(change_set, e, change_sets[position + 1:])
                    for future in generated.values():
                        future.cancel()
                    break

        logger.info(f"Run finished: {report.summary()}")
        return report

    def rollback_to(self, change_sets: Sequence[ChangeSet], db: Optional[LiveDatabase] = None,
                    sink: Optional[ScriptSink] = None, best_effort: bool = False) -> RunReport:
        """
        Reverts change sets in reverse order, or writes their rollback statements to a sink.

        Only change sets recorded as applied are reverted (all of them when no
        history is configured). Unless `best_effort` is set, every change set is
        checked for rollback support before anything executes.

        Args:
            change_sets: Change sets in the order they were applied.
            db: Live database to execute against.
            sink: Script sink for a dry run.
            best_effort: Skip changes that cannot be rolled back instead of failing.

        Raises:
            RunError: If neither or both of `db` and `sink` are given.
        """
        self._check_mode(db, sink)
        report = RunReport(dry_run=sink is not None, rollback=True)
        ran = self._ran_change_sets()

        to_revert = []
        for change_set in reversed(list(change_sets)):
            if self.history is not None and change_set.identity not in ran:
                logger.debug(f"Skipping {change_set.identity}: not applied")
                report.skipped.append(change_set.identity)
            else:
                to_revert.append(change_set)
        logger.info(f"Starting rollback of {len(to_revert)} change set(s) on {self.target.short_name}")

        if not best_effort:
            for position, change_set in enumerate(to_revert):
                if not change_set.is_rollbackable():
                    blocking = next(c for c in change_set.changes if not c.can_roll_back())
                    error = RollbackImpossibleError(
                        f"Change set {change_set.identity} cannot be rolled back: "
                        f"no rollback for '{blocking.confirmation_message()}'", change=blocking)
                    logger.error(str(error))
                    report.record_failure(change_set, error, to_revert[:position] + to_revert[position + 1:])
                    return report

        if sink is not None:
            sink.write_header("Rollback script", self.target.short_name)

        with self._exclusive(db):
            for position, change_set in enumerate(to_revert):
                try:
                    if sink is not None:
                        sink.write_change_set(change_set,
                                              change_set.generate_rollback_statements(self.target, best_effort),
                                              rollback=True)
                    else:
                        change_set.revert(db, self.target, best_effort=best_effort)
                        if self.history is not None:
                            self._forget(change_set)
                    report.completed.append(change_set.identity)
                except ChangeForgeError as e:
                    logger.error(f"Aborting rollback at change set {change_set.identity}: {e}")
                    report.record_failure(change_set, e, to_revert[position + 1:])
                    break

        logger.info(f"Rollback finished: {report.summary()}")
        return report
