# src/changeforge/changeset.py
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple

from .change import Change, compute_checksum, execute_statement_set
from .database import DatabaseTarget, LiveDatabase
from .exceptions import (
    ChangeForgeError,
    ChangeSetApplyError,
    ChangeSetRevertError,
    RollbackImpossibleError,
    UnsupportedChangeError,
)
from .statements import StatementSet

logger = logging.getLogger(__name__)

# A change paired with the statements generated for it
GeneratedChange = Tuple[Change, StatementSet]


@dataclass(frozen=True)
class ChangeSetIdentity:
    """
    Identifies a change set across runs: its id, its author, and the changelog file defining it.

    Frozen so it can be used as a key when looking up history records.
    """
    id: str
    author: str
    file_path: str

    def __str__(self):
        return f"{self.file_path}::{self.id}::{self.author}"


@dataclass(frozen=True)
class ChangeSetModified:
    """
    Advisory drift signal: an applied change set no longer hashes to its recorded checksum.
    """
    identity: ChangeSetIdentity
    recorded_checksum: str
    current_checksum: str

    def __str__(self):
        return (f"Change set {self.identity} was modified after it was applied "
                f"(recorded {self.recorded_checksum}, now {self.current_checksum})")


class ChangeSet:
    """
    An ordered, identity-bearing group of changes applied and reverted as a unit.

    Attributes:
        identity (ChangeSetIdentity): id, author and defining changelog file.
        changes (List[Change]): Changes in execution order.
        always_run (bool): Execute on every run, even when already applied.
        run_on_change (bool): Execute again when the checksum changed since it was applied.
        contexts (Set[str]): Contexts the change set runs in. Empty means every context.
        comment (Optional[str]): Free-form description.
        rollback_changes (Optional[List[Change]]): Changes whose forward statements
            replace the derived rollback of the whole set.
    """
    def __init__(self,
                 change_set_id: str,
                 author: str,
                 file_path: str,
                 changes: Optional[Iterable[Change]] = None,
                 always_run: bool = False,
                 run_on_change: bool = False,
                 contexts: Optional[Iterable[str]] = None,
                 comment: Optional[str] = None,
                 rollback_changes: Optional[Iterable[Change]] = None):
        self.identity = ChangeSetIdentity(str(change_set_id), str(author), file_path)
        self.always_run = always_run
        self.run_on_change = run_on_change
        self.contexts: Set[str] = {c.strip().lower() for c in (contexts or []) if c and c.strip()}
        self.comment = comment
        self.rollback_changes = list(rollback_changes) if rollback_changes is not None else None
        self.changes: List[Change] = []
        self._checksum: Optional[str] = None
        for change in changes or []:
            self.add_change(change)

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def author(self) -> str:
        return self.identity.author

    @property
    def file_path(self) -> str:
        return self.identity.file_path

    def add_change(self, change: Change):
        change.change_set = self
        self.changes.append(change)
        self._checksum = None

    def __repr__(self):
        return f"ChangeSet({str(self.identity)!r}, changes={len(self.changes)})"

    # --- checksum and drift --------------------------------------------------

    def checksum(self) -> str:
        """
        Returns the digest over the checksums of all changes in declared order.

        Computed on first request and cached until a change is added.
        """
        if self._checksum is None:
            self._checksum = compute_checksum("\n".join(change.checksum() for change in self.changes))
            logger.debug(f"Computed checksum for {self.identity}: {self._checksum}")
        return self._checksum

    def is_checksum_valid(self, recorded_checksum: Optional[str]) -> bool:
        return recorded_checksum is None or recorded_checksum == self.checksum()

    def check_drift(self, recorded_checksum: Optional[str]) -> Optional[ChangeSetModified]:
        """
        Compares a previously recorded checksum with the current one.

        Returns:
            Optional[ChangeSetModified]: The drift signal, or None when the checksums
                                         match or nothing was recorded.
        """
        if self.is_checksum_valid(recorded_checksum):
            return None
        return ChangeSetModified(self.identity, recorded_checksum, self.checksum())

    def matches_contexts(self, contexts: Optional[Iterable[str]]) -> bool:
        """
        Tells whether this change set runs under the requested contexts.

        No requested contexts, or no contexts on the change set, always matches.
        """
        requested = {c.strip().lower() for c in (contexts or []) if c and c.strip()}
        if not requested or not self.contexts:
            return True
        return bool(self.contexts & requested)

    def is_rollbackable(self) -> bool:
        if self.rollback_changes is not None:
            return True
        return all(change.can_roll_back() for change in self.changes)

    # --- generation ----------------------------------------------------------

    def generate_statements(self, target: DatabaseTarget) -> List[GeneratedChange]:
        """
        Generates the forward statements of every change, in order, without executing anything.

        Raises:
            ChangeSetApplyError: If any change cannot be generated (nothing is committed).
        """
        generated = []
        for change in self.changes:
            try:
                generated.append((change, change.generate_statements(target)))
            except ChangeForgeError as e:
                logger.error(f"Cannot generate statements for {self.identity}: {e}")
                raise ChangeSetApplyError(self.identity, change, 0, e) from e
        return generated

    def generate_rollback_statements(self, target: DatabaseTarget,
                                     best_effort: bool = False) -> List[GeneratedChange]:
        """
        Generates the statements undoing this change set, in execution order.

        Changes are undone in reverse order, unless the change set declares its
        own rollback changes, whose forward statements then run in declared order.

        Args:
            target (DatabaseTarget): Dialect to render for.
            best_effort (bool): Skip changes that cannot be rolled back instead of failing.

        Raises:
            ChangeSetRevertError: If a change cannot be rolled back and `best_effort` is False.
        """
        if self.rollback_changes is not None:
            generated = []
            for change in self.rollback_changes:
                try:
                    generated.append((change, change.generate_statements(target)))
                except ChangeForgeError as e:
                    raise ChangeSetRevertError(self.identity, change, 0, e) from e
            return generated

        generated = []
        for change in reversed(self.changes):
            try:
                generated.append((change, change.generate_rollback_statements(target)))
            except (RollbackImpossibleError, UnsupportedChangeError) as e:
                if not best_effort:
                    logger.error(f"Cannot roll back {self.identity}: {e}")
                    raise ChangeSetRevertError(self.identity, change, 0, e) from e
                logger.warning(f"Skipping rollback of '{change.confirmation_message()}' in {self.identity}: {e}")
            except ChangeForgeError as e:
                raise ChangeSetRevertError(self.identity, change, 0, e) from e
        return generated

    # --- execution -----------------------------------------------------------

    def apply(self, db: LiveDatabase, target: DatabaseTarget):
        """
        Executes every change's forward statements in order.

        All statements are generated before the first one executes, so an
        unsupported change aborts the set without touching the database.
        Statements auto-commit individually; on failure the raised error tells
        how many changes of the set had already run.

        Raises:
            ChangeSetApplyError: On the first failing change.
        """
        generated = self.generate_statements(target)
        logger.info(f"Applying change set {self.identity} ({len(generated)} change(s))")
        for committed, (change, statements) in enumerate(generated):
            try:
                execute_statement_set(db, change, statements)
            except ChangeForgeError as e:
                logger.error(f"Change set {self.identity} failed at '{change.confirmation_message()}': {e}")
                raise ChangeSetApplyError(self.identity, change, committed, e) from e
            logger.info(f"  {change.confirmation_message()}")

    def revert(self, db: LiveDatabase, target: DatabaseTarget, best_effort: bool = False):
        """
        Executes rollback statements, undoing later changes first.

        Rollback is all-or-nothing at generation time: if any change cannot be
        rolled back, nothing is executed unless `best_effort` is set.

        Raises:
            ChangeSetRevertError: If rollback is impossible or a statement fails.
        """
        generated = self.generate_rollback_statements(target, best_effort=best_effort)
        logger.info(f"Rolling back change set {self.identity} ({len(generated)} change(s))")
        for reverted, (change, statements) in enumerate(generated):
            try:
                execute_statement_set(db, change, statements)
            except ChangeForgeError as e:
                logger.error(f"Rollback of {self.identity} failed at '{change.confirmation_message()}': {e}")
                raise ChangeSetRevertError(self.identity, change, reverted, e) from e
            logger.info(f"  Rolled back: {change.confirmation_message()}")

    def to_dict(self) -> dict:
        """Returns the change set as a changelog document entry."""
        data = {"id": self.id, "author": self.author}
        if self.always_run:
            data["always_run"] = True
        if self.run_on_change:
            data["run_on_change"] = True
        if self.contexts:
            data["contexts"] = sorted(self.contexts)
        if self.comment:
            data["comment"] = self.comment
        data["changes"] = [change.to_dict() for change in self.changes]
        if self.rollback_changes is not None:
            data["rollback"] = [change.to_dict() for change in self.rollback_changes]
        return data
