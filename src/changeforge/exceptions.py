# src/changeforge/exceptions.py
"""
Exception hierarchy for changeforge.

Setup and generation failures are raised before any statement reaches a
database. Execution failures carry the SQL that failed. Change set level
errors wrap the change level ones and record how far execution got.
"""
from typing import Optional


class ChangeForgeError(Exception):
    """Base class for every error raised by changeforge."""


class SetupError(ChangeForgeError):
    """
    A change is misconfigured and can never be used.

    Raised by `Change.set_up()` when required parameters are missing or
    mutually inconsistent. Not retryable.
    """
    def __init__(self, message: str, change=None):
        self.change = change
        super().__init__(message)


class ChangeNotReadyError(SetupError):
    """Statement generation was requested before `set_up()` succeeded."""


class StatementNotSupportedError(ChangeForgeError):
    """A database target cannot render a dialect-neutral statement."""
    def __init__(self, message: str, statement=None, target_name: Optional[str] = None):
        self.statement = statement
        self.target_name = target_name
        super().__init__(message)


class UnsupportedChangeError(ChangeForgeError):
    """The target database product cannot express a change."""
    def __init__(self, message: str, change=None, target_name: Optional[str] = None):
        self.change = change
        self.target_name = target_name
        super().__init__(message)


class RollbackImpossibleError(ChangeForgeError):
    """A change declares neither inverse changes nor custom rollback logic."""
    def __init__(self, message: str, change=None):
        self.change = change
        super().__init__(message)


class StatementExecutionError(ChangeForgeError):
    """A generated statement failed at the database."""
    def __init__(self, message: str, sql: Optional[str] = None, change=None):
        self.sql = sql
        self.change = change
        super().__init__(message)


class ChangeSetApplyError(ChangeForgeError):
    """
    Applying a change set stopped at a failing change.

    Attributes:
        identity (ChangeSetIdentity): The change set that failed.
        change (Change): The change that failed.
        committed (int): Number of changes of the set that had already executed.
        cause (Exception): The underlying setup, generation or execution error.
    """
    def __init__(self, identity, change, committed: int, cause: Exception):
        self.identity = identity
        self.change = change
        self.committed = committed
        self.cause = cause
        change_desc = change.confirmation_message() if change is not None else "<unknown change>"
        super().__init__(
            f"Change set {identity} failed at change '{change_desc}' "
            f"after {committed} committed change(s): {cause}"
        )


class ChangeSetRevertError(ChangeForgeError):
    """
    Reverting a change set failed.

    `impossible` is True when a change has no rollback at all, and
    `unsupported` when the target cannot express a rollback statement. Both
    are detected while generating rollback statements, so nothing was executed.
    """
    def __init__(self, identity, change, reverted: int, cause: Exception):
        self.identity = identity
        self.change = change
        self.reverted = reverted
        self.cause = cause
        change_desc = change.confirmation_message() if change is not None else "<unknown change>"
        super().__init__(
            f"Rollback of change set {identity} failed at change '{change_desc}' "
            f"after {reverted} reverted change(s): {cause}"
        )

    @property
    def impossible(self) -> bool:
        return isinstance(self.cause, RollbackImpossibleError)

    @property
    def unsupported(self) -> bool:
        return isinstance(self.cause, UnsupportedChangeError)


class ChecksumMismatchError(ChangeForgeError):
    """An applied change set was modified and drift is configured to fail the run."""
    def __init__(self, modified):
        self.modified = modified
        super().__init__(
            f"Change set {modified.identity} was modified after it was applied "
            f"(recorded {modified.recorded_checksum}, now {modified.current_checksum})"
        )


class RunError(ChangeForgeError):
    """The execution coordinator was invoked incorrectly."""


class ChangelogParseError(ChangeForgeError):
    """A changelog document is malformed or references unknown changes."""


class UnknownChangeError(ChangeForgeError):
    """No change class is registered under a changelog tag name."""
    def __init__(self, tag_name: str, known=()):
        self.tag_name = tag_name
        super().__init__(f"Unknown change type: '{tag_name}'. Known types: {', '.join(known)}")
