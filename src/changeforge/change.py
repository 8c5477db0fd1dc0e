# src/changeforge/change.py
"""
The Change contract.

A change is a single declarative, database-agnostic migration operation. It is
built from explicit constructor parameters, validated once by `set_up()`, and
then used any number of times to generate statements for a DatabaseTarget.

Rollback statements come from, in order of precedence:

1. the inverse changes returned by `create_inverses()`; the rollback is the
   concatenation of their forward statements in reverse order,
2. `generate_custom_rollback()`, for changes whose `has_custom_rollback()`
   returns True,
3. nothing, in which case `RollbackImpossibleError` is raised.

Generated statements never depend on data in the database: forward and
rollback scripts may be produced long before they run, against a database
in a different state.
"""
import hashlib
import json
import logging
import weakref
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional, Set, Tuple

from .database import DatabaseTarget, LiveDatabase
from .exceptions import (
    ChangeNotReadyError,
    RollbackImpossibleError,
    SetupError,
    StatementExecutionError,
    StatementNotSupportedError,
    UnsupportedChangeError,
)
from .statements import SqlStatement, StatementSet
from .structure import DatabaseObject

logger = logging.getLogger(__name__)

# Bumped whenever the canonical serialization or the hash algorithm changes.
CHECKSUM_VERSION = 1


def compute_checksum(text: str) -> str:
    """
    Hashes canonical text into a versioned checksum string ("<version>:<sha256 hex>").
    """
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"{CHECKSUM_VERSION}:{digest}"


def _normalize(value: Any) -> Any:
    """Converts configuration values into JSON-compatible primitives."""
    if hasattr(value, "to_dict"):
        return _normalize(value.to_dict())
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize(v) for v in value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class ChangeState(Enum):
    NEW = "new"
    READY = "ready"
    FAILED = "failed"


class Change(ABC):
    """
    Base class of every change kind.

    Subclasses declare:
        change_name (str): Stable kind identifier, e.g. 'addColumn'.
        tag_name (str): Name used for the change in changelog documents.
        SERIALIZED_FIELDS (Tuple[str, ...]): Attribute names making up the
            structural representation, in checksum order.

    and implement `validate()`, `build_statements()` and `affected_objects()`.
    """
    change_name: str = None
    tag_name: str = None
    SERIALIZED_FIELDS: Tuple[str, ...] = ()

    def __init__(self):
        self._state = ChangeState.NEW
        self._setup_error: Optional[SetupError] = None
        self._change_set_ref = None

    # --- configuration and setup -------------------------------------------

    @classmethod
    def from_params(cls, params: dict, **context) -> "Change":
        """
        Builds a change from changelog document fields. The result still
        needs `set_up()`.

        Subclasses with nested parameters override this; the default passes
        the fields straight to the constructor.
        """
        return cls(**params)

    @property
    def state(self) -> ChangeState:
        return self._state

    def validate(self) -> List[str]:
        """
        Returns a list of configuration problems. Empty when the change is usable.
        """
        return []

    def set_up(self):
        """
        Validates the configuration once, before any statement generation.

        Never touches a database. Calling it again on a ready change is a no-op;
        calling it on a change whose setup already failed raises the same error.

        Raises:
            SetupError: If required parameters are missing or inconsistent.
        """
        if self._state is ChangeState.READY:
            return
        if self._state is ChangeState.FAILED:
            raise self._setup_error
        try:
            problems = self.validate()
        except SetupError as e:
            problems = [str(e)]
        if problems:
            self._state = ChangeState.FAILED
            self._setup_error = SetupError(
                f"Invalid {self.tag_name} change: {'; '.join(problems)}", change=self
            )
            logger.error(str(self._setup_error))
            raise self._setup_error
        self._state = ChangeState.READY
        logger.debug(f"Change set up: {self.confirmation_message()}")

    def _require_ready(self):
        if self._state is not ChangeState.READY:
            raise ChangeNotReadyError(
                f"Change {self.tag_name} must be set up before generating statements "
                f"(state: {self._state.value})",
                change=self,
            )

    # --- owning change set -------------------------------------------------

    @property
    def change_set(self):
        """The owning ChangeSet, if it is still alive."""
        return self._change_set_ref() if self._change_set_ref is not None else None

    @change_set.setter
    def change_set(self, change_set):
        self._change_set_ref = weakref.ref(change_set) if change_set is not None else None

    # --- structure -----------------------------------------------------------

    @abstractmethod
    def build_statements(self) -> List[SqlStatement]:
        """
        Returns the dialect-neutral statements applying this change.
        """
        pass

    @abstractmethod
    def affected_objects(self) -> Set[DatabaseObject]:
        """
        Returns the database objects (tables, columns, indexes) this change touches.
        """
        pass

    def serialize(self) -> List[Tuple[str, Any]]:
        """
        Returns the canonical structural representation: (attribute, value)
        pairs in `SERIALIZED_FIELDS` order with JSON-compatible values.
        """
        return [(field, _normalize(getattr(self, field))) for field in self.SERIALIZED_FIELDS]

    def to_dict(self) -> dict:
        """Returns the change as a changelog document entry."""
        params = {name: value for name, value in self.serialize() if value not in (None, [], {})}
        return {self.tag_name: params}

    def checksum(self) -> str:
        """
        Computes the deterministic content hash of this change.

        Only the tag name and the serialized fields contribute, so the value is
        independent of the target database, of runtime state, and of the process.
        """
        canonical = json.dumps([self.tag_name, self.serialize()],
                               separators=(",", ":"), ensure_ascii=False)
        return compute_checksum(canonical)

    def confirmation_message(self) -> str:
        """Human-readable description used in logs and reports."""
        return self.change_name

    def __repr__(self):
        fields = ", ".join(f"{name}={value!r}" for name, value in self.serialize())
        return f"{type(self).__name__}({fields})"

    # --- forward generation ----------------------------------------------------

    def generate_statements(self, target: DatabaseTarget) -> StatementSet:
        """
        Renders the forward statements of this change for a target.

        Raises:
            ChangeNotReadyError: If `set_up()` has not succeeded.
            UnsupportedChangeError: If the target cannot express the change.
        """
        self._require_ready()
        rendered = []
        for statement in self.build_statements():
            try:
                rendered.append(target.render(statement))
            except StatementNotSupportedError as e:
                raise UnsupportedChangeError(
                    f"{self.confirmation_message()} is not supported on {target.short_name}: {e}",
                    change=self, target_name=target.short_name,
                ) from e
        return StatementSet(rendered)

    # --- rollback generation ---------------------------------------------------

    def create_inverses(self) -> Optional[List["Change"]]:
        """
        Returns the changes undoing this one, or None when there is no clean inverse.
        """
        return None

    def has_custom_rollback(self) -> bool:
        """Tells whether `generate_custom_rollback()` is implemented for this configuration."""
        return False

    def generate_custom_rollback(self, target: DatabaseTarget) -> StatementSet:
        raise RollbackImpossibleError(
            f"No rollback defined for {self.confirmation_message()}", change=self
        )

    def can_roll_back(self) -> bool:
        return self.create_inverses() is not None or self.has_custom_rollback()

    def generate_rollback_statements(self, target: DatabaseTarget) -> StatementSet:
        """
        Renders the statements undoing this change for a target.

        Raises:
            ChangeNotReadyError: If `set_up()` has not succeeded.
            RollbackImpossibleError: If the change has no inverse and no custom rollback.
            UnsupportedChangeError: If the target cannot express the rollback.
        """
        self._require_ready()
        inverses = self.create_inverses()
        if inverses is not None:
            for inverse in inverses:
                inverse.set_up()
            return StatementSet.concat(
                inverse.generate_statements(target) for inverse in reversed(inverses)
            )
        if self.has_custom_rollback():
            return self.generate_custom_rollback(target)
        raise RollbackImpossibleError(
            f"No inverse or rollback defined for {self.confirmation_message()}", change=self
        )

    # --- execution and serialization -------------------------------------------

    def execute_statements(self, db: LiveDatabase, target: DatabaseTarget):
        """Generates the forward statements for `target` and runs them against `db`."""
        execute_statement_set(db, self, self.generate_statements(target))

    def execute_rollback_statements(self, db: LiveDatabase, target: DatabaseTarget):
        """Generates the rollback statements for `target` and runs them against `db`."""
        execute_statement_set(db, self, self.generate_rollback_statements(target))

    def save_statements(self, target: DatabaseTarget, sink):
        """Appends the forward statements to a script sink."""
        sink.write_statements(self.generate_statements(target))

    def save_rollback_statements(self, target: DatabaseTarget, sink):
        """Appends the rollback statements to a script sink."""
        sink.write_statements(self.generate_rollback_statements(target))


def execute_statement_set(db: LiveDatabase, change: Change, statements: StatementSet):
    """
    Runs already generated statements of a change in order.

    Raises:
        StatementExecutionError: On the first statement the database rejects,
                                 with the change attached.
    """
    for sql in statements:
        logger.debug(f"Executing statement for '{change.confirmation_message()}': {sql}")
        try:
            db.execute(sql)
        except StatementExecutionError as e:
            if e.change is None:
                e.change = change
            raise
        except Exception as e:
            raise StatementExecutionError(
                f"Statement failed for {change.confirmation_message()}: {e}", sql=sql, change=change
            ) from e
