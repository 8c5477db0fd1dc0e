"""
changeforge: declarative database changes with rollback, checksums and history.
"""
from .change import Change, ChangeState
from .changeset import ChangeSet, ChangeSetIdentity, ChangeSetModified
from .coordinator import ChangeSetStatus, ExecutionCoordinator, RunReport
from .database import DatabaseTarget, LiveDatabase
from .dialects import ClickHouseTarget, GenericSqlTarget, get_target
from .factory import ChangeFactory
from .statements import StatementSet

__version__ = "0.2.0"
