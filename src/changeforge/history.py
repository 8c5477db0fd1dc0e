# src/changeforge/history.py
"""
History of applied change sets.

The coordinator reads the history to decide what already ran and writes to it
after every successful apply or revert. `ClickHouseChangeHistory` stores the
records in a ClickHouse table; `InMemoryChangeHistory` keeps them in a dict.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from clickhouse_driver import Client

from .changeset import ChangeSet, ChangeSetIdentity

logger = logging.getLogger(__name__)


class ExecType(Enum):
    EXECUTED = "EXECUTED"
    RERAN = "RERAN"


@dataclass(frozen=True)
class RanChangeSet:
    """
    A history record: a change set that was applied.

    Attributes:
        identity (ChangeSetIdentity): The applied change set.
        checksum (str): Its checksum at the time it was applied.
        applied_at (datetime): When it was (last) applied.
        order_executed (int): Position in the overall execution order.
        exec_type (ExecType): Whether it ran for the first time or was re-run.
        description (str): Summary of its changes.
    """
    identity: ChangeSetIdentity
    checksum: str
    applied_at: datetime
    order_executed: int
    exec_type: ExecType = ExecType.EXECUTED
    description: str = ""


def describe(change_set: ChangeSet) -> str:
    return "; ".join(change.confirmation_message() for change in change_set.changes)


class ChangeHistory(ABC):
    """
    Abstract Base Class (ABC) for storage of applied change set records.
    """
    def ensure_table(self):
        """Creates the underlying storage if needed. No-op by default."""
        pass

    @abstractmethod
    def get_ran_change_sets(self) -> Dict[ChangeSetIdentity, RanChangeSet]:
        """
        Returns the applied change sets keyed by identity.
        """
        pass

    @abstractmethod
    def mark_ran(self, change_set: ChangeSet, exec_type: ExecType = ExecType.EXECUTED) -> RanChangeSet:
        """
        Records that a change set was applied, with its current checksum.
        """
        pass

    @abstractmethod
    def remove_ran(self, change_set: ChangeSet):
        """
        Forgets a change set after it was rolled back.
        """
        pass

    def get_ran(self, identity: ChangeSetIdentity) -> Optional[RanChangeSet]:
        return self.get_ran_change_sets().get(identity)


class InMemoryChangeHistory(ChangeHistory):
    """Keeps history records in memory. Used for tests and offline script generation."""

    def __init__(self):
        self._records: Dict[ChangeSetIdentity, RanChangeSet] = {}
        self._order = 0

    def get_ran_change_sets(self):
        return dict(self._records)

    def mark_ran(self, change_set, exec_type=ExecType.EXECUTED):
        self._order += 1
        record = RanChangeSet(change_set.identity, change_set.checksum(), datetime.now(),
                              self._order, exec_type, describe(change_set))
        self._records[change_set.identity] = record
        logger.debug(f"Recorded {change_set.identity} as {exec_type.value}")
        return record

    def remove_ran(self, change_set):
        self._records.pop(change_set.identity, None)
        logger.debug(f"Removed history record for {change_set.identity}")


class ClickHouseChangeHistory(ChangeHistory):
    """
    Stores history records in a ClickHouse table.

    Re-runs replace the previous record of the same change set, and rollbacks
    delete it, so the table holds at most one row per applied change set.

    Attributes:
        client (clickhouse_driver.Client): The ClickHouse database client instance.
        table_name (str): The name of the history table in the database.
    """
    def __init__(self, host: str, port: int, user: str, password: str, database: str,
                 table_name: str = "changelog_history", client: Optional[Client] = None):
        """
        Initializes the history with ClickHouse connection details.

        Args:
            host (str): The hostname or IP address of the ClickHouse server.
            port (int): The port number for the ClickHouse server.
            user (str): The username for database authentication.
            password (str): The password for database authentication.
            database (str): The name of the database to connect to.
            table_name (str, optional): The name of the history table.
            client (Client, optional): An existing client to use instead of opening a new one.
        """
        self.client = client or Client(host=host, user=user, password=password, database=database, port=port)
        self.table_name = table_name
        logger.debug(f"ClickHouseChangeHistory initialized for database '{database}' on '{host}:{port}' with table '{table_name}'.")

    def ensure_table(self):
        """
        Creates the history table if it does not already exist.
        """
        try:
            self.client.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                change_set_id String,
                author String,
                changelog_path String,
                checksum String,
                applied_at DateTime,
                order_executed UInt32,
                exec_type String,         -- EXECUTED, RERAN
                description String
            ) ENGINE = MergeTree()
            ORDER BY (order_executed, applied_at)
            """)
            logger.info(f"History table '{self.table_name}' ensured to exist.")
        except Exception as e:
            logger.error(f"Failed to create or ensure history table '{self.table_name}': {e}")
            raise

    def get_ran_change_sets(self):
        try:
            rows = self.client.execute(f"""
                SELECT change_set_id, author, changelog_path, checksum, applied_at,
                       order_executed, exec_type, description
                FROM {self.table_name}
                ORDER BY order_executed
            """)
        except Exception as e:
            logger.error(f"Failed to read history table '{self.table_name}': {e}")
            raise
        records = {}
        for row in rows:
            identity = ChangeSetIdentity(row[0], row[1], row[2])
            records[identity] = RanChangeSet(identity, row[3], row[4], row[5], ExecType(row[6]), row[7])
        logger.debug(f"Retrieved {len(records)} applied change set(s) from '{self.table_name}'.")
        return records

    def _next_order(self) -> int:
        rows = self.client.execute(f"SELECT max(order_executed) FROM {self.table_name}")
        return (rows[0][0] or 0) + 1 if rows else 1

    def _delete(self, identity: ChangeSetIdentity):
        # Mutation, not a lightweight DELETE FROM; mutations_sync=1 blocks until it is applied
        self.client.execute(f"""
            ALTER TABLE {self.table_name} DELETE
            WHERE change_set_id = %(change_set_id)s AND author = %(author)s AND changelog_path = %(changelog_path)s
        """, {
            "change_set_id": identity.id,
            "author": identity.author,
            "changelog_path": identity.file_path,
        }, settings={"mutations_sync": 1})

    def mark_ran(self, change_set, exec_type=ExecType.EXECUTED):
        identity = change_set.identity
        try:
            if exec_type is ExecType.RERAN:
                self._delete(identity)
            record = RanChangeSet(identity, change_set.checksum(), datetime.now().replace(microsecond=0),
                                  self._next_order(), exec_type, describe(change_set))
            self.client.execute(
                f"INSERT INTO {self.table_name} (change_set_id, author, changelog_path, checksum, "
                f"applied_at, order_executed, exec_type, description) VALUES",
                [(identity.id, identity.author, identity.file_path, record.checksum,
                  record.applied_at, record.order_executed, exec_type.value, record.description)],
            )
            logger.info(f"Recorded change set {identity} as {exec_type.value}.")
            return record
        except Exception as e:
            logger.error(f"Failed to record change set {identity}: {e}")
            raise

    def remove_ran(self, change_set):
        try:
            self._delete(change_set.identity)
            logger.info(f"Removed history record for change set {change_set.identity}.")
        except Exception as e:
            logger.error(f"Failed to remove history record for {change_set.identity}: {e}")
            raise
