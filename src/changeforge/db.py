# src/changeforge/db.py
from .database import LiveDatabase
from .exceptions import StatementExecutionError
from clickhouse_driver import Client
import traceback
import logging

logger = logging.getLogger(__name__)


class ClickHouseDatabase(LiveDatabase):
    """
    Implements the LiveDatabase interface for ClickHouse.

    The client connects lazily on the first statement; `release()` closes the
    connection at the end of a run. ClickHouse has no DDL transactions, so
    every statement commits on its own.
    """
    def __init__(self, host: str, port: int, user: str, password: str, database: str, client: Client = None):
        """
        Initializes the ClickHouseDatabase with database connection parameters.

        Args:
            host (str): The hostname or IP address of the ClickHouse server.
            port (int): The port number for the ClickHouse server.
            user (str): The username for database authentication.
            password (str): The password for database authentication.
            database (str): The name of the database to connect to.
            client (Client, optional): An existing client to use instead of opening a new one.
        """
        self.client = client or Client(
            host=host, port=port, user=user, password=password, database=database
        )
        self.description = f"{user}@{host}:{port}/{database}"
        self._held = False
        logger.info(f"ClickHouseDatabase initialized for {self.description}")

    def acquire(self):
        if self._held:
            raise RuntimeError(f"ClickHouse connection {self.description} is already in use by another run")
        self._held = True
        logger.debug(f"Acquired ClickHouse connection {self.description}")

    def release(self):
        self._held = False
        try:
            self.client.disconnect()
        finally:
            logger.debug(f"Released ClickHouse connection {self.description}")

    def execute(self, sql: str):
        """
        Executes one SQL statement against the connected ClickHouse database.

        Args:
            sql (str): The SQL statement to execute.

        Raises:
            StatementExecutionError: If the SQL execution fails.
        """
        logger.debug(f"SQL to execute:\n{sql[:200]}")
        try:
            self.client.execute(sql)
        except Exception as e:
            logger.error(f"Failed to execute SQL: {e}")
            logger.debug(f"SQL that failed:\n{sql}")
            logger.debug(traceback.format_exc())
            raise StatementExecutionError(f"ClickHouse rejected statement: {e}", sql=sql) from e
