# src/changeforge/database.py

from abc import ABC, abstractmethod
from typing import Callable, Dict, Type

from .exceptions import StatementNotSupportedError
from .statements import SqlStatement, RawSqlStatement


class DatabaseTarget(ABC):
    """
    Abstract Base Class (ABC) defining the rendering capability of one database product.

    A target turns dialect-neutral statements into SQL text. It never executes
    anything and holds no connection, so the same target can render statements
    long before (or without) any live database being involved.

    Subclasses register one renderer per statement type in `_renderers()`.
    Statement types without a renderer are reported as unsupported.
    """
    short_name: str = "abstract"

    def __init__(self):
        self._renderer_map: Dict[Type[SqlStatement], Callable[[SqlStatement], str]] = {
            RawSqlStatement: lambda statement: statement.sql,
        }
        self._renderer_map.update(self._renderers())

    @abstractmethod
    def _renderers(self) -> Dict[Type[SqlStatement], Callable[[SqlStatement], str]]:
        """
        Returns the mapping of statement type to render function for this dialect.
        """
        pass

    def supports(self, statement: SqlStatement) -> bool:
        """
        Tells whether this target can render the given statement.

        Renderers may still reject a statement whose options the dialect cannot
        express (see `render`).
        """
        return type(statement) in self._renderer_map

    def render(self, statement: SqlStatement) -> str:
        """
        Renders a dialect-neutral statement to SQL text.

        Args:
            statement (SqlStatement): The statement to render.

        Returns:
            str: The SQL for this database product, without a trailing delimiter.

        Raises:
            StatementNotSupportedError: If this database product cannot express the statement.
        """
        renderer = self._renderer_map.get(type(statement))
        if renderer is None:
            raise StatementNotSupportedError(
                f"{type(statement).__name__} is not supported on {self.short_name}",
                statement=statement, target_name=self.short_name,
            )
        return renderer(statement)

    def __repr__(self):
        return f"{type(self).__name__}()"


class LiveDatabase(ABC):
    """
    Abstract Base Class (ABC) defining a live database connection statements run against.

    The execution coordinator holds a live database exclusively for the whole
    run: `acquire()` is called before the first statement and `release()` on
    every exit path.
    """
    @abstractmethod
    def execute(self, sql: str):
        """
        Executes one SQL statement.

        Raises:
            StatementExecutionError: If the database rejects the statement.
        """
        pass

    def acquire(self):
        """Prepares the connection for exclusive use. No-op by default."""
        pass

    def release(self):
        """Releases the connection after a run. No-op by default."""
        pass
