# src/changeforge/factory.py
import logging
from typing import Dict, List, Optional, Type

from .change import Change
from .changes import (
    AddColumnChange,
    CreateIndexChange,
    CreateTableChange,
    DropColumnChange,
    DropIndexChange,
    DropTableChange,
    RawSqlChange,
    RenameColumnChange,
    RenameTableChange,
    SqlFileChange,
)
from .exceptions import SetupError, UnknownChangeError

logger = logging.getLogger(__name__)

BUILTIN_CHANGES: List[Type[Change]] = [
    CreateTableChange,
    DropTableChange,
    RenameTableChange,
    AddColumnChange,
    DropColumnChange,
    RenameColumnChange,
    CreateIndexChange,
    DropIndexChange,
    RawSqlChange,
    SqlFileChange,
]


class ChangeFactory:
    """
    Maps changelog tag names to change classes and builds ready-to-use changes.

    Registration is explicit: a class is only known to the factory once it is
    passed to `register()` (the built-in kinds are registered by default).
    """
    def __init__(self, change_classes: Optional[List[Type[Change]]] = None):
        self._registry: Dict[str, Type[Change]] = {}
        for change_cls in (BUILTIN_CHANGES if change_classes is None else change_classes):
            self.register(change_cls)

    def register(self, change_cls: Type[Change]):
        if not change_cls.tag_name:
            raise ValueError(f"{change_cls.__name__} does not declare a tag_name")
        existing = self._registry.get(change_cls.tag_name)
        if existing is not None and existing is not change_cls:
            logger.warning(f"Replacing change '{change_cls.tag_name}': {existing.__name__} -> {change_cls.__name__}")
        self._registry[change_cls.tag_name] = change_cls

    def tag_names(self) -> List[str]:
        return sorted(self._registry)

    def get(self, tag_name: str) -> Optional[Type[Change]]:
        return self._registry.get(tag_name)

    def create(self, tag_name: str, params: Optional[dict] = None, **context) -> Change:
        """
        Constructs a change from document fields and runs its setup.

        Args:
            tag_name (str): Tag the change is registered under (e.g. 'add_column').
            params (dict): Document fields, mapped directly to constructor parameters.
            **context: Extra information some changes need (e.g. `base_dir`,
                       `variables` and `macros_dir` for SQL file changes).

        Returns:
            Change: A change whose `set_up()` succeeded.

        Raises:
            UnknownChangeError: If no change is registered under `tag_name`.
            SetupError: If the fields do not match the change's parameters or fail validation.
        """
        change_cls = self._registry.get(tag_name)
        if change_cls is None:
            raise UnknownChangeError(tag_name, self.tag_names())
        try:
            change = change_cls.from_params(dict(params or {}), **context)
        except TypeError as e:
            raise SetupError(f"Invalid parameters for {tag_name} change: {e}") from e
        change.set_up()
        return change
