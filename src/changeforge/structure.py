# src/changeforge/structure.py
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .exceptions import SetupError


@dataclass(frozen=True)
class DatabaseObject:
    """
    Base for database objects a change affects.

    Frozen so that objects can be collected in sets for impact analysis.
    """
    name: str


@dataclass(frozen=True)
class Table(DatabaseObject):
    schema_name: Optional[str] = None


@dataclass(frozen=True)
class Column(DatabaseObject):
    table: Table = None


@dataclass(frozen=True)
class Index(DatabaseObject):
    table: Table = None
    columns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ColumnConfig:
    """
    Declared definition of a column, as used by create_table and add_column.

    Attributes:
        name (str): Column name.
        type (str): Database-agnostic type name (e.g. 'int', 'varchar(255)').
                    Targets map it to their own type names.
        nullable (bool): Whether NULL values are allowed.
        primary_key (bool): Whether the column belongs to the primary key.
        default_value (Any): Literal default, or None for no default.
    """
    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    default_value: Any = None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "ColumnConfig":
        """
        Raises:
            SetupError: If `params` is not a mapping.
        """
        if not isinstance(params, dict):
            raise SetupError(f"column definition must be a mapping, got {params!r}")
        # Changelogs may wrap each entry as {"column": {...}}
        if "column" in params and isinstance(params["column"], dict):
            params = params["column"]
        return cls(
            name=params.get("name"),
            type=params.get("type"),
            nullable=bool(params.get("nullable", True)),
            primary_key=bool(params.get("primary_key", False)),
            default_value=params.get("default_value"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "type": self.type}
        if not self.nullable:
            data["nullable"] = False
        if self.primary_key:
            data["primary_key"] = True
        if self.default_value is not None:
            data["default_value"] = self.default_value
        return data
