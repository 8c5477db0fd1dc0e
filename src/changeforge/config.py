# src/changeforge/config.py

import yaml
import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = {
    "host": "localhost",
    "port": 9000,
    "user": "default",
    "password": "",
    "database": "default",
}


def load_yaml(filepath: str) -> dict:
    """
    Loads and parses a YAML file safely.

    Args:
        filepath (str): The absolute or relative path to the YAML file to load.

    Returns:
        dict: The parsed content of the YAML file as a dictionary.

    Raises:
        FileNotFoundError: If the specified YAML file does not exist.
        ValueError: If there's an error parsing the YAML content.
    """
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            content = yaml.safe_load(f)
            logger.debug(f"Successfully loaded YAML file: {filepath}")
            return content if isinstance(content, dict) else {}
    except FileNotFoundError:
        logger.error(f"Configuration file not found: {filepath}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file {filepath}: {e}")
        raise ValueError(f"Error parsing YAML file {filepath}: {e}")


def load_config(base_dir: Optional[str] = None) -> dict:
    """
    Loads the main application configuration from 'config.yaml'.

    Args:
        base_dir (Optional[str]): Directory holding 'config.yaml'. Defaults to the
                                  current working directory.

    Returns:
        dict: The configuration, with a 'database' section filled with defaults
              for missing connection parameters. A missing file yields defaults only.

    Raises:
        ValueError: If there's an error parsing 'config.yaml'.
    """
    config_path = os.path.join(base_dir or os.getcwd(), "config.yaml")
    if not os.path.isfile(config_path):
        logger.warning(f"No configuration file at {config_path}. Using defaults.")
        config = {}
    else:
        logger.info(f"Loading main configuration from: {config_path}")
        config = load_yaml(config_path)
    database = DEFAULT_DATABASE.copy()
    database.update(config.get("database") or {})
    config["database"] = database
    config.setdefault("migration", {})
    return config


def load_variables(env: str, base_dir: Optional[str] = None) -> dict:
    """
    Loads environment-specific template variables by merging common variables
    with variables specific to the given environment.

    It reads 'variables/common.yaml' and 'variables/{env}.yaml' relative to
    `base_dir` (default: the current working directory). Missing files
    contribute no variables.

    Args:
        env (str): The name of the environment (e.g., 'dev', 'uat', 'prd').
        base_dir (Optional[str]): Directory holding the 'variables' folder.

    Returns:
        dict: A dictionary containing the merged variables for the specified environment.

    Raises:
        ValueError: If there's an error parsing any of the YAML variable files.
    """
    root = base_dir or os.getcwd()
    common_vars_path = os.path.join(root, "variables", "common.yaml")
    env_vars_path = os.path.join(root, "variables", f"{env}.yaml")

    result = {}
    for label, path in (("common", common_vars_path), (env, env_vars_path)):
        if os.path.isfile(path):
            logger.info(f"Loading {label} variables from: {path}")
            result.update(load_yaml(path))
        else:
            logger.debug(f"No {label} variables file at {path}")
    logger.info(f"Loaded {len(result)} variable(s) for environment '{env}'.")
    return result


@dataclass
class MigrationSettings:
    """
    Engine settings from the 'migration' section of config.yaml.

    Attributes:
        dialect (str): Name of the DatabaseTarget statements are rendered for.
        history_table (str): Table recording applied change sets.
        on_drift (str): 'warn' or 'fail' when an applied change set was modified.
        contexts (List[str]): Contexts selected when none are given on the command line.
        max_workers (int): Threads used to generate statements for dry runs.
    """
    dialect: str = "clickhouse"
    history_table: str = "changelog_history"
    on_drift: str = "warn"
    contexts: List[str] = field(default_factory=list)
    max_workers: int = 4

    @classmethod
    def from_config(cls, config: dict) -> "MigrationSettings":
        section = config.get("migration") or {}
        contexts = section.get("contexts") or []
        if isinstance(contexts, str):
            contexts = [c for c in contexts.split(",") if c.strip()]
        settings = cls(
            dialect=section.get("dialect", cls.dialect),
            history_table=section.get("history_table", cls.history_table),
            on_drift=section.get("on_drift", cls.on_drift),
            contexts=list(contexts),
            max_workers=int(section.get("max_workers", cls.max_workers)),
        )
        if settings.on_drift not in ("warn", "fail"):
            raise ValueError(f"migration.on_drift must be 'warn' or 'fail', got '{settings.on_drift}'")
        logger.debug(f"Migration settings: {settings}")
        return settings
