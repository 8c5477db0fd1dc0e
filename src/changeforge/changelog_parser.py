import os
import yaml
from typing import List, Set, Optional, Dict, Any
from .change import Change
from .changeset import ChangeSet, ChangeSetIdentity
from .exceptions import ChangelogParseError, SetupError, UnknownChangeError
from .factory import ChangeFactory
import logging

logger = logging.getLogger(__name__)

CHANGE_SET_KEYS = {"id", "author", "changes", "rollback", "always_run", "run_on_change", "contexts", "comment"}


class ChangelogParser:
    """
    Parses a master changelog YAML file and recursively processes included changelogs
    to build the ordered list of change sets they define.

    Change sets keep the order in which they appear, with included files expanded
    in place. Every change is constructed through the ChangeFactory and set up
    while parsing, so configuration errors surface before any database is touched.
    """
    def __init__(self, master_changelog_path: str,
                 factory: Optional[ChangeFactory] = None,
                 variables: Optional[Dict[str, Any]] = None,
                 macros_dir: Optional[str] = None):
        """
        Initializes the ChangelogParser.

        Args:
            master_changelog_path (str): The path to the main changelog YAML file.
            factory (Optional[ChangeFactory]): Maps change tags to change classes.
                                               Defaults to the built-in changes.
            variables (Optional[Dict[str, Any]]): Template variables for SQL file changes.
            macros_dir (Optional[str]): Directory of Jinja2 macros for SQL file changes.

        Raises:
            FileNotFoundError: If the master changelog file does not exist at the specified path.
        """
        if not os.path.isfile(master_changelog_path):
            logger.error(f"Master changelog file not found: {master_changelog_path}")
            raise FileNotFoundError(f"Master changelog file not found: {master_changelog_path}")

        self.master_changelog_path = os.path.abspath(master_changelog_path)
        self.factory = factory or ChangeFactory()
        self.variables = variables or {}
        self.macros_dir = macros_dir
        # Change set identities use file paths relative to the master changelog's directory.
        self.project_root = os.path.dirname(self.master_changelog_path)
        logger.debug(f"ChangelogParser initialized. Master changelog: {self.master_changelog_path}, Project root: {self.project_root}")

    def _load_yaml(self, filepath: str) -> Dict[str, Any]:
        """
        Loads and parses a YAML file safely.

        Raises:
            FileNotFoundError: If the specified YAML file does not exist.
            ChangelogParseError: If there's an error parsing the YAML content.
        """
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
                if not isinstance(content, dict):
                    logger.warning(f"YAML file {filepath} content is not a dictionary. Treating it as empty.")
                    return {}
                logger.debug(f"Successfully loaded YAML file: {filepath}")
                return content
        except FileNotFoundError:
            logger.error(f"Changelog file not found: {filepath}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML file {filepath}: {e}")
            raise ChangelogParseError(f"Error parsing YAML file {filepath}: {e}") from e

    def _build_change(self, entry: Any, filepath: str, where: str) -> Change:
        if not isinstance(entry, dict) or len(entry) != 1:
            raise ChangelogParseError(
                f"Invalid change entry in {filepath} for {where}: expected a single-key mapping, got {entry!r}"
            )
        tag_name, params = next(iter(entry.items()))
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ChangelogParseError(f"Parameters of '{tag_name}' in {filepath} for {where} must be a mapping.")
        try:
            return self.factory.create(tag_name, params,
                                       base_dir=os.path.dirname(filepath),
                                       variables=self.variables,
                                       macros_dir=self.macros_dir)
        except UnknownChangeError as e:
            raise ChangelogParseError(f"{e} (in {filepath} for {where})") from e
        except SetupError as e:
            raise ChangelogParseError(f"Change set {where} in {filepath}: {e}") from e

    def _build_change_set(self, entry: Dict[str, Any], filepath: str, rel_path: str) -> ChangeSet:
        change_set_id = entry.get("id")
        author = entry.get("author")
        if change_set_id is None or not author:
            raise ChangelogParseError(f"Change set in {filepath} is missing 'id' or 'author': {entry!r}")
        unknown = set(entry) - CHANGE_SET_KEYS
        if unknown:
            raise ChangelogParseError(
                f"Unknown key(s) {', '.join(sorted(unknown))} in change set '{change_set_id}' in {filepath}."
            )
        where = str(ChangeSetIdentity(str(change_set_id), str(author), rel_path))

        changes_raw = entry.get("changes") or []
        if not isinstance(changes_raw, list):
            raise ChangelogParseError(f"'changes' of change set {where} must be a list.")
        changes = [self._build_change(c, filepath, where) for c in changes_raw]

        rollback_changes = None
        rollback_raw = entry.get("rollback")
        if rollback_raw is not None:
            if isinstance(rollback_raw, str):
                # Shorthand: rollback SQL given inline
                rollback_raw = [{"sql": {"sql": rollback_raw}}]
            if not isinstance(rollback_raw, list):
                raise ChangelogParseError(f"'rollback' of change set {where} must be a list or an SQL string.")
            rollback_changes = [self._build_change(c, filepath, where) for c in rollback_raw]

        contexts = entry.get("contexts") or []
        if isinstance(contexts, str):
            contexts = contexts.split(",")

        return ChangeSet(change_set_id, author, rel_path,
                         changes=changes,
                         always_run=bool(entry.get("always_run", False)),
                         run_on_change=bool(entry.get("run_on_change", False)),
                         contexts=contexts,
                         comment=entry.get("comment"),
                         rollback_changes=rollback_changes)

    def _parse_file_recursively(self,
                                filepath: str,
                                change_sets: List[ChangeSet],
                                processed_files: Set[str]):
        """
        Recursively parses a changelog YAML file, appending its change sets in
        document order and expanding includes in place.

        Raises:
            ChangelogParseError: If an entry is malformed or a change is invalid.
            FileNotFoundError: If an included changelog does not exist.
        """
        rel_path = os.path.relpath(filepath, self.project_root)

        if rel_path in processed_files:
            logger.warning(f"Circular include detected: {rel_path}. Skipping to prevent infinite loop.")
            return
        processed_files.add(rel_path)
        logger.debug(f"Parsing changelog file: {filepath} (Relative: {rel_path})")

        data = self._load_yaml(filepath)
        entries = data.get("changeSets", []) or []
        if not isinstance(entries, list):
            raise ChangelogParseError(f"'changeSets' in {filepath} must be a list.")

        for entry in entries:
            if not isinstance(entry, dict):
                raise ChangelogParseError(f"Invalid entry in {filepath}: {entry!r}")

            if "include" in entry:
                include = entry["include"]
                file_ref = include.get("file") if isinstance(include, dict) else include
                if not file_ref:
                    raise ChangelogParseError(f"Include entry is missing 'file' in changelog: {filepath}.")
                full_yaml_path = os.path.join(os.path.dirname(filepath), file_ref)
                if not os.path.isfile(full_yaml_path):
                    error_msg = f"Included changelog file not found referenced by {filepath}: {full_yaml_path}."
                    logger.error(error_msg)
                    raise FileNotFoundError(error_msg)
                self._parse_file_recursively(os.path.abspath(full_yaml_path), change_sets, processed_files)
                logger.debug(f"Recursively parsed included YAML: {full_yaml_path}")
                continue

            change_set = self._build_change_set(entry, filepath, rel_path)
            change_sets.append(change_set)
            logger.debug(f"Added change set {change_set.identity} with {len(change_set.changes)} change(s)")

    def get_change_sets(self) -> List[ChangeSet]:
        """
        Parses the master changelog and all recursively included changelogs.

        Returns:
            List[ChangeSet]: Every change set, in execution order.

        Raises:
            ChangelogParseError: If a change set is malformed, invalid, or defined twice.
        """
        logger.info(f"Starting to parse change sets from master changelog: {self.master_changelog_path}")
        change_sets: List[ChangeSet] = []
        self._parse_file_recursively(self.master_changelog_path, change_sets, set())

        seen = set()
        for change_set in change_sets:
            if change_set.identity in seen:
                error_msg = f"Change set {change_set.identity} is defined more than once."
                logger.error(error_msg)
                raise ChangelogParseError(error_msg)
            seen.add(change_set.identity)

        logger.info(f"Finished parsing. Found {len(change_sets)} change set(s).")
        return change_sets
