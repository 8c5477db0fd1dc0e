import click
import os
import sys
import logging
from .config import load_config, load_variables, MigrationSettings
from .changelog_parser import ChangelogParser
from .coordinator import ExecutionCoordinator, RunReport
from .db import ClickHouseDatabase
from .dialects import get_target
from .exceptions import ChangeForgeError
from .history import ClickHouseChangeHistory
from .sink import ScriptSink

# Configure basic logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


CHANGELOG_OPTIONS = [
    click.option("--env", default="dev", help="Environment name (e.g., dev, uat, prd) for template variables."),
    click.option("--change-log-file", default="master-changelog.yaml", help="Path to the master changelog YAML file."),
    click.option("--contexts", default=None, help="Comma-separated contexts to run. Overrides the config."),
    click.option("--dialect", default=None, help="Database dialect (clickhouse, generic). Overrides the config."),
    click.option("--db-host", default=None, help="Overrides the database host from config."),
    click.option("--db-port", type=int, default=None, help="Overrides the database port from config."),
    click.option("--db-name", default=None, help="Overrides the database name from config."),
    click.option("--db-user", default=None, help="Overrides the database user from config."),
    click.option("--db-password", default=None, help="Overrides the database password from config."),
]


def changelog_options(func):
    """Adds the options shared by every command reading a changelog and connecting to the database."""
    for option in reversed(CHANGELOG_OPTIONS):
        func = option(func)
    return func


class Workspace:
    """
    Everything a command needs: configuration, settings and the parsed change sets.
    """
    def __init__(self, env, change_log_file, contexts=None, dialect=None, db_host=None, db_port=None,
                 db_name=None, db_user=None, db_password=None):
        self.changelog_path = os.path.abspath(change_log_file)
        if not os.path.isfile(self.changelog_path):
            logger.error(f"Master changelog file not found: {self.changelog_path}")
            raise FileNotFoundError(f"Master changelog file not found: {self.changelog_path}")
        self.base_dir = os.path.dirname(self.changelog_path)

        self.config = load_config(self.base_dir)
        self.db_config = self.config['database'].copy()
        # Apply overrides from CLI options if provided
        if db_host:
            self.db_config['host'] = db_host
        if db_port:
            self.db_config['port'] = db_port
        if db_name:
            self.db_config['database'] = db_name
        if db_user:
            self.db_config['user'] = db_user
        if db_password:
            self.db_config['password'] = db_password

        self.settings = MigrationSettings.from_config(self.config)
        if dialect:
            self.settings.dialect = dialect
        if contexts is not None:
            self.settings.contexts = [c for c in contexts.split(",") if c.strip()]
        self.target = get_target(self.settings.dialect)

        variables = load_variables(env, self.base_dir)
        macros_dir = os.path.join(self.base_dir, "macros")
        parser = ChangelogParser(self.changelog_path, variables=variables,
                                 macros_dir=macros_dir if os.path.isdir(macros_dir) else None)
        self.change_sets = parser.get_change_sets()

    def history(self):
        history = ClickHouseChangeHistory(table_name=self.settings.history_table, **self.db_config)
        history.ensure_table()
        return history

    def database(self):
        return ClickHouseDatabase(**self.db_config)

    def coordinator(self, offline: bool = False):
        # Offline runs read no history: every change set counts as pending
        # for updates, and as applied (in changelog order) for rollbacks
        return ExecutionCoordinator(self.target,
                                    history=None if offline else self.history(),
                                    contexts=self.settings.contexts,
                                    on_drift=self.settings.on_drift,
                                    max_workers=self.settings.max_workers)


def _open_output(output_file):
    if output_file:
        return open(output_file, "w", encoding="utf-8")
    return click.get_text_stream("stdout")


def _report(report: RunReport):
    for modified in report.modified:
        logger.warning(str(modified))
    if report.succeeded:
        logger.info(report.summary())
        return
    logger.error(f"Failed change set: {report.failed}")
    logger.error(f"Cause: {report.error}")
    if report.not_attempted:
        logger.error(f"Not attempted: {', '.join(str(i) for i in report.not_attempted)}")
    logger.error(report.summary())
    sys.exit(1)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def main(verbose):
    """
    Main CLI for changeforge operations.

    This tool applies and rolls back declarative database changes defined in
    YAML changelogs, keeping a history table of applied change sets and
    detecting change sets that were modified after they were applied.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@main.command()
@changelog_options
def init(**options):
    """
    Creates the change set history table in the database.
    """
    try:
        workspace = Workspace(**options)
        workspace.history()
        logger.info(f"History table '{workspace.settings.history_table}' created or already exists in database "
                    f"'{workspace.db_config['database']}' on host '{workspace.db_config['host']}:{workspace.db_config['port']}'.")
    except (ChangeForgeError, OSError, ValueError) as e:
        logger.error(f"Initialization failed: {e}")
        sys.exit(1)


@main.command()
@changelog_options
def update(**options):
    """
    Applies pending change sets to the database, in changelog order.
    """
    try:
        workspace = Workspace(**options)
        coordinator = workspace.coordinator()
        report = coordinator.run(workspace.change_sets, db=workspace.database())
    except (ChangeForgeError, OSError, ValueError) as e:
        logger.error(f"Update failed: {e}")
        sys.exit(1)
    _report(report)


@main.command(name="update-sql")
@changelog_options
@click.option("--output-file", default=None, help="Write the script to this file instead of stdout.")
@click.option("--offline", is_flag=True, default=False, help="Do not read the history; treat every change set as pending.")
def update_sql(output_file, offline, **options):
    """
    Writes the SQL an update would execute, without executing it.
    """
    try:
        workspace = Workspace(**options)
        coordinator = workspace.coordinator(offline=offline)
        stream = _open_output(output_file)
        try:
            sink = ScriptSink(stream)
            report = coordinator.run(workspace.change_sets, sink=sink)
            sink.flush()
        finally:
            if output_file:
                stream.close()
    except (ChangeForgeError, OSError, ValueError) as e:
        logger.error(f"Dry run failed: {e}")
        sys.exit(1)
    _report(report)


@main.command()
@changelog_options
@click.option("--count", type=int, default=None, help="Roll back the last COUNT applied change sets.")
@click.option("--to-id", default=None, help="Roll back every change set applied after the one with this id.")
@click.option("--sql", "as_sql", is_flag=True, default=False, help="Write the rollback script instead of executing it.")
@click.option("--output-file", default=None, help="With --sql, write the script to this file instead of stdout.")
@click.option("--offline", is_flag=True, default=False, help="With --sql, do not read the history.")
@click.option("--best-effort", is_flag=True, default=False, help="Skip changes that cannot be rolled back.")
def rollback(count, to_id, as_sql, output_file, offline, best_effort, **options):
    """
    Rolls back applied change sets, most recently applied first.
    """
    if offline and not as_sql:
        raise click.UsageError("--offline requires --sql")
    try:
        workspace = Workspace(**options)
        coordinator = workspace.coordinator(offline=offline)
        selected = coordinator.select_for_rollback(workspace.change_sets, count=count, to_id=to_id)
        if as_sql:
            stream = _open_output(output_file)
            try:
                sink = ScriptSink(stream)
                report = coordinator.rollback_to(selected, sink=sink, best_effort=best_effort)
                sink.flush()
            finally:
                if output_file:
                    stream.close()
        else:
            report = coordinator.rollback_to(selected, db=workspace.database(), best_effort=best_effort)
    except (ChangeForgeError, OSError, ValueError) as e:
        logger.error(f"Rollback failed: {e}")
        sys.exit(1)
    _report(report)


@main.command()
@changelog_options
def status(**options):
    """
    Lists every change set with its state: pending, applied or modified.
    """
    try:
        workspace = Workspace(**options)
        coordinator = workspace.coordinator()
        states = coordinator.status(workspace.change_sets)
    except (ChangeForgeError, OSError, ValueError) as e:
        logger.error(f"Status failed: {e}")
        sys.exit(1)
    for change_set, state in states:
        click.echo(f"{state.value:<9} {change_set.identity}")
    pending = sum(1 for _, state in states if state.value == "pending")
    click.echo(f"{pending} of {len(states)} change set(s) pending.")


@main.command()
@click.option("--env", default="dev", help="Environment name (e.g., dev, uat, prd) for template variables.")
@click.option("--change-log-file", default="master-changelog.yaml", help="Path to the master changelog YAML file.")
def checksums(env, change_log_file):
    """
    Prints the checksum of every change set. Does not connect to the database.
    """
    try:
        workspace = Workspace(env, change_log_file)
    except (ChangeForgeError, OSError, ValueError) as e:
        logger.error(f"Could not read changelog: {e}")
        sys.exit(1)
    for change_set in workspace.change_sets:
        click.echo(f"{change_set.checksum()}  {change_set.identity}")


@main.command()
def help():
    """
    Displays the help message for the main CLI and its subcommands.
    """
    click.echo(main.get_help(click.Context(main)))


if __name__ == "__main__":
    main()
