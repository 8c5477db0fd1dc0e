# src/changeforge/sink.py
import logging
from datetime import datetime
from typing import Iterable, TextIO

logger = logging.getLogger(__name__)


class ScriptSink:
    """
    Append-only SQL script destination used for dry runs.

    Statements are written exactly in the order they are received, each
    terminated by `delimiter` on its own line. The sink never seeks or
    rewrites what it already wrote.
    """
    def __init__(self, stream: TextIO, delimiter: str = ";"):
        self.stream = stream
        self.delimiter = delimiter
        self.statement_count = 0

    def write_comment(self, text: str):
        for line in text.splitlines() or [""]:
            self.stream.write(f"-- {line}\n")

    def write_header(self, title: str, target_name: str):
        self.write_comment(title)
        self.write_comment(f"Dialect: {target_name}")
        self.write_comment(f"Generated at: {datetime.now().isoformat(timespec='seconds')}")
        self.stream.write("\n")

    def write_statements(self, statements: Iterable[str]):
        for sql in statements:
            self.stream.write(f"{sql}{self.delimiter}\n")
            self.statement_count += 1

    def write_change_set(self, change_set, generated, rollback: bool = False):
        """
        Writes the generated statements of one change set under a comment header.

        Args:
            change_set (ChangeSet): The change set the statements belong to.
            generated (List[Tuple[Change, StatementSet]]): Output of
                `ChangeSet.generate_statements` or `generate_rollback_statements`.
            rollback (bool): Whether these are rollback statements.
        """
        action = "Rollback" if rollback else "Changeset"
        self.write_comment(f"{action} {change_set.identity}")
        if change_set.comment:
            self.write_comment(change_set.comment)
        for change, statements in generated:
            self.write_statements(statements)
        self.stream.write("\n")
        logger.debug(f"Wrote {sum(len(s) for _, s in generated)} statement(s) for {change_set.identity}")

    def flush(self):
        self.stream.flush()
