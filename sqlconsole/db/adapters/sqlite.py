"""SQLite database adapter."""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.engine import URL

from sqlconsole.cancellation import CancellationToken
from sqlconsole.config.models import ConnectionInfo
from sqlconsole.db.base import BaseAdapter, BatchContext
from sqlconsole.db.messages import ServerError
from sqlconsole.exceptions import DatabaseError

logger = logging.getLogger(__name__)

# VM instructions between two cancellation checks.
PROGRESS_INTERVAL = 1000


def split_statements(script: str) -> List[Tuple[int, str]]:
    """Split a script into complete statements.

    Semicolons inside literals, comments and trigger bodies do not split.

    Returns:
        ``(line, statement)`` pairs where ``line`` is the 1-based line the
        statement starts on within ``script``.
    """
    statements: List[Tuple[int, str]] = []
    statement_start = 0
    search_from = 0

    while True:
        end = script.find(";", search_from)
        if end == -1:
            break
        candidate = script[statement_start:end + 1]
        if sqlite3.complete_statement(candidate):
            _append_statement(statements, script, statement_start, candidate)
            statement_start = end + 1
        search_from = end + 1

    _append_statement(statements, script, statement_start, script[statement_start:])
    return statements


def _append_statement(statements: List[Tuple[int, str]], script: str, offset: int, candidate: str) -> None:
    stripped = candidate.strip()
    if not stripped or stripped == ";":
        return
    leading = len(candidate) - len(candidate.lstrip())
    line = script.count("\n", 0, offset + leading) + 1
    statements.append((line, stripped))


class SQLiteAdapter(BaseAdapter):
    """SQLite database adapter.

    SQLite executes one statement per call, so batches are split locally
    and every statement yields its own result set.
    """

    def __init__(self, info: ConnectionInfo) -> None:
        """Initialize SQLite adapter."""
        super().__init__(info)

        if not self.info.path:
            raise DatabaseError("SQLite requires a database file path", database_type="sqlite")

    def get_driver_name(self) -> str:
        """Get the driver name for SQLite."""
        return "sqlite"

    def build_url(self) -> URL:
        """Build SQLite connection URL.

        Relative paths resolve against the working directory and missing
        parent directories are created.
        """
        if self.info.path == ":memory:":
            return URL.create("sqlite")

        db_path = Path(self.info.path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path

        db_path.parent.mkdir(parents=True, exist_ok=True)

        return URL.create("sqlite", database=str(db_path))

    def _get_engine_options(self) -> Dict[str, Any]:
        """Get SQLite-specific engine options."""
        return {
            'connect_args': {
                'check_same_thread': False,  # statements run on worker threads
                'timeout': self.info.options.get('timeout', self.info.connect_timeout),
            }
        }

    @property
    def default_database(self) -> Optional[str]:
        return "main"

    def run_batch(self, cursor: Any, sql: str, context: BatchContext) -> Iterator[None]:
        for index, (line, statement) in enumerate(split_statements(sql)):
            context.statement_index = index
            context.statement_line = line
            cursor.execute(statement)
            yield

    def arm_execution(
        self,
        dbapi_connection: Any,
        cursor: Any,
        token: CancellationToken,
        timeout: Optional[float] = None,
    ) -> Callable[[], None]:
        """Abort through the progress handler, with ``interrupt()`` as backup.

        The progress handler closes the window between checking the token
        and the statement actually starting, which ``interrupt()`` alone
        cannot see. Timeouts are not enforced for SQLite.
        """
        dbapi_connection.set_progress_handler(
            lambda: 1 if token.is_cancelled else 0,
            PROGRESS_INTERVAL,
        )
        unregister = super().arm_execution(dbapi_connection, cursor, token, timeout)

        def disarm() -> None:
            unregister()
            dbapi_connection.set_progress_handler(None, 0)

        return disarm

    def cancel(self, dbapi_connection: Any, cursor: Any) -> None:
        dbapi_connection.interrupt()

    def parse_server_errors(self, error: BaseException, context: BatchContext) -> List[ServerError]:
        """Every SQLite error is a single record for the failing statement."""
        if not isinstance(error, sqlite3.Error):
            return []
        return [ServerError(
            message=str(error),
            number=getattr(error, "sqlite_errorcode", None),
            line=context.statement_line,
        )]
