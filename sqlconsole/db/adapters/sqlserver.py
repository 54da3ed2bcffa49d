"""Microsoft SQL Server adapter (SQLAlchemy ``mssql+pyodbc``)."""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.engine import URL

from sqlconsole.cancellation import CancellationToken
from sqlconsole.config.models import ConnectionInfo
from sqlconsole.db.base import BaseAdapter, BatchContext
from sqlconsole.db.messages import ServerError
from sqlconsole.exceptions import DatabaseError

logger = logging.getLogger(__name__)

SHOWPLAN_COLUMN = "Microsoft SQL Server 2005 XML Showplan"

# One ODBC diagnostic record as pyodbc renders it:
#   [42S02] [Microsoft][ODBC Driver 18 for SQL Server][SQL Server]Invalid object name 'x'. (208) (SQLExecDirectW)
# Records are joined with "; ".
_DIAGNOSTIC_PATTERN = re.compile(
    r"\[(?P<sqlstate>[0-9A-Z]{5})\]\s*(?:\[[^\]]*\])*?\[SQL Server\]"
    r"(?P<message>.*?)\s*\((?P<number>\d+)\)"
    r"(?=\s*(?:\(SQL\w+\))?\s*(?:;\s*\[|$))",
    re.DOTALL,
)
_VENDOR_PREFIX = re.compile(r"^(?:\[[^\]]*\])+\s*")


def parse_odbc_diagnostics(text: str) -> List[ServerError]:
    """Parse the server-originated records out of a pyodbc error string.

    ODBC does not surface the severity class, state or line of a record;
    SQLSTATE class ``01`` (warning) is mapped to class 10 and everything
    else to class 16 so errors and warnings still sort correctly.
    """
    records = []
    for match in _DIAGNOSTIC_PATTERN.finditer(text):
        sqlstate = match.group("sqlstate")
        records.append(ServerError(
            message=match.group("message").strip(),
            number=int(match.group("number")),
            severity=10 if sqlstate.startswith("01") else 16,
        ))
    return records


def strip_vendor_prefix(text: str) -> str:
    """Remove ``[Microsoft][ODBC Driver ..][SQL Server]`` tags from a message."""
    return _VENDOR_PREFIX.sub("", text)


def quote_identifier(name: str) -> str:
    """Bracket-quote a SQL Server identifier."""
    if not name:
        raise DatabaseError("Identifier cannot be empty", database_type="sqlserver")
    return "[" + name.replace("]", "]]") + "]"


class SQLServerAdapter(BaseAdapter):
    """SQL Server database adapter."""

    def __init__(self, info: ConnectionInfo) -> None:
        """Initialize SQL Server adapter."""
        super().__init__(info)

        if not self.info.server:
            raise DatabaseError("SQL Server requires a server name", database_type="sqlserver")

    def get_driver_name(self) -> str:
        """Get the driver name for SQL Server."""
        return "pyodbc"

    def build_url(self) -> URL:
        """Build SQL Server connection URL.

        Without a username the connection uses integrated security.
        """
        query: Dict[str, str] = {
            'driver': self.info.driver,
            'TrustServerCertificate': 'yes' if self.info.trust_server_certificate else 'no',
            'Encrypt': 'yes' if self.info.encrypt else 'no',
            'MARS_Connection': 'yes',
        }
        if self.info.application_name:
            query['APP'] = self.info.application_name
        if not self.info.username:
            query['Trusted_Connection'] = 'yes'
        query.update({key: str(value) for key, value in self.info.options.items()})

        return URL.create(
            "mssql+pyodbc",
            username=self.info.username,
            password=self.info.password,
            host=self.info.server,
            port=self.info.port,
            database=self.default_database,
            query=query,
        )

    def _get_engine_options(self) -> Dict[str, Any]:
        """Get SQL Server-specific engine options."""
        return {
            'connect_args': {
                'timeout': self.info.connect_timeout,
            },
        }

    @property
    def default_database(self) -> Optional[str]:
        return self.info.database or "master"

    def use_database_statement(self, database_name: str) -> str:
        return f"USE {quote_identifier(database_name)}"

    def current_database_query(self) -> Optional[str]:
        return "SELECT DB_NAME()"

    def plan_capture_statements(self) -> Optional[Tuple[str, str]]:
        return ("SET STATISTICS XML ON", "SET STATISTICS XML OFF")

    def is_plan_column(self, column_name: str) -> bool:
        return column_name == SHOWPLAN_COLUMN or "XML Showplan" in column_name

    def drain_messages(self, cursor: Any) -> List[str]:
        """Read PRINT / RAISERROR output pyodbc attached to the current result set."""
        messages = getattr(cursor, "messages", None) or []
        drained = []
        for entry in messages:
            text = entry[1] if isinstance(entry, tuple) and len(entry) > 1 else str(entry)
            drained.append(strip_vendor_prefix(text))
        return drained

    def arm_execution(
        self,
        dbapi_connection: Any,
        cursor: Any,
        token: CancellationToken,
        timeout: Optional[float] = None,
    ) -> Callable[[], None]:
        """Apply the query timeout and route cancellation to ``cursor.cancel()``."""
        previous_timeout = getattr(dbapi_connection, "timeout", 0)
        dbapi_connection.timeout = int(timeout or 0)
        unregister = super().arm_execution(dbapi_connection, cursor, token, timeout)

        def disarm() -> None:
            unregister()
            try:
                dbapi_connection.timeout = previous_timeout
            except Exception as e:
                logger.warning(f"Failed to restore query timeout: {e}")

        return disarm

    def parse_server_errors(self, error: BaseException, context: BatchContext) -> List[ServerError]:
        """pyodbc errors carry ``(sqlstate, diagnostics)`` in ``args``."""
        if len(error.args) < 2 or not isinstance(error.args[1], str):
            return []
        return parse_odbc_diagnostics(error.args[1])
