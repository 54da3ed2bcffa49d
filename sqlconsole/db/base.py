"""Base database adapter.

An adapter owns the SQLAlchemy engine for one connection descriptor and
isolates everything dialect specific that the session and the query
executor need: URL building, database switching, plan capture, splitting a
batch into result sets, server message and error extraction, and
driver-level cancellation.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL
from sqlalchemy.pool import NullPool

from sqlconsole.cancellation import CancellationToken
from sqlconsole.config.models import ConnectionInfo
from sqlconsole.db.messages import ServerError
from sqlconsole.exceptions import DatabaseError, QueryExecutionError

logger = logging.getLogger(__name__)


@dataclass
class BatchContext:
    """Position of the statement currently running inside a batch."""
    statement_index: int = 0
    statement_line: Optional[int] = None


class BaseAdapter(ABC):
    """Base class for database adapters."""

    def __init__(self, info: ConnectionInfo) -> None:
        """Initialize database adapter.

        Args:
            info: Connection descriptor.
        """
        self.info = info
        self._engine: Optional[Engine] = None

    @abstractmethod
    def build_url(self) -> URL:
        """Build the SQLAlchemy URL for this connection.

        Returns:
            SQLAlchemy URL instance.
        """
        pass

    @abstractmethod
    def get_driver_name(self) -> str:
        """Get the driver name for this adapter.

        Returns:
            Driver name string.
        """
        pass

    def build_connection_string(self) -> str:
        """Render the connection URL, credentials included."""
        return self.build_url().render_as_string(hide_password=False)

    def get_engine(self) -> Engine:
        """Get or create SQLAlchemy engine.

        Sessions hold exactly one connection for their whole lifetime, so
        pooling is disabled and closing a connection really closes it.

        Returns:
            SQLAlchemy engine instance.

        Raises:
            DatabaseError: If engine creation fails.
        """
        if self._engine is None:
            try:
                engine_args: Dict[str, Any] = {
                    'poolclass': NullPool,
                    'isolation_level': 'AUTOCOMMIT',
                    'echo': False,
                }
                engine_args.update(self._get_engine_options())

                self._engine = create_engine(self.build_url(), **engine_args)

            except Exception as e:
                raise DatabaseError(
                    f"Failed to create database engine: {e}",
                    database_type=self.info.type.value,
                ) from e

        return self._engine

    def _get_engine_options(self) -> Dict[str, Any]:
        """Get database-specific engine options."""
        return {}

    @property
    def default_database(self) -> Optional[str]:
        """Database a fresh connection starts in."""
        return self.info.database

    def use_database_statement(self, database_name: str) -> str:
        """Statement that switches the session's database context.

        Raises:
            DatabaseError: If the engine has no notion of switching databases.
        """
        raise DatabaseError(
            f"{self.get_driver_name()} connections cannot switch databases",
            database_type=self.info.type.value,
        )

    def current_database_query(self) -> Optional[str]:
        """Query returning the database the session is currently using."""
        return None

    def plan_capture_statements(self) -> Optional[Tuple[str, str]]:
        """Statements enabling and disabling execution plan capture."""
        return None

    def is_plan_column(self, column_name: str) -> bool:
        """Whether a result column carries an execution plan payload."""
        return False

    def run_batch(self, cursor: Any, sql: str, context: BatchContext) -> Iterator[None]:
        """Execute ``sql`` and yield once per result set positioned on ``cursor``.

        The default implementation sends the whole text in one round trip
        and walks the sets with ``nextset()``.
        """
        context.statement_index = 0
        context.statement_line = None
        cursor.execute(sql)
        yield
        while cursor.nextset():
            context.statement_index += 1
            yield

    def drain_messages(self, cursor: Any) -> List[str]:
        """Informational messages the server attached to the current result set."""
        return []

    def arm_execution(
        self,
        dbapi_connection: Any,
        cursor: Any,
        token: CancellationToken,
        timeout: Optional[float] = None,
    ) -> Callable[[], None]:
        """Wire cancellation and timeout to the driver for one batch.

        Returns:
            Callable that undoes the wiring.
        """
        return token.register(lambda: self.cancel(dbapi_connection, cursor))

    def cancel(self, dbapi_connection: Any, cursor: Any) -> None:
        """Abort the statement running on ``cursor``."""
        cursor.cancel()

    def parse_server_errors(self, error: BaseException, context: BatchContext) -> List[ServerError]:
        """Split a driver exception into discrete server error records.

        Returns:
            The records in server order, or an empty list when the exception
            did not come from the server.
        """
        return []

    def translate_error(self, error: BaseException, context: BatchContext) -> BaseException:
        """Map a driver exception onto :class:`QueryExecutionError` when possible."""
        if isinstance(error, QueryExecutionError):
            return error
        server_errors = self.parse_server_errors(error, context)
        if server_errors:
            return QueryExecutionError(str(error), server_errors=server_errors)
        return error

    def is_disconnect(self, error: BaseException, dbapi_connection: Any = None, cursor: Any = None) -> bool:
        """Whether ``error`` means the underlying connection is gone."""
        if self._engine is None:
            return False
        dialect = self._engine.dialect
        dbapi = dialect.loaded_dbapi
        if dbapi is None or not isinstance(error, dbapi.Error):
            return False
        return bool(dialect.is_disconnect(error, dbapi_connection, cursor))

    def close(self) -> None:
        """Dispose of the engine and cleanup resources."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
