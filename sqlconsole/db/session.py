"""Live database sessions."""

import asyncio
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.engine import Connection

from sqlconsole.config.models import ConnectionInfo
from sqlconsole.db.base import BaseAdapter
from sqlconsole.db.messages import MessageChannel
from sqlconsole.exceptions import ConnectionFailedError, DatabaseError

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle states of a session's connection."""
    CLOSED = "closed"
    OPEN = "open"
    BROKEN = "broken"
    CONNECTING = "connecting"


class DatabaseSession:
    """One live connection to a server and catalog.

    Blocking methods are meant to run on a worker thread; the ``*_async``
    wrappers do that through :func:`asyncio.to_thread`. Callers that run
    statements must hold :attr:`execution_lock` so only one statement is
    outstanding on the connection at any time.
    """

    def __init__(self, info: ConnectionInfo, adapter: BaseAdapter) -> None:
        self.info = info
        self.adapter = adapter
        self.connection_id = info.id
        self.current_database: Optional[str] = adapter.default_database
        self._connection: Optional[Connection] = None
        self._state = ConnectionState.CLOSED
        self._execution_lock: Optional[asyncio.Lock] = None

    def __repr__(self) -> str:
        return f"<DatabaseSession {self.connection_id} {self.info.display_label} {self.state.value}>"

    @property
    def state(self) -> ConnectionState:
        if self._state == ConnectionState.OPEN and self._connection is not None:
            if self._connection.invalidated:
                return ConnectionState.BROKEN
            if self._connection.closed:
                return ConnectionState.CLOSED
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def execution_lock(self) -> asyncio.Lock:
        if self._execution_lock is None:
            self._execution_lock = asyncio.Lock()
        return self._execution_lock

    @property
    def dbapi_connection(self) -> Any:
        """The raw DB-API connection behind the session.

        Raises:
            DatabaseError: If the session is not open.
        """
        if self._connection is None or self._connection.closed:
            raise DatabaseError(
                f"Connection '{self.connection_id}' is not open",
                database_type=self.info.type.value,
            )
        return self._connection.connection.dbapi_connection

    def open(self) -> None:
        """Open the connection.

        Raises:
            ConnectionFailedError: If the server cannot be reached or rejects the login.
        """
        previous_state = self._state
        self._state = ConnectionState.CONNECTING
        try:
            connection = self.adapter.get_engine().connect()
        except Exception as e:
            self._state = (
                ConnectionState.BROKEN if previous_state == ConnectionState.BROKEN
                else ConnectionState.CLOSED
            )
            cause = getattr(e, "orig", None) or e
            raise ConnectionFailedError(
                f"Failed to connect to {self.info.display_label}: {cause}",
                database_type=self.info.type.value,
                details={'connection_id': self.connection_id},
            ) from e

        self._connection = connection
        self._state = ConnectionState.OPEN
        logger.info(f"Opened connection {self.connection_id} to {self.info.display_label}")
        self._restore_database()

    async def open_async(self) -> None:
        await asyncio.to_thread(self.open)

    def _restore_database(self) -> None:
        """Re-apply the database context after a reopen."""
        target = self.current_database
        if not target or target == self.adapter.default_database:
            return
        try:
            self.execute_statement(self.adapter.use_database_statement(target))
            logger.debug(f"Restored database context '{target}' on {self.connection_id}")
        except Exception as e:
            logger.warning(f"Could not restore database '{target}' on {self.connection_id}: {e}")
            self.current_database = self.adapter.default_database

    def close(self) -> None:
        """Close the connection. Close errors are logged, never raised."""
        connection, self._connection = self._connection, None
        self._state = ConnectionState.CLOSED
        if connection is None:
            return
        try:
            connection.close()
            logger.info(f"Closed connection {self.connection_id}")
        except Exception as e:
            logger.warning(f"Error closing connection {self.connection_id}: {e}")

    async def close_async(self) -> None:
        await asyncio.to_thread(self.close)

    def dispose(self) -> None:
        """Close the connection and release the adapter's engine."""
        self.close()
        try:
            self.adapter.close()
        except Exception as e:
            logger.warning(f"Error disposing engine for {self.connection_id}: {e}")

    async def dispose_async(self) -> None:
        await asyncio.to_thread(self.dispose)

    def reopen(self) -> None:
        """Discard the current connection and open a fresh one."""
        broken = self.state == ConnectionState.BROKEN
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                if broken:
                    connection.invalidate()
                connection.close()
            except Exception as e:
                logger.warning(f"Error discarding connection {self.connection_id}: {e}")
        if broken:
            self._state = ConnectionState.BROKEN
        self.open()

    async def reopen_async(self) -> None:
        await asyncio.to_thread(self.reopen)

    def mark_broken(self, reason: str) -> None:
        """Flag the connection as unusable after an I/O failure."""
        logger.warning(f"Connection {self.connection_id} is broken: {reason}")
        self._state = ConnectionState.BROKEN

    @contextmanager
    def cursor(self) -> Iterator[Any]:
        """Raw DB-API cursor, closed on every exit path."""
        cursor = self.dbapi_connection.cursor()
        try:
            yield cursor
        finally:
            try:
                cursor.close()
            except Exception as e:
                logger.warning(f"Failed to close cursor on {self.connection_id}: {e}")

    def execute_statement(self, sql: str) -> None:
        """Run a statement whose output is not needed."""
        with self.cursor() as cursor:
            cursor.execute(sql)

    def fetch_current_database(self) -> Optional[str]:
        """Ask the server which database the session is using."""
        query = self.adapter.current_database_query()
        if query is None:
            return self.current_database
        with self.cursor() as cursor:
            cursor.execute(query)
            row = cursor.fetchone()
        return row[0] if row else None

    def change_database(self, database_name: str) -> str:
        """Switch the session's database context.

        Returns:
            The database the server reports after the switch, which can
            differ from ``database_name`` when the switch only partly applied.

        Raises:
            DatabaseError: If the adapter cannot switch databases.
        """
        self.execute_statement(self.adapter.use_database_statement(database_name))
        try:
            actual = self.fetch_current_database() or database_name
        except Exception as e:
            logger.warning(f"Could not confirm database switch on {self.connection_id}: {e}")
            actual = database_name
        self.current_database = actual
        return actual

    def publish_server_messages(self, cursor: Any, channel: MessageChannel) -> int:
        """Forward the messages pending on ``cursor`` to the running call's channel."""
        texts = self.adapter.drain_messages(cursor)
        for text in texts:
            channel.info(text)
        return len(texts)

    def describe(self) -> Dict[str, Any]:
        """Status summary used by connection lists."""
        return {
            'connection_id': self.connection_id,
            'label': self.info.display_label,
            'type': self.info.type.value,
            'database': self.current_database,
            'state': self.state.value,
        }
