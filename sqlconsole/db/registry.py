"""Connection registry and adapter factory."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Type

from sqlconsole.config.models import ConnectionInfo, ConsoleConfig, DatabaseType
from sqlconsole.db.base import BaseAdapter
from sqlconsole.db.adapters.sqlserver import SQLServerAdapter
from sqlconsole.db.adapters.sqlite import SQLiteAdapter
from sqlconsole.db.session import ConnectionState, DatabaseSession
from sqlconsole.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class AdapterFactory:
    """Factory for creating database adapters."""

    _adapters: Dict[DatabaseType, Type[BaseAdapter]] = {
        DatabaseType.SQLSERVER: SQLServerAdapter,
        DatabaseType.SQLITE: SQLiteAdapter,
    }

    @classmethod
    def create_adapter(cls, info: ConnectionInfo) -> BaseAdapter:
        """Create a database adapter for a connection descriptor.

        Raises:
            DatabaseError: If database type is not supported.
        """
        adapter_class = cls._adapters.get(info.type)
        if not adapter_class:
            supported_types = [t.value for t in cls._adapters]
            raise DatabaseError(
                f"Unsupported database type: {info.type}. "
                f"Supported types: {supported_types}"
            )

        return adapter_class(info)

    @classmethod
    def register_adapter(cls, db_type: DatabaseType, adapter_class: Type[BaseAdapter]) -> None:
        """Register a custom database adapter."""
        cls._adapters[db_type] = adapter_class

    @classmethod
    def get_supported_types(cls) -> list[DatabaseType]:
        """Get list of supported database types."""
        return list(cls._adapters.keys())


class ConnectionEventType(str, Enum):
    """Kinds of registry notifications."""
    CONNECTION_CHANGED = "connection_changed"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionEvent:
    """Notification delivered to registry subscribers."""
    kind: ConnectionEventType
    connection_id: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class ConnectionAttempt:
    """Outcome of a connect or probe call."""
    success: bool
    connection_id: Optional[str] = None
    error: Optional[str] = None
    response_time: float = 0.0  # milliseconds


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the registry's bookkeeping."""
    active_connection_id: Optional[str]
    connection_ids: Tuple[str, ...]


class Subscription:
    """Handle returned by :meth:`ConnectionRegistry.subscribe`."""

    def __init__(self, registry: "ConnectionRegistry", callback: Callable[[ConnectionEvent], None]) -> None:
        self._registry = registry
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._registry._remove_subscriber(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


_KEEP = object()


class ConnectionRegistry:
    """Tracks live sessions and which one subsequent operations target.

    Connect and disconnect failures come back as values; nothing here
    raises for an unreachable server or a rejected login.
    """

    def __init__(
        self,
        adapter_factory: Optional[Callable[[ConnectionInfo], BaseAdapter]] = None,
    ) -> None:
        """Initialize the registry.

        Args:
            adapter_factory: Builds the adapter for a descriptor. Defaults
                to :meth:`AdapterFactory.create_adapter`.
        """
        self._adapter_factory = adapter_factory or AdapterFactory.create_adapter
        self._sessions: Dict[str, DatabaseSession] = {}
        self._active_id: Optional[str] = None
        self._lock = threading.RLock()
        self._subscribers: List[Subscription] = []

    async def __aenter__(self) -> "ConnectionRegistry":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close_all()

    # -- state ----------------------------------------------------------

    @property
    def active_connection_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_session(self) -> Optional[DatabaseSession]:
        with self._lock:
            if self._active_id is None:
                return None
            return self._sessions.get(self._active_id)

    @property
    def is_connected(self) -> bool:
        return self.active_session is not None

    @property
    def connections(self) -> Mapping[str, DatabaseSession]:
        with self._lock:
            return dict(self._sessions)

    def get_session(self, connection_id: Optional[str] = None) -> Optional[DatabaseSession]:
        """Session by id, or the active session when ``connection_id`` is None."""
        if connection_id is None:
            return self.active_session
        with self._lock:
            return self._sessions.get(connection_id)

    def get_current_database(self) -> Optional[str]:
        session = self.active_session
        return session.current_database if session else None

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return RegistrySnapshot(
                active_connection_id=self._active_id,
                connection_ids=tuple(self._sessions.keys()),
            )

    def _mutate(
        self,
        add: Optional[DatabaseSession] = None,
        remove: Optional[str] = None,
        activate=_KEEP,
        clear: bool = False,
    ) -> List[DatabaseSession]:
        """Single mutation path for the session map and the active pointer.

        Returns:
            Sessions that left the map (replaced, removed or cleared); the
            caller disposes of them outside the lock.
        """
        replaced = removed = None
        cleared: List[DatabaseSession] = []
        with self._lock:
            if clear:
                cleared = list(self._sessions.values())
                self._sessions.clear()
                self._active_id = None
            if add is not None:
                replaced = self._sessions.get(add.connection_id)
                self._sessions[add.connection_id] = add
            if remove is not None:
                removed = self._sessions.pop(remove, None)
                if removed is not None and self._active_id == remove:
                    self._active_id = next(iter(self._sessions), None)
            if activate is not _KEEP:
                self._active_id = activate
        if replaced is add:
            replaced = None
        return cleared + [s for s in (replaced, removed) if s is not None]

    # -- subscriptions --------------------------------------------------

    def subscribe(self, callback: Callable[[ConnectionEvent], None]) -> Subscription:
        """Register ``callback`` for connection-changed and error events."""
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _remove_subscriber(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def _notify(
        self,
        kind: ConnectionEventType,
        connection_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        event = ConnectionEvent(kind=kind, connection_id=connection_id, message=message)
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(f"Subscriber failed while handling {kind.value} event")

    # -- operations -----------------------------------------------------

    def _create_session(self, info: ConnectionInfo) -> DatabaseSession:
        return DatabaseSession(info, self._adapter_factory(info))

    async def connect(self, info: ConnectionInfo) -> ConnectionAttempt:
        """Open a new session and make it active.

        Existing sessions stay open. A session already registered under
        ``info.id`` is replaced only once the new one has opened.
        """
        start_time = time.time()
        session = None
        try:
            session = self._create_session(info)
            await session.open_async()
        except Exception as e:
            if session is not None:
                await session.dispose_async()
            message = e.message if isinstance(e, DatabaseError) else f"Connection failed: {e}"
            logger.warning(f"Connect to {info.display_label} failed: {message}")
            return ConnectionAttempt(
                success=False,
                error=message,
                response_time=round((time.time() - start_time) * 1000, 2),
            )

        for replaced in self._mutate(add=session, activate=session.connection_id):
            await replaced.dispose_async()

        self._notify(ConnectionEventType.CONNECTION_CHANGED, session.connection_id)
        return ConnectionAttempt(
            success=True,
            connection_id=session.connection_id,
            response_time=round((time.time() - start_time) * 1000, 2),
        )

    async def connect_saved(self, config: ConsoleConfig, name: Optional[str] = None) -> ConnectionAttempt:
        """Connect using a named profile, keyed by the profile name."""
        profile = name or config.default_connection
        try:
            info = config.get_connection(profile)
        except Exception as e:
            return ConnectionAttempt(success=False, error=str(e))
        return await self.connect(info.model_copy(update={'id': profile}))

    async def test_connect(self, info: ConnectionInfo) -> ConnectionAttempt:
        """Open and immediately close a probe connection.

        Registry state is never touched.
        """
        start_time = time.time()
        session = None
        try:
            session = self._create_session(info)
            await session.open_async()
            return ConnectionAttempt(
                success=True,
                connection_id=info.id,
                response_time=round((time.time() - start_time) * 1000, 2),
            )
        except Exception as e:
            message = e.message if isinstance(e, DatabaseError) else str(e)
            return ConnectionAttempt(
                success=False,
                error=message,
                response_time=round((time.time() - start_time) * 1000, 2),
            )
        finally:
            if session is not None:
                await session.dispose_async()

    async def disconnect(self, connection_id: str) -> None:
        """Close and forget a session.

        When it was active, some remaining session (or none) becomes active;
        which one is unspecified.
        """
        removed = self._mutate(remove=connection_id)
        if not removed:
            return
        for session in removed:
            await session.dispose_async()
        self._notify(ConnectionEventType.CONNECTION_CHANGED, connection_id)

    def set_active(self, connection_id: str) -> None:
        """Switch the active session. Unknown ids are ignored."""
        with self._lock:
            if connection_id not in self._sessions:
                logger.debug(f"Ignoring set_active for unknown connection '{connection_id}'")
                return
            self._mutate(activate=connection_id)
        self._notify(ConnectionEventType.CONNECTION_CHANGED, connection_id)

    async def change_database(self, database_name: str) -> bool:
        """Switch the database context of the active session.

        Returns:
            True when the server reports the requested database afterwards.
        """
        session = self.active_session
        if session is None:
            return False

        async with session.execution_lock:
            previous = session.current_database
            try:
                actual = await asyncio.to_thread(session.change_database, database_name)
            except Exception as e:
                session.current_database = previous
                message = e.message if isinstance(e, DatabaseError) else str(e)
                self._notify(ConnectionEventType.ERROR, session.connection_id, message)
                return False

        self._notify(ConnectionEventType.CONNECTION_CHANGED, session.connection_id)
        if (actual or "").lower() != database_name.lower():
            self._notify(
                ConnectionEventType.ERROR,
                session.connection_id,
                f"Database switch to '{database_name}' was only partially applied; "
                f"the session is using '{actual}'",
            )
            return False
        return True

    async def ensure_open(self, connection_id: Optional[str] = None) -> bool:
        """Make sure a session is usable, reopening it at most once.

        Args:
            connection_id: Session to check; defaults to the active session.
        """
        session = self.get_session(connection_id)
        if session is None:
            return False

        if session.state not in (ConnectionState.BROKEN, ConnectionState.CLOSED):
            return True

        try:
            await session.reopen_async()
        except Exception as e:
            message = e.message if isinstance(e, DatabaseError) else str(e)
            logger.warning(f"Reopen of {session.connection_id} failed: {message}")
            self._notify(ConnectionEventType.ERROR, session.connection_id, message)
            return False

        self._notify(ConnectionEventType.CONNECTION_CHANGED, session.connection_id)
        return True

    async def close_all(self) -> None:
        """Dispose of every session."""
        sessions = self._mutate(clear=True)
        for session in sessions:
            await session.dispose_async()
        if sessions:
            self._notify(ConnectionEventType.CONNECTION_CHANGED)

    def get_connection_status(self) -> Dict[str, object]:
        """Status of all sessions."""
        with self._lock:
            sessions = list(self._sessions.values())
            active_id = self._active_id
        return {
            'total_active': len(sessions),
            'active_connection': active_id,
            'connections': {s.connection_id: s.describe() for s in sessions},
        }
