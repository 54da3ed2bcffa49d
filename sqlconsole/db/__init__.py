"""Database connectivity: adapters, sessions and the connection registry."""

from sqlconsole.db.base import BaseAdapter, BatchContext
from sqlconsole.db.messages import (
    MessageChannel,
    MessageSeverity,
    QueryMessage,
    ServerError,
)
from sqlconsole.db.session import ConnectionState, DatabaseSession
from sqlconsole.db.registry import (
    AdapterFactory,
    ConnectionAttempt,
    ConnectionEvent,
    ConnectionEventType,
    ConnectionRegistry,
    RegistrySnapshot,
    Subscription,
)
from sqlconsole.db.adapters import (
    SQLServerAdapter,
    SQLiteAdapter,
)

__all__ = [
    # Base classes
    "BaseAdapter",
    "BatchContext",
    # Diagnostics
    "MessageChannel",
    "MessageSeverity",
    "QueryMessage",
    "ServerError",
    # Sessions and registry
    "ConnectionState",
    "DatabaseSession",
    "AdapterFactory",
    "ConnectionAttempt",
    "ConnectionEvent",
    "ConnectionEventType",
    "ConnectionRegistry",
    "RegistrySnapshot",
    "Subscription",
    # Database adapters
    "SQLServerAdapter",
    "SQLiteAdapter",
]
