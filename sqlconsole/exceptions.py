"""Core exceptions for SQL Console."""

from typing import Any, Dict, List, Optional


class SQLConsoleError(Exception):
    """Base exception for all SQL Console errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SQLConsoleError):
    """Raised when there's an error in configuration parsing or validation."""
    pass


class DatabaseError(SQLConsoleError):
    """Raised when there's an error connecting to or querying a database."""

    def __init__(
        self,
        message: str,
        database_type: Optional[str] = None,
        connection_string: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.database_type = database_type
        self.connection_string = connection_string


class ConnectionFailedError(DatabaseError):
    """Raised when a session cannot be opened or re-opened."""
    pass


class QueryExecutionError(DatabaseError):
    """Raised when the server rejects a batch with one or more errors."""

    def __init__(
        self,
        message: str,
        server_errors: Optional[List[Any]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details=details)
        self.server_errors = list(server_errors or [])
