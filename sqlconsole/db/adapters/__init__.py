"""Database adapters for different database types."""

from sqlconsole.db.adapters.sqlserver import SQLServerAdapter
from sqlconsole.db.adapters.sqlite import SQLiteAdapter

__all__ = [
    "SQLServerAdapter",
    "SQLiteAdapter",
]
