"""SQL Console: query execution core for a SQL Server administration console.

SQL Console provides:
- A registry of live database sessions with a selectable active session
- Multi-result-set batch execution with ordered server messages
- Cooperative cancellation of in-flight statements
- Execution plan capture and showplan parsing
- YAML-based connection profiles and a small CLI
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Core exports
from sqlconsole.exceptions import (
    SQLConsoleError,
    ConfigurationError,
    DatabaseError,
    ConnectionFailedError,
    QueryExecutionError,
)

__all__ = [
    "__version__",
    "SQLConsoleError",
    "ConfigurationError",
    "DatabaseError",
    "ConnectionFailedError",
    "QueryExecutionError",
]
