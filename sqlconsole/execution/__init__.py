"""Query execution against the active session."""

from .executor import (
    CANCELLED_BY_USER,
    CONNECTION_LOST,
    NO_ACTIVE_CONNECTION,
    QueryExecutor,
    format_elapsed,
)
from .models import (
    Cancelled,
    ColumnInfo,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionState,
    Failed,
    QueryResult,
    ResultSet,
    ScalarResult,
    Succeeded,
)
from .showplan import ExecutionPlanNode, parse_showplan

__all__ = [
    "QueryExecutor",
    "format_elapsed",
    "NO_ACTIVE_CONNECTION",
    "CONNECTION_LOST",
    "CANCELLED_BY_USER",
    "Cancelled",
    "ColumnInfo",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionState",
    "Failed",
    "QueryResult",
    "ResultSet",
    "ScalarResult",
    "Succeeded",
    "ExecutionPlanNode",
    "parse_showplan",
]
