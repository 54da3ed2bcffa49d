"""Result model produced by the query executor."""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from sqlconsole.cancellation import CancellationToken
from sqlconsole.db.messages import MessageSeverity, QueryMessage, ServerError
from sqlconsole.execution.showplan import ExecutionPlanNode


class ExecutionState(str, Enum):
    """Per-call execution lifecycle."""
    NOT_STARTED = "not_started"
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class Succeeded:
    """The batch ran to completion."""


@dataclass(frozen=True)
class Cancelled:
    """The caller cancelled the batch; partial output may be present."""


@dataclass(frozen=True)
class Failed:
    """The batch failed.

    ``errors`` holds the server's discrete error records; ``reason`` is set
    instead for connectivity and driver failures.
    """
    errors: Tuple[ServerError, ...] = ()
    reason: Optional[str] = None


ExecutionOutcome = Union[Succeeded, Cancelled, Failed]


@dataclass
class ExecutionRequest:
    """One query-text submission.

    ``timeout`` is in seconds; None applies the executor's default and 0
    disables the limit.
    """
    sql: str
    include_execution_plan: bool = False
    cancellation: Optional[CancellationToken] = None
    timeout: Optional[float] = None


@dataclass
class ColumnInfo:
    """Metadata for one result column."""
    name: str
    data_type: str = "unknown"
    is_nullable: bool = True
    ordinal: int = 0
    python_type: Optional[type] = None
    max_length: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'data_type': self.data_type,
            'is_nullable': self.is_nullable,
            'ordinal': self.ordinal,
            'max_length': self.max_length,
        }


@dataclass
class ResultSet:
    """One tabular result; rows align 1:1 with ``columns`` and nulls stay None."""
    columns: List[ColumnInfo] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)
    rows_affected: int = 0

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def to_records(self) -> List[Dict[str, Any]]:
        """Rows as dictionaries keyed by column name."""
        names = self.column_names
        return [dict(zip(names, row)) for row in self.rows]

    def to_dataframe(self) -> pd.DataFrame:
        """Rows as a DataFrame.

        Object dtype keeps nulls as None instead of NaN.
        """
        return pd.DataFrame(list(self.rows), columns=self.column_names, dtype=object)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'columns': [column.to_dict() for column in self.columns],
            'rows': [list(row) for row in self.rows],
            'rows_affected': self.rows_affected,
            'row_count': self.row_count,
        }


@dataclass
class QueryResult:
    """Aggregate outcome of one execution request."""
    result_sets: List[ResultSet] = field(default_factory=list)
    messages: List[QueryMessage] = field(default_factory=list)
    execution_plans: List[str] = field(default_factory=list)
    plan: List[ExecutionPlanNode] = field(default_factory=list)
    execution_time: timedelta = field(default_factory=timedelta)
    outcome: ExecutionOutcome = field(default_factory=Succeeded)
    state: ExecutionState = ExecutionState.NOT_STARTED
    rows_affected: Optional[int] = None

    @property
    def has_errors(self) -> bool:
        return isinstance(self.outcome, Failed)

    @property
    def was_cancelled(self) -> bool:
        return isinstance(self.outcome, Cancelled)

    @property
    def execution_plan(self) -> Optional[str]:
        """Raw showplan XML of the last planned statement."""
        return self.execution_plans[-1] if self.execution_plans else None

    @property
    def server_errors(self) -> Tuple[ServerError, ...]:
        return self.outcome.errors if isinstance(self.outcome, Failed) else ()

    @property
    def errors(self) -> List[QueryMessage]:
        return [m for m in self.messages if m.severity == MessageSeverity.ERROR]

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            'result_sets': [rs.to_dict() for rs in self.result_sets],
            'messages': [m.to_dict() for m in self.messages],
            'execution_plan': self.execution_plan,
            'execution_time': self.execution_time.total_seconds(),
            'has_errors': self.has_errors,
            'was_cancelled': self.was_cancelled,
            'rows_affected': self.rows_affected,
        }


@dataclass
class ScalarResult:
    """Outcome of a scalar lookup; no messages are accumulated."""
    value: Any = None
    outcome: ExecutionOutcome = field(default_factory=Succeeded)

    @property
    def has_errors(self) -> bool:
        return isinstance(self.outcome, Failed)

    @property
    def was_cancelled(self) -> bool:
        return isinstance(self.outcome, Cancelled)

    @property
    def error_message(self) -> Optional[str]:
        if not isinstance(self.outcome, Failed):
            return None
        if self.outcome.errors:
            return "\n".join(error.format() for error in self.outcome.errors)
        return self.outcome.reason
