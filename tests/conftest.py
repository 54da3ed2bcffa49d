"""Shared fixtures for SQL Console tests.

SQLite backs every end-to-end test. ``ScriptedAdapter`` layers the
server-only behaviours (PRINT output, multi-error batches, database
switching, plan capture) on top of a real SQLite connection.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from sqlconsole.config.models import ConnectionInfo, DatabaseType
from sqlconsole.db.adapters.sqlite import SQLiteAdapter, split_statements
from sqlconsole.db.base import BatchContext
from sqlconsole.db.messages import ServerError
from sqlconsole.db.registry import ConnectionRegistry

PLAN_COLUMN = "Microsoft SQL Server 2005 XML Showplan"

SHOWPLAN_XML = (
    '<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan" Version="1.564">'
    "<BatchSequence><Batch><Statements>"
    '<StmtSimple StatementText="SELECT o.id FROM dbo.orders o JOIN dbo.customers c ON c.id = o.customer_id" '
    'StatementId="1" StatementType="SELECT" StatementSubTreeCost="0.01">'
    "<QueryPlan>"
    '<RelOp NodeId="0" PhysicalOp="Nested Loops" LogicalOp="Inner Join" EstimateRows="10" '
    'EstimateIO="0" EstimateCPU="0.002" AvgRowSize="11" EstimatedTotalSubtreeCost="0.01">'
    '<OutputList><ColumnReference Database="[shop]" Schema="[dbo]" Table="[orders]" Alias="[o]" Column="id"/></OutputList>'
    '<Warnings NoJoinPredicate="true"/>'
    "<NestedLoops Optimized=\"0\">"
    '<RelOp NodeId="1" PhysicalOp="Clustered Index Scan" LogicalOp="Clustered Index Scan" EstimateRows="10" '
    'EstimateIO="0.003" EstimateCPU="0.002" AvgRowSize="15" EstimatedTotalSubtreeCost="0.005">'
    '<OutputList><ColumnReference Table="[orders]" Column="id"/><ColumnReference Table="[orders]" Column="customer_id"/></OutputList>'
    '<IndexScan Ordered="0"><Object Database="[shop]" Schema="[dbo]" Table="[orders]" Index="[PK_orders]"/></IndexScan>'
    "</RelOp>"
    '<RelOp NodeId="2" PhysicalOp="Clustered Index Seek" LogicalOp="Clustered Index Seek" EstimateRows="1" '
    'EstimateIO="0.003" EstimateCPU="0.0001" AvgRowSize="9" EstimatedTotalSubtreeCost="0.003">'
    '<IndexScan Ordered="1"><Object Database="[shop]" Schema="[dbo]" Table="[customers]" Index="[PK_customers]"/></IndexScan>'
    "</RelOp>"
    "</NestedLoops>"
    "</RelOp>"
    "</QueryPlan>"
    "</StmtSimple>"
    "</Statements></Batch></BatchSequence></ShowPlanXML>"
)


class ScriptedServerError(Exception):
    """Batch failure carrying pre-built server error records."""

    def __init__(self, records: List[ServerError]) -> None:
        super().__init__("; ".join(record.message for record in records))
        self.records = records


class ScriptedAdapter(SQLiteAdapter):
    """SQLite adapter that imitates SQL Server session behaviours.

    - ``PRINT 'text'`` statements queue an informational message.
    - Statements listed in ``failures`` raise the scripted error records.
    - ``USE``-style switches are tracked in memory; names in ``missing``
      fail and names in ``redirects`` land on a different database.
    - Plan capture is supported; the plan arrives as a result set whose
      single column is named like the SQL Server showplan column.
    """

    def __init__(self, info: ConnectionInfo) -> None:
        super().__init__(info)
        self.pending_messages: List[str] = []
        self.failures: Dict[str, List[ServerError]] = {}
        self.missing: set = set()
        self.redirects: Dict[str, str] = {}
        self.current = "master"

    @property
    def default_database(self) -> Optional[str]:
        return "master"

    def use_database_statement(self, database_name: str) -> str:
        if database_name in self.missing:
            return "SELECT * FROM missing_database_marker"
        self.current = self.redirects.get(database_name, database_name)
        return "SELECT 1"

    def current_database_query(self) -> Optional[str]:
        return f"SELECT '{self.current}'"

    def plan_capture_statements(self) -> Optional[Tuple[str, str]]:
        return ("SELECT 'plan on'", "SELECT 'plan off'")

    def is_plan_column(self, column_name: str) -> bool:
        return "XML Showplan" in column_name

    def run_batch(self, cursor, sql, context: BatchContext):
        for index, (line, statement) in enumerate(split_statements(sql)):
            context.statement_index = index
            context.statement_line = line
            text = statement.rstrip(";").strip()
            if text.upper().startswith("PRINT "):
                self.pending_messages.append(text[6:].strip().strip("'"))
                continue
            if text in self.failures:
                raise ScriptedServerError(self.failures[text])
            cursor.execute(statement)
            yield

    def drain_messages(self, cursor) -> List[str]:
        drained, self.pending_messages = self.pending_messages, []
        return drained

    def parse_server_errors(self, error, context):
        if isinstance(error, ScriptedServerError):
            return list(error.records)
        return super().parse_server_errors(error, context)


@pytest.fixture
def sqlite_info(tmp_path: Path) -> ConnectionInfo:
    """Descriptor for a file-backed SQLite database."""
    return ConnectionInfo(id="local", type=DatabaseType.SQLITE, path=str(tmp_path / "console.db"))


@pytest.fixture
def other_sqlite_info(tmp_path: Path) -> ConnectionInfo:
    return ConnectionInfo(id="other", type=DatabaseType.SQLITE, path=str(tmp_path / "other.db"))


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def scripted_registry() -> ConnectionRegistry:
    return ConnectionRegistry(adapter_factory=ScriptedAdapter)


@pytest.fixture
def showplan_xml() -> str:
    return SHOWPLAN_XML
