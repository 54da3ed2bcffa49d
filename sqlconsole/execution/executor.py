"""Query executor for the active registry session.

Every call runs its batch on a worker thread while holding the session's
execution lock, collects result sets and diagnostics in production order
and turns every expected failure into a value on the returned result.
"""

import asyncio
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import partial
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from sqlconsole.cancellation import CancellationToken, ExecutionCancelled
from sqlconsole.config.models import ExecutionSettings
from sqlconsole.db.base import BatchContext
from sqlconsole.db.messages import MessageChannel, QueryMessage
from sqlconsole.db.registry import ConnectionRegistry
from sqlconsole.db.session import DatabaseSession
from sqlconsole.exceptions import DatabaseError, QueryExecutionError
from sqlconsole.execution.models import (
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
from sqlconsole.execution.showplan import parse_showplan

logger = logging.getLogger(__name__)

NO_ACTIVE_CONNECTION = "No active connection."
CONNECTION_LOST = "Connection lost. Please reconnect."
CANCELLED_BY_USER = "Query execution was cancelled by user."


def format_elapsed(elapsed: timedelta) -> str:
    """Render a duration as ``hh:mm:ss.fff``."""
    total_ms = int(elapsed.total_seconds() * 1000)
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    seconds, milliseconds = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{milliseconds:03d}"


class _BatchMode(str, Enum):
    ROWS = "rows"
    NON_QUERY = "non_query"
    SCALAR = "scalar"


@dataclass
class _BatchOutput:
    """What a batch produced so far; kept when the batch fails midway."""
    result_sets: List[ResultSet] = field(default_factory=list)
    plans: List[str] = field(default_factory=list)
    rows_affected: Optional[int] = None
    scalar: Any = None

    def add_rows_affected(self, count: int) -> None:
        self.rows_affected = (self.rows_affected or 0) + count


def describe_columns(description: Sequence[Sequence[Any]]) -> List[ColumnInfo]:
    """Build column metadata from a DB-API ``cursor.description``."""
    columns = []
    for ordinal, entry in enumerate(description):
        name, type_code = entry[0], entry[1]
        internal_size = entry[3] if len(entry) > 3 else None
        null_ok = entry[6] if len(entry) > 6 else None
        python_type = type_code if isinstance(type_code, type) else None

        if python_type is not None:
            data_type = python_type.__name__
        elif type_code is not None:
            data_type = str(type_code)
        else:
            data_type = "unknown"

        columns.append(ColumnInfo(
            name=name or "",
            data_type=data_type,
            is_nullable=True if null_ok is None else bool(null_ok),
            ordinal=ordinal,
            python_type=python_type,
            max_length=internal_size if isinstance(internal_size, int) and internal_size > 0 else None,
        ))
    return columns


def _infer_missing_types(columns: List[ColumnInfo], rows: List[Tuple[Any, ...]]) -> None:
    """Fill types the driver did not report from the first non-null value."""
    for column in columns:
        if column.python_type is not None:
            continue
        for row in rows:
            value = row[column.ordinal]
            if value is not None:
                column.python_type = type(value)
                column.data_type = type(value).__name__
                break


class QueryExecutor:
    """Runs query text against the registry's active session."""

    def __init__(self, registry: ConnectionRegistry, settings: Optional[ExecutionSettings] = None) -> None:
        """Initialize the executor.

        Args:
            registry: Registry whose active session statements run on.
            settings: Timeouts and fetch size; defaults apply when omitted.
        """
        self.registry = registry
        self.settings = settings or ExecutionSettings()

    # -- public operations ----------------------------------------------

    async def execute(
        self,
        request: Union[ExecutionRequest, str],
        *,
        include_execution_plan: bool = False,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """Execute a batch and collect every result set and message.

        Args:
            request: Request object, or query text combined with the
                keyword arguments.
            include_execution_plan: Capture the actual execution plan.
            cancellation: Token the caller fires to abort the batch.
            timeout: Seconds; None applies ``query_timeout``, 0 is unbounded.

        Returns:
            QueryResult whose ``outcome`` tells success, cancellation or
            failure apart. Expected failures never raise.
        """
        if isinstance(request, str):
            request = ExecutionRequest(
                sql=request,
                include_execution_plan=include_execution_plan,
                cancellation=cancellation,
                timeout=timeout,
            )
        return await self._execute_request(request, _BatchMode.ROWS)

    async def execute_non_query(
        self,
        sql: str,
        *,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """Execute a batch for its side effects.

        Result rows are not materialized. ``rows_affected`` sums the counts
        the statements reported, or is -1 when none reported one.
        """
        request = ExecutionRequest(sql=sql, cancellation=cancellation, timeout=timeout)
        return await self._execute_request(request, _BatchMode.NON_QUERY)

    async def execute_scalar(
        self,
        sql: str,
        *,
        cancellation: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> ScalarResult:
        """First column of the first row of the first result set.

        No messages are collected. The value is None when the batch returns
        no rows or no session is usable.
        """
        session, failure = await self._usable_session()
        if session is None:
            return ScalarResult(outcome=Failed(reason=failure))

        token = CancellationToken()
        unlink = token.link(cancellation) if cancellation is not None else (lambda: None)
        output = _BatchOutput()
        effective_timeout = self.settings.scalar_timeout if timeout is None else timeout
        work = partial(
            self._run_batch, session, sql, token, effective_timeout or None,
            MessageChannel(), output, _BatchMode.SCALAR, False,
        )
        try:
            await self._run_on_session(session, work, token)
            outcome: ExecutionOutcome = Succeeded()
        except ExecutionCancelled:
            outcome = Cancelled()
        except QueryExecutionError as e:
            self._check_disconnect(session, e)
            outcome = Failed(errors=tuple(e.server_errors))
        except MemoryError:
            raise
        except Exception as e:
            outcome = Failed(reason=self._failure_text(session, e))
        finally:
            unlink()

        return ScalarResult(value=output.scalar if isinstance(outcome, Succeeded) else None, outcome=outcome)

    # -- orchestration --------------------------------------------------

    async def _usable_session(self) -> Tuple[Optional[DatabaseSession], Optional[str]]:
        session = self.registry.active_session
        if session is None:
            return None, NO_ACTIVE_CONNECTION
        if not await self.registry.ensure_open(session.connection_id):
            return None, CONNECTION_LOST
        return session, None

    async def _execute_request(self, request: ExecutionRequest, mode: _BatchMode) -> QueryResult:
        started = time.perf_counter()
        result = QueryResult()
        channel = MessageChannel()
        output = _BatchOutput()

        self._transition(result, ExecutionState.VALIDATING)
        session, failure = await self._usable_session()
        if session is None:
            channel.error(failure)
            result.outcome = Failed(reason=failure)
            self._transition(result, ExecutionState.FAILED)
        else:
            self._transition(result, ExecutionState.EXECUTING)
            result.outcome = await self._execute_on_session(session, request, mode, channel, output)
            self._transition(result, self._terminal_state(result.outcome))

        result.result_sets = output.result_sets
        result.execution_plans = output.plans
        result.plan = self._parse_plans(output.plans)
        if mode is _BatchMode.NON_QUERY:
            result.rows_affected = output.rows_affected if output.rows_affected is not None else -1

        result.execution_time = timedelta(seconds=time.perf_counter() - started)
        channel.info(f"Total execution time: {format_elapsed(result.execution_time)}")
        result.messages = channel.close()
        self._transition(result, ExecutionState.FINALIZED)
        return result

    async def _execute_on_session(
        self,
        session: DatabaseSession,
        request: ExecutionRequest,
        mode: _BatchMode,
        channel: MessageChannel,
        output: _BatchOutput,
    ) -> ExecutionOutcome:
        token = CancellationToken()
        unlink = token.link(request.cancellation) if request.cancellation is not None else (lambda: None)
        timeout = self.settings.query_timeout if request.timeout is None else request.timeout

        include_plan = request.include_execution_plan and mode is _BatchMode.ROWS
        if include_plan and session.adapter.plan_capture_statements() is None:
            channel.warning(
                f"Execution plans are not available for {session.info.type.value} connections; "
                f"the query runs without plan capture."
            )
            include_plan = False

        work = partial(
            self._run_batch, session, request.sql, token, timeout or None,
            channel, output, mode, include_plan,
        )
        try:
            await self._run_on_session(session, work, token)
            return Succeeded()
        except ExecutionCancelled:
            logger.info(f"Batch on {session.connection_id} cancelled")
            channel.warning(CANCELLED_BY_USER)
            return Cancelled()
        except QueryExecutionError as e:
            self._check_disconnect(session, e)
            for error in e.server_errors:
                channel.post(QueryMessage.from_server_error(error))
            if not channel.has_errors():
                channel.error(e.message)
            return Failed(errors=tuple(e.server_errors))
        except MemoryError:
            raise
        except Exception as e:
            reason = self._failure_text(session, e)
            channel.error(reason)
            return Failed(reason=reason)
        finally:
            unlink()

    async def _run_on_session(self, session: DatabaseSession, work: Callable[[], None], token: CancellationToken) -> None:
        """Run ``work`` on a worker thread while holding the session lock.

        If the calling task is cancelled the statement is cancelled too and
        the worker is waited for before the cancellation propagates, so the
        connection is never left with a statement in flight.
        """
        async with session.execution_lock:
            worker = asyncio.ensure_future(asyncio.to_thread(work))
            try:
                await asyncio.shield(worker)
            except asyncio.CancelledError:
                token.cancel()
                await asyncio.wait([worker])
                if not worker.cancelled() and worker.exception() is not None:
                    logger.debug(f"Worker ended after task cancellation: {worker.exception()}")
                raise

    @staticmethod
    def _transition(result: QueryResult, state: ExecutionState) -> None:
        logger.debug(f"Execution state {result.state.value} -> {state.value}")
        result.state = state

    @staticmethod
    def _terminal_state(outcome: ExecutionOutcome) -> ExecutionState:
        if isinstance(outcome, Cancelled):
            return ExecutionState.CANCELLED
        if isinstance(outcome, Failed):
            return ExecutionState.FAILED
        return ExecutionState.COMPLETED

    def _failure_text(self, session: DatabaseSession, error: Exception) -> str:
        """Message for a failure without server error records."""
        self._check_disconnect(session, error)
        if isinstance(error, DatabaseError):
            return error.message
        return str(error) or type(error).__name__

    @staticmethod
    def _check_disconnect(session: DatabaseSession, error: Exception) -> None:
        cause = error.__cause__ or error
        try:
            disconnected = session.adapter.is_disconnect(cause)
        except Exception as e:
            logger.warning(f"Could not classify failure on {session.connection_id}: {e}")
            return
        if disconnected:
            session.mark_broken(str(cause))

    @staticmethod
    def _parse_plans(plans: List[str]) -> list:
        nodes = []
        for xml_text in plans:
            try:
                nodes.extend(parse_showplan(xml_text))
            except ET.ParseError as e:
                logger.warning(f"Could not parse execution plan XML: {e}")
        return nodes

    # -- worker thread --------------------------------------------------

    def _run_batch(
        self,
        session: DatabaseSession,
        sql: str,
        token: CancellationToken,
        timeout: Optional[float],
        channel: MessageChannel,
        output: _BatchOutput,
        mode: _BatchMode,
        include_plan: bool,
    ) -> None:
        """Execute one batch on the calling (worker) thread.

        Raises:
            ExecutionCancelled: If the token fired before or during the batch.
            QueryExecutionError: If the server reported error records.
        """
        adapter = session.adapter
        context = BatchContext()
        plan_statements = adapter.plan_capture_statements() if include_plan else None
        token.raise_if_cancelled()

        try:
            with session.cursor() as cursor:
                disarm = adapter.arm_execution(session.dbapi_connection, cursor, token, timeout)
                try:
                    if plan_statements:
                        cursor.execute(plan_statements[0])
                    for _ in adapter.run_batch(cursor, sql, context):
                        token.raise_if_cancelled()
                        session.publish_server_messages(cursor, channel)
                        if not self._consume(adapter, cursor, token, channel, output, mode):
                            break
                    else:
                        session.publish_server_messages(cursor, channel)
                except Exception:
                    self._drain_after_failure(session, cursor, channel)
                    raise
                finally:
                    disarm()
        except ExecutionCancelled:
            raise
        except Exception as e:
            if token.is_cancelled:
                raise ExecutionCancelled() from e
            translated = adapter.translate_error(e, context)
            if translated is e:
                raise
            raise translated from e
        finally:
            if plan_statements:
                self._disable_plan_capture(session, plan_statements[1])

    def _consume(self, adapter, cursor, token: CancellationToken, channel: MessageChannel,
                 output: _BatchOutput, mode: _BatchMode) -> bool:
        """Consume the result set the cursor is positioned on.

        Returns:
            False when the batch needs no further result sets.
        """
        description = cursor.description

        if description and adapter.is_plan_column(description[0][0] or ""):
            row = cursor.fetchone()
            if row and row[0] is not None:
                output.plans.append(str(row[0]))
            return True

        if not description:
            count = cursor.rowcount
            if count is not None and count >= 0:
                output.add_rows_affected(count)
                channel.info(f"({count} row(s) affected)")
            return True

        if mode is _BatchMode.SCALAR:
            row = cursor.fetchone()
            output.scalar = row[0] if row else None
            return False

        if mode is _BatchMode.NON_QUERY:
            return True

        columns = describe_columns(description)
        rows = self._fetch_rows(cursor, token)
        _infer_missing_types(columns, rows)
        output.result_sets.append(ResultSet(columns=columns, rows=rows, rows_affected=len(rows)))
        channel.info(f"({len(rows)} row(s) returned)")
        return True

    def _fetch_rows(self, cursor, token: CancellationToken) -> List[Tuple[Any, ...]]:
        rows: List[Tuple[Any, ...]] = []
        while True:
            token.raise_if_cancelled()
            chunk = cursor.fetchmany(self.settings.fetch_size)
            if not chunk:
                return rows
            rows.extend(tuple(row) for row in chunk)

    @staticmethod
    def _drain_after_failure(session: DatabaseSession, cursor, channel: MessageChannel) -> None:
        """Keep output the batch produced before it stopped, ahead of the error records."""
        try:
            session.publish_server_messages(cursor, channel)
        except Exception as e:
            logger.warning(f"Could not read pending messages on {session.connection_id}: {e}")

    @staticmethod
    def _disable_plan_capture(session: DatabaseSession, statement: str) -> None:
        try:
            session.execute_statement(statement)
        except Exception as e:
            logger.warning(f"Failed to disable plan capture on {session.connection_id}: {e}")
