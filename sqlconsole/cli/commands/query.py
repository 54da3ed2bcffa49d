"""Query execution CLI command."""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from sqlconsole.cancellation import CancellationToken
from sqlconsole.cli.utils import console, load_config, render_result
from sqlconsole.config import ConsoleConfig
from sqlconsole.db import ConnectionEvent, ConnectionEventType, ConnectionRegistry
from sqlconsole.exceptions import ConfigurationError, DatabaseError
from sqlconsole.execution import QueryExecutor, QueryResult

logger = logging.getLogger(__name__)


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[CancellationToken]:
    """Fire ``token`` on Ctrl-C while the block runs inside an event loop."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError) as e:
        logger.debug(f"Ctrl-C cancellation unavailable: {e}")
        installed = False
    try:
        yield token
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _report_error(event: ConnectionEvent) -> None:
    if event.kind == ConnectionEventType.ERROR and event.message:
        console.print(f"[red]{event.message}[/red]")


async def run_query(
    config: ConsoleConfig,
    sql: str,
    connection: Optional[str] = None,
    database: Optional[str] = None,
    include_plan: bool = False,
) -> QueryResult:
    """Connect with a saved profile, run one batch and disconnect.

    Raises:
        DatabaseError: If the connection or the database switch fails.
    """
    async with ConnectionRegistry() as registry:
        with registry.subscribe(_report_error):
            attempt = await registry.connect_saved(config, connection)
            if not attempt.success:
                raise DatabaseError(attempt.error or "Connection failed")

            if database and not await registry.change_database(database):
                raise DatabaseError(f"Could not switch to database '{database}'")

            executor = QueryExecutor(registry, config.execution)
            token = CancellationToken()
            token.register(lambda: console.print("[yellow]Cancelling...[/yellow]"))
            with cancel_on_interrupt(token):
                return await executor.execute(sql, include_execution_plan=include_plan, cancellation=token)


@click.command(name="query")
@click.argument("sql", required=False)
@click.option("--file", "-f", "sql_file", type=click.Path(exists=True, dir_okay=False), help="Read the batch from a file")
@click.option("--connection", "-c", help="Connection profile (default: default_connection)")
@click.option("--database", "-d", help="Switch to this database before running")
@click.option("--plan", is_flag=True, help="Capture the actual execution plan")
@click.option("--output", type=click.Choice(["table", "json"]), default="table", help="Output format")
@click.pass_context
def query_command(
    ctx: click.Context,
    sql: Optional[str],
    sql_file: Optional[str],
    connection: Optional[str],
    database: Optional[str],
    plan: bool,
    output: str,
) -> None:
    """▶️  Execute a SQL batch and show every result set and message."""
    if bool(sql) == bool(sql_file):
        console.print("[red]Provide either SQL text or --file[/red]")
        raise SystemExit(2)

    text = Path(sql_file).read_text(encoding="utf-8") if sql_file else sql

    try:
        config = load_config(ctx)
        result = asyncio.run(run_query(config, text, connection, database, plan))
    except ConfigurationError as exc:
        console.print(f"[red]Configuration Error: {exc}[/red]")
        raise SystemExit(1) from exc
    except DatabaseError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise SystemExit(1) from exc

    render_result(result, output)
    if result.has_errors:
        raise SystemExit(1)
