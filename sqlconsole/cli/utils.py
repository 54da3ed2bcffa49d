"""Shared CLI utilities for SQL Console."""

from __future__ import annotations

import json
import logging
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from sqlconsole.config import ConfigParser, ConsoleConfig
from sqlconsole.db.messages import MessageSeverity
from sqlconsole.execution.models import QueryResult, ResultSet
from sqlconsole.execution.showplan import ExecutionPlanNode

# Single console instance reused across CLI modules
console = Console()

SEVERITY_STYLES = {
    MessageSeverity.INFO: "dim",
    MessageSeverity.WARNING: "yellow",
    MessageSeverity.ERROR: "red",
}

NULL_MARKUP = "[dim italic]NULL[/dim italic]"


def configure_logging(level: str, verbose: bool = False) -> None:
    """Configure root logging for a CLI run."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_config(ctx) -> ConsoleConfig:
    """Load the configuration selected by the root `--config` option."""
    return ConfigParser().load_config(ctx.obj.get("config"))


def print_exception(message: str, error: Exception, verbose: bool = False) -> None:
    """Render a formatted exception message.

    Args:
        message: Friendly context message to display before the exception.
        error: Original exception instance.
        verbose: When True, render the full traceback for debugging.
    """
    console.print(f"[red]{message}: {error}[/red]")
    if verbose:
        import traceback

        console.print(f"[dim]{traceback.format_exc()}[/dim]")


def build_result_table(result_set: ResultSet, title: Optional[str] = None) -> Table:
    """Render one result set as a rich table."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    for column in result_set.columns:
        table.add_column(column.name or "(No column name)", style="cyan")
    for row in result_set.rows:
        table.add_row(*(NULL_MARKUP if value is None else str(value) for value in row))
    return table


def build_plan_tree(node: ExecutionPlanNode, tree: Optional[Tree] = None) -> Tree:
    """Render an execution plan operator tree."""
    label = f"[bold]{node.physical_op}[/bold] [yellow]{node.total_cost_percentage:.0f}%[/yellow]"
    if node.object_name:
        label += f" [cyan]{node.object_name}[/cyan]"
    if node.warnings:
        label += f" [red]! {node.warnings}[/red]"
    branch = tree.add(label) if tree is not None else Tree(label)
    for child in node.children:
        build_plan_tree(child, branch)
    return branch


def render_result(result: QueryResult, output_format: str = "table") -> None:
    """Print a query result: result sets, plan and colour-coded messages."""
    if output_format == "json":
        console.print_json(json.dumps(result.to_dict(), default=str))
        return

    for index, result_set in enumerate(result.result_sets, start=1):
        title = f"Result {index}" if len(result.result_sets) > 1 else None
        console.print(build_result_table(result_set, title))

    for root in result.plan:
        if root.statement_text:
            console.print(f"[bold blue]Plan:[/bold blue] {root.statement_text.strip()}")
        console.print(build_plan_tree(root))

    for message in result.messages:
        style = SEVERITY_STYLES.get(message.severity, "")
        console.print(message.text, style=style, markup=False, highlight=False)
