"""Main CLI entry point for SQL Console."""

from __future__ import annotations

import click
from rich.panel import Panel
from rich.text import Text

from sqlconsole import __version__
from sqlconsole.cli.commands import register_commands
from sqlconsole.cli.commands.configuration import config_group
from sqlconsole.cli.commands.connection import conn_group
from sqlconsole.cli.commands.query import query_command
from sqlconsole.cli.utils import configure_logging, console
from sqlconsole.config import EnvironmentSettings


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, version: bool, config: str, verbose: bool) -> None:
    """SQL Console - run SQL Server batches from the terminal."""
    settings = EnvironmentSettings()
    configure_logging(settings.log_level, verbose or settings.debug)

    ctx.ensure_object(dict)
    ctx.obj.update(
        {
            "config": config or settings.config_file,
            "verbose": verbose,
        }
    )

    if version:
        console.print(f"SQL Console v{__version__}")
        return

    if ctx.invoked_subcommand is None:
        show_dashboard()


COMMAND_REGISTRY = [
    query_command,
    conn_group,
    config_group,
]

register_commands(cli, COMMAND_REGISTRY)


def show_dashboard() -> None:
    """Display the start-up panel."""
    title = Text("SQL Console", style="bold blue")
    subtitle = Text("Query execution for SQL Server", style="italic")

    dashboard_content = Text()
    dashboard_content.append("▶️  Run Queries       sqlconsole query\n", style="bold")
    dashboard_content.append("🔌 Test Connections  sqlconsole conn test\n", style="bold")
    dashboard_content.append("⚙️  Configure         sqlconsole config sample\n", style="bold")
    dashboard_content.append("\nRun 'sqlconsole --help' for available commands", style="dim")

    panel = Panel(
        dashboard_content,
        title=title,
        subtitle=subtitle,
        border_style="blue",
        padding=(1, 2),
    )

    console.print(panel)


if __name__ == "__main__":
    cli()
