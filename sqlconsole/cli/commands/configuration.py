"""Configuration management CLI commands."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from sqlconsole.cli.utils import console
from sqlconsole.config import ConfigParser, ConsoleConfig, write_sample_config
from sqlconsole.exceptions import ConfigurationError


@click.group(name="config")
def config_group() -> None:
    """⚙️  Configuration management."""
    pass


@config_group.command(name="validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def validate_command(config_file: str) -> None:
    """Check a configuration file and summarize its connection profiles."""
    try:
        config = ConfigParser().load_config(config_file)
    except ConfigurationError as exc:
        console.print(f"[red]❌ {exc}[/red]")
        raise SystemExit(1) from exc

    console.print(f"[green]✅ Configuration is valid: {config_file}[/green]")
    console.print(_profile_summary(config))
    console.print(
        f"Timeouts: query {config.execution.query_timeout}s, scalar {config.execution.scalar_timeout}s; "
        f"fetch size {config.execution.fetch_size}"
    )


@config_group.command(name="sample")
@click.argument("output_file", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, help="Overwrite an existing file without asking")
def sample_command(output_file: str, force: bool) -> None:
    """Write a starter configuration with one SQL Server and one SQLite profile."""
    output_path = Path(output_file)
    if output_path.exists() and not force:
        click.confirm(f"File '{output_file}' exists. Overwrite?", abort=True)

    try:
        write_sample_config(output_path)
    except OSError as exc:
        console.print(f"[red]Could not write '{output_file}': {exc}[/red]")
        raise SystemExit(1) from exc

    console.print(f"[green]✅ Sample configuration created: {output_file}[/green]")
    console.print("Set MSSQL_SA_PASSWORD or edit the 'local' profile, then check it with:")
    console.print(f"  [cyan]sqlconsole --config {output_file} conn test[/cyan]")


def _profile_summary(config: ConsoleConfig) -> Table:
    table = Table(title="Connection profiles", show_header=True, header_style="bold magenta")
    table.add_column("Profile", style="cyan")
    table.add_column("Connection", style="white")
    table.add_column("Database", style="yellow")
    table.add_column("Default", style="blue")

    for name, info in config.connections.items():
        table.add_row(
            name,
            info.display_label,
            info.database or "",
            "✓" if name == config.default_connection else "",
        )
    return table
