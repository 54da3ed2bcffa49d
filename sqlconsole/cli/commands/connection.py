"""Connection profile CLI commands."""

from __future__ import annotations

import asyncio
from typing import Optional

import click
from rich.table import Table

from sqlconsole.cli.utils import console, load_config
from sqlconsole.config import ConnectionInfo, DatabaseType
from sqlconsole.db import ConnectionAttempt, ConnectionRegistry
from sqlconsole.exceptions import ConfigurationError


@click.group(name="conn")
@click.pass_context
def conn_group(ctx: click.Context) -> None:
    """🔌 Connection profile management."""
    pass


@conn_group.command(name="test")
@click.argument("name", required=False)
@click.pass_context
def test_connection_command(ctx: click.Context, name: Optional[str]) -> None:
    """Probe a connection profile (default: every profile)."""
    try:
        config = load_config(ctx)
        names = [name] if name else list(config.connections)
        profiles = {profile: config.get_connection(profile) for profile in names}

        console.print("[bold blue]Testing Connections[/bold blue]\n")

        registry = ConnectionRegistry()
        failures = 0
        for profile, info in profiles.items():
            attempt = asyncio.run(registry.test_connect(info))
            _show_attempt(profile, info, attempt)
            failures += 0 if attempt.success else 1
    except ConfigurationError as exc:
        console.print(f"[red]Configuration Error: {exc}[/red]")
        raise SystemExit(1) from exc
    except Exception as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise SystemExit(1) from exc

    if failures:
        raise SystemExit(1)


@conn_group.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List configured connection profiles."""
    try:
        config = load_config(ctx)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration Error: {exc}[/red]")
        raise SystemExit(1) from exc

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Target", style="white")
    table.add_column("Database", style="yellow")
    table.add_column("Default", style="blue")

    for profile, info in config.connections.items():
        is_default = "✓" if profile == config.default_connection else ""
        table.add_row(profile, info.type.value, _target(info), info.database or "", is_default)

    console.print(table)
    console.print(f"\nTotal: {len(config.connections)} profile(s)")


def _target(info: ConnectionInfo) -> str:
    if info.type == DatabaseType.SQLITE:
        return info.path or ""
    return f"{info.server}:{info.port}"


def _show_attempt(profile: str, info: ConnectionInfo, attempt: ConnectionAttempt) -> None:
    """Display a probe result."""
    if attempt.success:
        console.print(f"[green]✅ {profile}[/green] ({info.display_label})")
        console.print(f"   Response time: {attempt.response_time:.2f}ms")
    else:
        console.print(f"[red]❌ {profile}[/red] ({info.display_label})")
        console.print(f"   Error: {attempt.error}")
