"""tickit-sync CLI main entry point."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from tickit_sync import __version__
from tickit_sync.cli._helpers import configure_logging, load_config, run_async
from tickit_sync.config import CONFIG_ENV_VAR, ServerConfig
from tickit_sync.storage.base import DeviceCursor
from tickit_sync.storage.sqlite_store import SQLiteStorage
from tickit_sync.tokens import is_hashed
from tickit_sync.utils.timeutils import format_timestamp

app = typer.Typer(
    name="tickit-sync",
    help="Self-hosted sync server for tickit",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config.toml (default: auto-detect)"),
]


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tickit-sync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version"),
    ] = False,
) -> None:
    """tickit-sync command line."""


@app.command()
def serve(
    config_path: ConfigOption = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to listen on")] = None,
    bind: Annotated[str | None, typer.Option("--bind", "-b", help="Address to bind to")] = None,
) -> None:
    """Run the sync server.

    Examples:
        tickit-sync serve
        tickit-sync serve --config /data/config.toml
        tickit-sync serve --port 8080 --bind 127.0.0.1
    """
    import uvicorn

    config = load_config(config_path)
    configure_logging(config.logging.level)
    if config_path is not None:
        # The uvicorn app factory loads the config itself
        os.environ[CONFIG_ENV_VAR] = str(config_path.resolve())

    host = bind or config.server.bind
    listen_port = port or config.server.port

    if not config.tokens:
        typer.secho(
            "Warning: no API tokens configured. Create one with: tickit-sync token --name <device>",
            fg=typer.colors.YELLOW,
            err=True,
        )

    typer.echo(f"Starting tickit-sync {__version__} on http://{host}:{listen_port}")
    typer.echo(f"  Database: {config.database_path}")

    uvicorn.run(
        "tickit_sync.server.app:create_app",
        host=host,
        port=listen_port,
        factory=True,
        log_level=config.logging.level.lower(),
    )


@app.command()
def token(
    name: Annotated[
        str | None, typer.Option("--name", "-n", help="Create a token for this device")
    ] = None,
    list_tokens: Annotated[bool, typer.Option("--list", "-l", help="List token names")] = False,
    revoke: Annotated[
        str | None, typer.Option("--revoke", help="Revoke the token with this name")
    ] = None,
    config_path: ConfigOption = None,
) -> None:
    """Create, list or revoke API tokens.

    Examples:
        tickit-sync token --name laptop
        tickit-sync token --list
        tickit-sync token --revoke laptop
    """
    config = load_config(config_path)

    if list_tokens:
        _print_tokens(config)
        return

    if revoke is not None:
        if not config.revoke_token(revoke):
            typer.secho(f"No token named {revoke!r}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        path = config.save()
        typer.secho(f"Revoked token {revoke!r}", fg=typer.colors.GREEN)
        typer.echo(f"  Config: {path}")
        return

    if name is None:
        typer.echo("Specify --name NAME, --list or --revoke NAME.")
        raise typer.Exit(1)

    try:
        plain = config.add_token(name)
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e

    path = config.save()
    typer.secho(f"Created token for {name.strip()!r}", fg=typer.colors.GREEN)
    typer.echo()
    typer.secho(f"  {plain}", bold=True)
    typer.echo()
    typer.echo("Store it now: only its hash is kept in the config.")
    typer.echo(f"  Config: {path}")


def _print_tokens(config: ServerConfig) -> None:
    if not config.tokens:
        typer.echo("No tokens configured.")
        return
    table = Table(title="API tokens")
    table.add_column("Name", style="cyan")
    table.add_column("Storage")
    for entry in config.tokens:
        stored = "hashed" if is_hashed(entry.token_hash) else "[yellow]plain[/yellow]"
        table.add_row(entry.name, stored)
    console.print(table)


@app.command()
def init(
    output: Annotated[
        Path, typer.Option("--output", "-o", help="Where to write the config file")
    ] = Path("config.toml"),
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing file")] = False,
) -> None:
    """Write a default config file."""
    if output.exists() and not force:
        typer.secho(f"{output} already exists (use --force to overwrite)", fg=typer.colors.RED)
        raise typer.Exit(1)

    path = ServerConfig().save(output)
    typer.secho(f"Wrote default config to {path}", fg=typer.colors.GREEN)
    typer.echo("Next: tickit-sync token --name <device-name>")


@app.command()
def devices(
    config_path: ConfigOption = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List devices and their last sync time."""
    config = load_config(config_path)

    async def _list() -> list[DeviceCursor]:
        storage = SQLiteStorage(config.database_path)
        await storage.initialize()
        try:
            return await storage.list_devices()
        finally:
            await storage.close()

    cursors = run_async(_list())

    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "device_id": d.device_id,
                        "device_name": d.device_name,
                        "last_sync": format_timestamp(d.last_sync),
                        "registered_at": format_timestamp(d.registered_at),
                    }
                    for d in cursors
                ],
                indent=2,
            )
        )
        return

    if not cursors:
        typer.echo("No devices have synced yet.")
        return

    table = Table(title="Devices")
    table.add_column("Device", style="cyan")
    table.add_column("Name")
    table.add_column("Last sync", style="green")
    table.add_column("Registered", style="bright_black")
    for d in cursors:
        table.add_row(
            d.device_id,
            d.device_name or "-",
            format_timestamp(d.last_sync),
            format_timestamp(d.registered_at),
        )
    console.print(table)
