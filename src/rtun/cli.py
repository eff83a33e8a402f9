"""Command line entry point."""

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import typer
from pydantic import ValidationError

from . import __version__
from .config import LogLevel, SupervisorConfig, load_config
from .exceptions import ConfigError, SignalSetupError
from .hosts import HostCatalog
from .logging import setup_logging
from .models import TunnelSpec
from .screen import HeadlessScreen, run_in_curses
from .session import supervise

app = typer.Typer(
    help="Rtun - a simple CLI for creating SSH tunnels.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"rtun {__version__}")
        raise typer.Exit()


def fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def flag_level(value: str | None) -> str:
    """``--log-level`` if it names a level, else INFO (validated later)."""
    if value and value.upper() in LogLevel.__members__:
        return value.upper()
    return LogLevel.INFO.value


def build_specs(ports: list[int], host: str | None) -> list[TunnelSpec]:
    """One same-port tunnel per requested port."""
    if not ports:
        return []
    if not host:
        fail("--host is required when ports are given")
    try:
        return [TunnelSpec(host=host, local_port=port, remote_port=port) for port in ports]
    except ValidationError as e:
        fail(f"Invalid host '{host}': {e.errors()[0]['msg']}")


@app.command()
def main(
    ports: list[int] | None = typer.Argument(
        None, min=0, max=65535, help="List of ports to tunnel", show_default=False
    ),
    host: str | None = typer.Option(None, "--host", help="Host to tunnel through"),
    ssh_config: Path | None = typer.Option(
        None, "--ssh-config", help="SSH client config listing known hosts [default: ~/.ssh/config]"
    ),
    config_file: Path | None = typer.Option(
        None, "--config", "-c", help="TOML file with supervisor settings"
    ),
    ssh_binary: str | None = typer.Option(None, "--ssh-binary", help="ssh executable"),
    headless: bool = typer.Option(
        False, "--headless", help="No terminal UI; run until SIGINT/SIGTERM"
    ),
    log_file: Path | None = typer.Option(None, "--log-file", help="Write logs to this file"),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Render logs as JSON"),
    version: bool = typer.Option(
        False, "--version", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Forward each PORT to the same port on HOST, or add tunnels interactively."""
    specs = build_specs(ports or [], host)

    # Until the config file is read only the flags are known; log to stderr
    setup_logging(
        level=flag_level(log_level),
        json_format=json_logs,
        log_file=str(log_file) if log_file else None,
    )

    overrides = {
        "ssh_binary": ssh_binary,
        "ssh_config_path": ssh_config,
        "log_file": log_file,
        "log_level": log_level,
        "json_logs": json_logs or None,
    }
    try:
        if config_file is not None:
            config = load_config(config_file, **overrides)
        else:
            config = SupervisorConfig(**{k: v for k, v in overrides.items() if v is not None})
    except ConfigError as e:
        fail(str(e))
    except ValidationError as e:
        fail(f"Invalid configuration: {e}")

    # If a human is watching, draw the UI; when piped, just log
    headless = headless or not sys.stdout.isatty()
    if headless and not specs:
        fail("no ports given; headless mode needs at least one tunnel")

    catalog = HostCatalog(config.ssh_config_path, required=config.ssh_config_path is not None)
    try:
        catalog.load()
    except ConfigError as e:
        fail(str(e))

    setup_logging(
        level=config.log_level.value,
        json_format=config.json_logs,
        log_file=str(config.log_file) if config.log_file else None,
        console=headless,
    )

    try:
        if headless:
            asyncio.run(supervise(config, HeadlessScreen(), specs, catalog))
        else:
            run_in_curses(lambda screen: supervise(config, screen, specs, catalog))
    except SignalSetupError as e:
        fail(str(e))
