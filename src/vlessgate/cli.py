"""vlessgate CLI - Command line interface."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from typing import Any

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from vlessgate.core.config import (
    DEFAULT_PATH_PREFIX,
    ServerConfig,
    clear_config,
    flatten_config,
    get_config,
    load_config_from_file,
)
from vlessgate.core.exceptions import ConfigurationError
from vlessgate.security.identity import Identity

console = Console()

BANNER = r"""
        _                                _
__   __| |  ___  ___  ___   __ _   __ _ | |_   ___
\ \ / /| | / _ \/ __|/ __| / _` | / _` || __| / _ \
 \ V / | ||  __/\__ \\__ \| (_| || (_| || |_ |  __/
  \_/  |_| \___||___/|___/ \__, | \__,_| \__| \___|
                           |___/
            VLESS over WebSocket gateway
"""

_SETTINGS_SECTIONS = ("timeouts", "resources")


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
    )


def _apply_file_settings(file_config: dict[str, Any]) -> None:
    """Export timeouts_*/resources_* entries as VLESSGATE_* env vars.

    Variables already present in the environment win over the file.
    """
    for key, value in file_config.items():
        for section in _SETTINGS_SECTIONS:
            if key.startswith(f"{section}_"):
                env_key = f"VLESSGATE_{key[len(section) + 1 :].upper()}"
                os.environ.setdefault(env_key, str(value))
    clear_config()


@click.group()
def main():
    """vlessgate - VLESS over WebSocket tunnel gateway.

    Examples:

        vlessgate serve --uuid 0d3c8f6e-3d5a-4c61-9a53-0b6f3c1b2a77

        vlessgate serve --uuid $UUID --port 8080 --name edge-1

        vlessgate config show --json

    Tunables (timeouts, ceilings, buffer sizes) are read from VLESSGATE_*
    environment variables. Use 'vlessgate config show' to see them.
    """


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--uuid", "uuid_value", envvar=["VLESSGATE_UUID", "UUID"], help="Client UUID")
@click.option("--host", default=None, envvar="VLESSGATE_HOST", help="Bind address (default: 0.0.0.0)")
@click.option(
    "--port", "-p",
    type=int,
    default=None,
    envvar=["VLESSGATE_PORT", "PORT"],
    help="Listen port (default: 3000)",
)
@click.option(
    "--name",
    envvar=["VLESSGATE_NAME", "NAME"],
    help="Node name; WebSocket path becomes <path-prefix><name>",
)
@click.option(
    "--path-prefix",
    default=None,
    envvar=["VLESSGATE_PATH_PREFIX", "VLESS_PATH_PREFIX"],
    help=f"WebSocket path prefix used with --name (default: {DEFAULT_PATH_PREFIX})",
)
@click.option("--cert", envvar="VLESSGATE_CERT_PATH", help="TLS certificate path")
@click.option("--key", envvar="VLESSGATE_KEY_PATH", help="TLS private key path")
@click.option("--metrics", is_flag=True, default=False, help="Expose Prometheus metrics at /metrics")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    help="Log level (default: info)",
)
def serve(
    config_file: str | None,
    uuid_value: str | None,
    host: str | None,
    port: int | None,
    name: str | None,
    path_prefix: str | None,
    cert: str | None,
    key: str | None,
    metrics: bool,
    verbose: bool,
    log_level: str,
):
    """Run the tunnel gateway."""
    file_config: dict[str, Any] = {}
    if config_file:
        try:
            file_config = flatten_config(load_config_from_file(config_file))
            console.print(f"Loaded config from {config_file}", style="dim")
        except (OSError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)
        _apply_file_settings(file_config)

    if uuid_value is None:
        uuid_value = file_config.get("uuid")
    if not uuid_value:
        console.print("[red]A client UUID is required (--uuid or VLESSGATE_UUID).[/red]")
        sys.exit(1)

    try:
        identity = Identity.from_string(str(uuid_value))
        config = ServerConfig(
            uuid=identity.uuid,
            host=host or file_config.get("host", "0.0.0.0"),
            port=port or int(file_config.get("port", 3000)),
            name=name or file_config.get("name"),
            path_prefix=path_prefix or file_config.get("path_prefix", DEFAULT_PATH_PREFIX),
            cert_path=cert or file_config.get("cert"),
            key_path=key or file_config.get("key"),
            metrics_enabled=metrics or bool(file_config.get("metrics", False)),
        )
        # surfaces invalid VLESSGATE_* values before binding
        get_config().to_display_dict()
    except (ConfigurationError, ValidationError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)

    configure_logging("debug" if verbose else log_level)

    console.print(BANNER, style="cyan")
    console.print(f"Listening on {config.host}:{config.port}", style="yellow")
    console.print(f"WebSocket path: {config.ws_path}", style="dim")
    console.print(f"TLS: {'enabled' if config.cert_path and config.key_path else 'disabled'}", style="dim")
    if config.metrics_enabled:
        console.print("Metrics: enabled at /metrics", style="green")

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")
    except ConfigurationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)
    except OSError as e:
        console.print(f"[red]Failed to start server:[/red] {e}")
        sys.exit(1)


async def run_server(config: ServerConfig) -> None:
    """Run the gateway until SIGINT/SIGTERM."""
    from vlessgate.server.gateway import GatewayServer

    server = GatewayServer(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")
        await stop_event.wait()
        console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()


@main.command()
def version():
    """Show version information."""
    from vlessgate import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """View configuration settings.

    All tunables can be set via environment variables with the VLESSGATE_
    prefix, e.g. VLESSGATE_CONNECT_TIMEOUT=5.
    """


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--env", "env_output", is_flag=True, help="Output as VLESSGATE_*=value lines")
@click.option("--section", "-s", help="Show only one section (timeouts, resources)")
def config_show(json_output: bool, env_output: bool, section: str | None):
    """Show current configuration settings."""
    try:
        settings = get_config()
        display = settings.to_display_dict()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if env_output:
        for env_key, value in settings.to_env_dict(section).items():
            click.echo(f"{env_key}={value}")
        return

    if json_output:
        click.echo(json.dumps(display, indent=2))
        return

    for section_name, values in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")
        for setting, value in values.items():
            table.add_row(setting, str(value), f"VLESSGATE_{setting.upper()}")
        console.print(table)


if __name__ == "__main__":
    main()
