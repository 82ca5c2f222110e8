import asyncio
from pathlib import Path
from typing import Optional

import typer

from counter_mcp import __version__
from counter_mcp.cli.formatter import OutputFormatter
from counter_mcp.config.loader import build_settings, load_config
from counter_mcp.core.errors import CounterHostError
from counter_mcp.core.models import ServerSettings, TransportMode
from counter_mcp.runtime.host import ProcessHost

app = typer.Typer(name="counter-mcp", help="Counter MCP server with stdio and SSE transports", rich_markup_mode=None, add_completion=False)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"counter-mcp {__version__}")
        raise typer.Exit()


def _resolve_settings(
    config_path: Path,
    transport: Optional[TransportMode],
    bind_address: Optional[str],
    log_level: Optional[str],
) -> ServerSettings:
    config = load_config(config_path)
    return build_settings(
        config,
        overrides={
            "transport": transport,
            "bind_address": bind_address,
            "log_level": log_level,
        },
    )


@app.command()
def serve(
    transport: Optional[TransportMode] = typer.Option(
        None, "--transport", "-t", case_sensitive=False, help="Transport method to use [default: sse]"
    ),
    bind_address: Optional[str] = typer.Option(
        None, "--bind-address", "-b", help="Bind address for the SSE server (only used with sse transport) [default: 127.0.0.1:8000]"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Log level (trace, debug, info, warn, error) [default: info]"
    ),
    config: Path = typer.Option(Path("counter_mcp.yaml"), "--config", "-c", help="Optional YAML config file"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"),
):
    """
    Serve the counter over stdio or SSE.

    Usage:
    - SSE (default): counter-mcp
    - SSE on a custom address: counter-mcp -b 0.0.0.0:9000
    - stdio: counter-mcp --transport stdio
    - Log level: counter-mcp --log-level debug
    """
    try:
        settings = _resolve_settings(config, transport, bind_address, log_level)
    except CounterHostError as exc:
        OutputFormatter.log(f"Failed while {exc.phase}: {exc.message}", severity="error")
        raise typer.Exit(code=1)

    OutputFormatter.configure(settings.log_level)
    OutputFormatter.log(
        f"Parsed configuration: transport={settings.transport.value} bind_address={settings.bind_address} "
        f"log_level={settings.log_level}",
        severity="debug",
    )

    host = ProcessHost(settings)
    try:
        asyncio.run(host.run())
    except CounterHostError:
        # ProcessHost already reported the failing phase.
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        OutputFormatter.log("Server interrupted. Shutting down.", severity="info")

    OutputFormatter.log("Counter MCP server exiting", severity="info")


if __name__ == "__main__":
    app()
