"""Command line entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any

import typer

from . import __version__
from .config import ConfigError, GatewayConfig, load_config
from .credentials import FileCredentialStore
from .server import GatewayServer
from .session import SessionManager
from .transport import BridgeEngine

_LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    name="wa-gateway",
    help="WhatsApp session gateway",
    no_args_is_help=True,
)


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Log failures nobody awaited; the gateway keeps running."""
    err = context.get("exception")
    _LOGGER.error(
        "Unhandled error: %s",
        context.get("message", "unknown"),
        exc_info=err if isinstance(err, BaseException) else None,
    )


def build_server(config: GatewayConfig) -> GatewayServer:
    """Wire engine, credential store and session manager into a server."""
    engine = BridgeEngine(
        config.bridge_url,
        token=config.bridge_token,
        connect_timeout=config.connect_timeout,
        send_timeout=config.send_timeout,
    )
    session = SessionManager(
        engine,
        FileCredentialStore(config.auth_dir),
        reconnect_delay=config.reconnect_delay,
    )
    return GatewayServer(session, cors_origin=config.cors_origin)


async def _serve(config: GatewayConfig) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_unhandled)

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    server = build_server(config)
    await server.start(config.host, config.port)
    try:
        await stop.wait()
    finally:
        _LOGGER.info("Shutting down")
        await server.stop()


@app.command()
def serve(
    config: Path = typer.Option(None, "--config", "-c", help="YAML config file"),
    host: str = typer.Option(None, "--host", help="Bind address"),
    port: int = typer.Option(None, "--port", "-p", help="HTTP port"),
    bridge_url: str = typer.Option(None, "--bridge-url", help="Bridge WebSocket URL"),
    log_level: str = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """Run the HTTP gateway."""
    try:
        settings = load_config(
            config, host=host, port=port, bridge_url=bridge_url, log_level=log_level
        )
    except ConfigError as err:
        typer.echo(f"Error: {err}", err=True)
        raise typer.Exit(1) from err

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    asyncio.run(_serve(settings))


@app.command()
def version() -> None:
    """Show the installed version."""
    typer.echo(f"wa-gateway {__version__}")
