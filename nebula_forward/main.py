"""
Main entry point for the Nebula Forward application.

This module provides the command-line interface: serving the control API,
running a single tunnel in the foreground and managing configuration files.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import aiohttp
import typer
import uvicorn

from .application.startup import ApplicationStartup
from .core.domain.tunnels import StatusUpdate, TunnelSpec
from .core.exceptions import TunnelError
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging
from .presentation.api.app import create_app

# Create CLI application
cli = typer.Typer(
    name="nebula-forward",
    help="SSH tunnel manager with local, remote and dynamic (SOCKS5) forwarding"
)

logger = logging.getLogger(__name__)


def _load_config(config_file: Optional[str], log_level: Optional[str], debug: bool) -> ApplicationConfig:
    config = ConfigLoader().load_config(config_file)

    if log_level:
        config.logging.level = log_level.upper()
    if debug:
        config.debug = True
        config.logging.level = "DEBUG"

    return config


@cli.command()
def serve(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    host: Optional[str] = typer.Option(
        None, "--host", help="API host address"
    ),
    port: Optional[int] = typer.Option(
        None, "--port", "-p", help="API port"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level"
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug mode"
    )
) -> None:
    """Serve the control API and start the configured tunnels."""

    try:
        config = _load_config(config_file, log_level, debug)
    except (ValueError, FileNotFoundError) as e:
        typer.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    if host:
        config.api.host = host
    if port:
        config.api.port = port

    config.ensure_directories()
    setup_logging(config.logging)

    logger.info(f"Starting {config.name} v{config.version}")
    logger.info(f"Environment: {config.environment}")
    logger.info(f"Debug mode: {config.debug}")

    app = create_app(config)

    try:
        # log_config=None leaves uvicorn's loggers to the loguru bridge
        uvicorn.run(
            app,
            host=config.api.host,
            port=config.api.port,
            log_config=None,
            access_log=config.debug,
        )
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")


@cli.command()
def forward(
    forwarding_type: str = typer.Argument(..., metavar="TYPE", help="local, remote or dynamic"),
    hostname: str = typer.Option(..., "--ssh-host", "-H", help="SSH server hostname or IP"),
    local_port: int = typer.Option(..., "--local-port", "-L", help="Listen port (0 picks one)"),
    remote_host: Optional[str] = typer.Option(None, "--remote-host", help="Destination host"),
    remote_port: Optional[int] = typer.Option(None, "--remote-port", help="Destination port"),
    bind_address: Optional[str] = typer.Option(None, "--bind", help="Listen address"),
    ssh_port: int = typer.Option(22, "--ssh-port", help="SSH server port"),
    username: str = typer.Option("root", "--user", "-u", help="SSH username"),
    password: Optional[str] = typer.Option(None, "--password", help="SSH password"),
    key_file: Optional[Path] = typer.Option(None, "--key", "-i", help="Private key file"),
    passphrase: Optional[str] = typer.Option(None, "--passphrase", help="Private key passphrase"),
    tunnel_id: str = typer.Option("cli", "--id", help="Tunnel id used in log and status output"),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode")
) -> None:
    """Run one tunnel in the foreground until interrupted or disconnected."""

    try:
        config = _load_config(config_file, log_level, debug)
    except (ValueError, FileNotFoundError) as e:
        typer.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    config.ensure_directories()
    setup_logging(config.logging)

    private_key = None
    if key_file is not None:
        try:
            private_key = key_file.read_text()
        except OSError as e:
            typer.echo(f"Cannot read key file {key_file}: {e}", err=True)
            sys.exit(1)

    spec = {
        "tunnelId": tunnel_id,
        "type": forwarding_type,
        "localPort": local_port,
        "bindAddress": bind_address,
        "remoteHost": remote_host,
        "remotePort": remote_port,
        "hostname": hostname,
        "port": ssh_port,
        "username": username,
        "password": password,
        "privateKey": private_key,
        "passphrase": passphrase,
    }

    try:
        asyncio.run(run_forward(config, spec))
    except TunnelError as e:
        typer.echo(f"Tunnel failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


async def run_forward(config: ApplicationConfig, spec: dict, startup: Optional[ApplicationStartup] = None) -> None:
    """
    Start one tunnel and wait until it ends or a signal arrives.

    Status changes are echoed as they happen.

    Raises:
        TunnelError: If the tunnel cannot be started
    """
    startup = startup or ApplicationStartup(config)
    done = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_status(update: StatusUpdate) -> None:
        line = f"[{update.tunnel_id}] {update.status.value}"
        if update.error:
            line += f": {update.error}"
        typer.echo(line)
        if update.status.is_terminal:
            done.set()

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, stopping tunnel...")
        loop.call_soon_threadsafe(done.set)

    previous_handlers = {
        signum: signal.signal(signum, signal_handler)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        await startup.start_application(start_tunnels=False)
        manager = startup.services.tunnel_manager

        result = await manager.start_tunnel(spec, caller=on_status)
        if result.bound_port is not None:
            typer.echo(f"[{result.tunnel_id}] listening on port {result.bound_port}")

        await done.wait()
        await manager.stop_tunnel(result.tunnel_id)
    finally:
        await startup.stop_application()
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


@cli.command()
def init_config(
    output: str = typer.Option(
        "config.yaml", "--output", "-o", help="Output configuration file"
    ),
    format: str = typer.Option(
        "yaml", "--format", "-f", help="Configuration format (yaml/json)"
    )
) -> None:
    """Generate a default configuration file."""

    config = ApplicationConfig()
    config_loader = ConfigLoader()

    try:
        config_loader.save_config(config, output, format)
        typer.echo(f"Default configuration saved to {output}")
    except (ValueError, OSError) as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
def validate_config(
    config_file: str = typer.Argument(...,
                                      help="Configuration file to validate")
) -> None:
    """Validate a configuration file, including its tunnel list."""

    config_loader = ConfigLoader()

    try:
        config = config_loader.load_config(config_file)
        for entry in config.forwarding.tunnels:
            TunnelSpec.from_dict(entry)
    except (ValueError, FileNotFoundError, TunnelError) as e:
        typer.echo(f"Configuration validation failed: {e}", err=True)
        sys.exit(1)

    typer.echo(f"Configuration file {config_file} is valid")
    typer.echo(f"Application: {config.name} v{config.version}")
    typer.echo(f"Environment: {config.environment}")
    typer.echo(f"Configured tunnels: {len(config.forwarding.tunnels)}")


@cli.command()
def health_check(
    host: str = typer.Option("127.0.0.1", "--host", help="Server host"),
    port: int = typer.Option(8765, "--port", help="Server port"),
    timeout: float = typer.Option(10.0, "--timeout", help="Request timeout")
) -> None:
    """Check the health of a running server."""

    async def check_health() -> bool:
        url = f"http://{host}:{port}/health"
        timeout_config = aiohttp.ClientTimeout(total=timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.get(url) as response:
                    if response.status == 200:
                        data = await response.json()
                        typer.echo(
                            f"Server is {data.get('status', 'unknown')}, "
                            f"{data.get('tunnels', 0)} active tunnel(s)")
                        return data.get('status') == "healthy"
                    else:
                        typer.echo(f"Server returned status {response.status}")
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            typer.echo(f"Health check failed: {e}")
            return False

    result = asyncio.run(check_health())
    if not result:
        sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
