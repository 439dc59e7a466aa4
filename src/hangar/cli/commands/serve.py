"""CLI command for running the deployment server.

Implements the 'hangar serve' command exposing the intake endpoint, status
lookups and OAuth sign-in over HTTP.
"""

from __future__ import annotations

import sys

import click

from hangar.config.settings import Settings, load_settings
from hangar.lib.errors import ConfigError
from hangar.lib.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


@click.command()
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to listen on (default: HANGAR_PORT or 4000)",
)
@click.option(
    "--host",
    "-h",
    type=str,
    default=None,
    help="Host to bind to (default: HANGAR_HOST or 127.0.0.1)",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging and error details in responses",
)
@click.option(
    "--cors-origins",
    type=str,
    default=None,
    help="Comma-separated list of allowed CORS origins",
)
def serve(
    port: int | None,
    host: str | None,
    debug: bool,
    cors_origins: str | None,
) -> None:
    """Start the deployment server.

    Settings are read from HANGAR_* environment variables and a .env file;
    options given here take precedence.

    Example:

        hangar serve

        hangar serve --port 4000 --host 0.0.0.0
    """
    overrides: dict[str, object] = {}
    if port is not None:
        overrides["port"] = port
    if host is not None:
        overrides["host"] = host
    if cors_origins is not None:
        overrides["cors_origins"] = [
            o.strip() for o in cors_origins.split(",") if o.strip()
        ]

    try:
        settings = load_settings(**overrides)
        setup_logging(verbose=debug, level=None if debug else settings.log_level)
        logger.info(
            f"Serve command invoked: host={settings.host}, port={settings.port}, "
            f"data_dir={settings.data_dir}, debug={debug}"
        )
        _run_server(settings, debug=debug)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}", exc_info=True)
        click.secho("Error: Invalid configuration", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Server interrupted by user (Ctrl+C)")
        click.echo()
        click.secho("Server stopped.", fg="yellow")
        sys.exit(130)


def _run_server(settings: Settings, debug: bool) -> None:
    """Build the app and run it under uvicorn until interrupted."""
    import uvicorn

    from hangar.serve.server import DeploymentServer

    server = DeploymentServer(settings, debug=debug)
    app = server.create_app()

    click.echo()
    click.secho("Hangar deployment server", bold=True)
    click.echo(f"  Listening: http://{settings.host}:{settings.port}")
    click.echo(f"  Records:   {settings.data_dir}")
    click.echo(f"  Region:    {settings.aws_region}")
    click.echo()

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="debug" if debug else "info",
    )
