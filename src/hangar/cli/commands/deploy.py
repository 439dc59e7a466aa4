"""CLI commands for inspecting and managing deployments.

Implements the 'hangar deploy' command group for reading status records and
looking up or removing hosted services.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager

import click

from hangar.config.settings import load_settings
from hangar.deploy.deployers import create_deployer
from hangar.deploy.state import StatusRecorder
from hangar.lib.errors import ConfigError, DeploymentError
from hangar.lib.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in deployment commands.

    Exit codes:
        2: Configuration error
        3: Deployment/execution error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


verbose_option = click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug logging",
)
quiet_option = click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Print only the essential value",
)


@click.group(name="deploy", invoke_without_command=True)
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """Inspect and manage agent deployments.

    Subcommands:

        status   Show the status record of a request
        service  Show the live hosted service of a project
        destroy  Delete the hosted service of a project

    Example:

        hangar deploy status 9f86d081884c7d65...

        hangar deploy service demo
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@deploy.command()
@click.argument("request_id")
@verbose_option
@quiet_option
def status(request_id: str, verbose: bool, quiet: bool) -> None:
    """Show the status record of REQUEST_ID."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        settings = load_settings()
        recorder = StatusRecorder(settings.deployments_dir, settings.agents_dir)
        record = recorder.get_status(request_id)
        if record is None:
            raise ConfigError(
                field="request_id",
                message=f"No deployment record found for {request_id}",
            )

        if quiet:
            click.echo(record.status.value)
            sys.exit(0)

        click.echo()
        click.secho("Deployment Status", bold=True)
        click.echo(f"  Request:   {request_id}")
        click.echo(f"  Status:    {record.status.value}")
        click.echo(f"  Info:      {record.info}")
        if record.stage:
            click.echo(f"  Stage:     {record.stage.value}")
        if record.updated_at:
            click.echo(f"  Updated:   {record.updated_at.isoformat()}")
        for warning in record.warnings:
            click.secho(f"  Warning:   {warning}", fg="yellow")
        click.echo()


@deploy.command()
@click.argument("project_name")
@verbose_option
@quiet_option
def service(project_name: str, verbose: bool, quiet: bool) -> None:
    """Show the live hosted service of PROJECT_NAME."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        settings = load_settings()
        descriptor = create_deployer(settings).resolve(project_name)
        if descriptor is None:
            raise ConfigError(
                field="project_name",
                message=f"No hosted service found for {project_name}",
            )

        if quiet:
            click.echo(descriptor.status or "UNKNOWN")
            sys.exit(0)

        click.echo()
        click.secho("Hosted Service", bold=True)
        click.echo(f"  Service:   {descriptor.name}")
        click.echo(f"  Status:    {descriptor.status or 'UNKNOWN'}")
        if descriptor.version:
            click.echo(f"  Version:   {descriptor.version}")
        if descriptor.url:
            click.echo(f"  URL:       {descriptor.url}")
        if descriptor.agent_config:
            click.echo(
                f"  Sizing:    {descriptor.agent_config.vcpus} vCPU / "
                f"{descriptor.agent_config.ram}"
            )
        if descriptor.deployment_id:
            click.echo(f"  Deploy ID: {descriptor.deployment_id}")
        click.echo()


@deploy.command()
@click.argument("project_name")
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation prompt",
)
@verbose_option
@quiet_option
def destroy(project_name: str, force: bool, verbose: bool, quiet: bool) -> None:
    """Delete the hosted service of PROJECT_NAME."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        settings = load_settings()
        deployer = create_deployer(settings)
        descriptor = deployer.resolve(project_name)
        if descriptor is None:
            raise ConfigError(
                field="project_name",
                message=f"No hosted service found for {project_name}",
            )

        if not force:
            confirm = click.confirm(
                f"Destroy service '{descriptor.name}'?", default=False
            )
            if not confirm:
                click.secho("Destroy aborted.", fg="yellow")
                sys.exit(0)

        deployer.destroy(descriptor.arn)

        if quiet:
            click.echo("deleted")
            sys.exit(0)

        click.echo()
        click.secho("Service Destroyed", fg="green", bold=True)
        click.echo(f"  Service:   {descriptor.name}")
        click.echo()
