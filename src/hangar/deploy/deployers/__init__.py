"""Managed-runtime deployers for agent images."""

from __future__ import annotations

from typing import TYPE_CHECKING

from hangar.deploy.deployers.base import BaseDeployer

if TYPE_CHECKING:
    from hangar.config.settings import Settings


def create_deployer(settings: Settings) -> BaseDeployer:
    """Create the deployer for the configured platform (AWS App Runner)."""
    from hangar.deploy.deployers.aws_apprunner import AppRunnerDeployer

    return AppRunnerDeployer(settings)


__all__ = ["BaseDeployer", "create_deployer"]
