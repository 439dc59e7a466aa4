"""Server runtime package for the deployment HTTP API.

This module provides the intake endpoint, status lookups and the OAuth
sign-in flow.
"""

from hangar.serve.server import DeploymentServer, create_app

__all__ = ["DeploymentServer", "create_app"]
