"""Hangar - Deploy agent bundles as hosted container services.

Hangar accepts an agent configuration upload, builds a container image from
it, pushes the image to a registry and creates or updates a hosted service
running that image.

Main features:
- Multipart intake with an upload allow-list
- Docker image build with a local smoke run
- ECR publishing and App Runner create-or-update
- IAM service role provisioning
- Per-request status records pollable over HTTP
"""

from hangar.config.settings import Settings, load_settings
from hangar.lib.errors import ConfigError, DeploymentError, HangarError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigError",
    "DeploymentError",
    "HangarError",
    "Settings",
    "load_settings",
]
