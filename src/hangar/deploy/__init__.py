"""Hangar deployment engine.

This package provides the deployment pipeline for agent bundles, including
artifact staging, Dockerfile generation, container building, registry
publishing, role provisioning and cloud deployment.
"""

from hangar.deploy.builder import BuildResult, ContainerBuilder, get_oci_labels
from hangar.deploy.dockerfile import generate_dockerfile
from hangar.deploy.identifiers import (
    derive_agent_id,
    derive_bucket_name,
    derive_deployment_id,
    derive_request_id,
)
from hangar.deploy.pipeline import (
    AcceptedSubmission,
    DeploymentPipeline,
    Submission,
    validate_submission,
)
from hangar.deploy.state import StatusRecorder

__all__ = [
    "AcceptedSubmission",
    "BuildResult",
    "ContainerBuilder",
    "DeploymentPipeline",
    "StatusRecorder",
    "Submission",
    "derive_agent_id",
    "derive_bucket_name",
    "derive_deployment_id",
    "derive_request_id",
    "generate_dockerfile",
    "get_oci_labels",
    "validate_submission",
]
