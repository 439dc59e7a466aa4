"""Deterministic identifiers for projects, requests and deployments.

Repeated inputs always map to the same keys, so a project version can be
looked up (and rejected as a duplicate) without any extra index.
"""

from __future__ import annotations

import hashlib


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8"), usedforsecurity=False).hexdigest()


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def derive_agent_id(project_name: str) -> str:
    """Return the agent id for a project.

    Example:
        >>> derive_agent_id("demo")
        'fe01ce2a7fbac8fafaed7c982a04e229'
    """
    return _md5(project_name)


def derive_request_id(project_name: str, version: str) -> str:
    """Return the request id for a project version (sha256 of 'name-version')."""
    return _sha256(f"{project_name}-{version}")


def derive_deployment_id(service_name: str, version: str) -> str:
    """Return the deployment id of a running service version.

    Uses the request id derivation, so a live service maps back to the
    request that produced it.
    """
    return derive_request_id(service_name, version)


def derive_bucket_name(project_name: str) -> str:
    """Return the object storage bucket that mirrors a project's uploads."""
    return _md5(project_name)
