"""AWS App Runner deployer implementation."""

from __future__ import annotations

import copy
import math
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hangar.config.defaults import HEALTH_CHECK_CONFIG, INSTANCE_CONFIG
from hangar.deploy.deployers.base import BaseDeployer
from hangar.deploy.identifiers import derive_deployment_id
from hangar.lib.errors import DeployError
from hangar.lib.logging_config import get_logger
from hangar.models.deployment import (
    ComputeSizing,
    DeployResult,
    ServiceDescriptor,
    StatusResult,
)

if TYPE_CHECKING:
    from hangar.config.settings import Settings

logger = get_logger(__name__)


def parse_image_version(image_uri: str | None) -> str | None:
    """Return the tag of an image reference.

    Example:
        >>> parse_image_version("123.dkr.ecr.us-east-1.amazonaws.com/demo:1")
        '1'
    """
    if not image_uri:
        return None
    last_segment = image_uri.rsplit("/", 1)[-1]
    if ":" not in last_segment:
        return None
    return last_segment.split(":", 1)[1].strip() or None


def normalize_sizing(cpu: str | None, memory: str | None) -> ComputeSizing | None:
    """Convert App Runner CPU/memory units into whole vCPUs and GB.

    App Runner reports CPU in 1/1024 vCPU units and memory in MB.

    Example:
        >>> normalize_sizing("2048", "4096")
        ComputeSizing(vcpus='2', ram='4 GB')
    """
    if cpu is None or memory is None:
        return None
    try:
        vcpus = math.ceil(float(cpu) / 1024)
        ram = math.ceil(float(memory) / 1024)
    except ValueError:
        return None
    return ComputeSizing(vcpus=str(vcpus), ram=f"{ram} GB")


def _service_url(service: dict[str, Any]) -> str | None:
    url = service.get("ServiceUrl")
    if not url:
        return None
    return url if url.startswith("http") else f"https://{url}"


class AppRunnerDeployer(BaseDeployer):
    """Deploy agent images to AWS App Runner services."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        """Initialize the App Runner deployer.

        Args:
            settings: Application settings (region, credentials, agent port)
            client: Optional pre-built App Runner client
        """
        self.client = client or boto3.session.Session(
            **settings.boto3_session_kwargs()
        ).client("apprunner")
        self.agent_port = settings.agent_port

    def _to_descriptor(self, service: dict[str, Any]) -> ServiceDescriptor:
        source = service.get("SourceConfiguration") or {}
        image = (source.get("ImageRepository") or {}).get("ImageIdentifier")
        version = parse_image_version(image)
        name = service.get("ServiceName", "")
        instance = service.get("InstanceConfiguration") or {}
        return ServiceDescriptor(
            arn=service["ServiceArn"],
            name=name,
            version=version,
            status=service.get("Status"),
            url=_service_url(service),
            image=image,
            deployment_id=derive_deployment_id(name, version) if version else None,
            agent_config=normalize_sizing(
                instance.get("Cpu"), instance.get("Memory")
            ),
        )

    def _find_service_arn(self, service_name: str) -> str | None:
        kwargs: dict[str, Any] = {}
        while True:
            response = self.client.list_services(**kwargs)
            for summary in response.get("ServiceSummaryList", []):
                if summary.get("ServiceName") == service_name:
                    return str(summary["ServiceArn"])
            next_token = response.get("NextToken")
            if not next_token:
                return None
            kwargs["NextToken"] = next_token

    def resolve(self, service_name: str) -> ServiceDescriptor | None:
        """Look up an App Runner service by name."""
        try:
            service_arn = self._find_service_arn(service_name)
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(
                f"Error checking if App Runner service exists: {exc}"
            ) from exc

        if service_arn is None:
            logger.debug(f"App Runner service {service_name} not found")
            return None
        return self.describe(service_arn)

    def describe(self, service_id: str) -> ServiceDescriptor:
        """Describe an App Runner service by ARN."""
        try:
            response = self.client.describe_service(ServiceArn=service_id)
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(
                f"Error getting App Runner service status: {exc}"
            ) from exc
        return self._to_descriptor(response["Service"])

    def create_or_update(
        self,
        *,
        service_name: str,
        image_uri: str,
        access_role_arn: str,
    ) -> DeployResult:
        """Create the service when absent, otherwise swap its image."""
        existing = self.resolve(service_name)
        if existing is None:
            return self.create_service(
                service_name=service_name,
                image_uri=image_uri,
                access_role_arn=access_role_arn,
            )

        logger.info(f"App Runner service {service_name} exists, updating image")
        return self.update_service(existing.arn, image_uri)

    def create_service(
        self,
        *,
        service_name: str,
        image_uri: str,
        access_role_arn: str,
    ) -> DeployResult:
        """Create a service with the fixed sizing and health check policy."""
        params: dict[str, Any] = {
            "ServiceName": service_name,
            "SourceConfiguration": {
                "ImageRepository": {
                    "ImageIdentifier": image_uri,
                    "ImageRepositoryType": "ECR",
                    "ImageConfiguration": {"Port": str(self.agent_port)},
                },
                "AutoDeploymentsEnabled": True,
                "AuthenticationConfiguration": {"AccessRoleArn": access_role_arn},
            },
            "InstanceConfiguration": copy.deepcopy(INSTANCE_CONFIG),
            "HealthCheckConfiguration": copy.deepcopy(HEALTH_CHECK_CONFIG),
        }
        try:
            response = self.client.create_service(**params)
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(f"Error creating App Runner service: {exc}") from exc

        service = response["Service"]
        logger.info(
            f"App Runner service created: {service.get('ServiceName')} "
            f"({service.get('ServiceArn')}) status={service.get('Status')}"
        )
        return DeployResult(
            service_id=service["ServiceArn"],
            service_name=service.get("ServiceName") or service_name,
            url=_service_url(service),
            status=service.get("Status") or "UNKNOWN",
            created=True,
        )

    def update_service(self, service_arn: str, image_uri: str) -> DeployResult:
        """Point an existing service at a new image, keeping the agent port."""
        try:
            response = self.client.update_service(
                ServiceArn=service_arn,
                SourceConfiguration={
                    "ImageRepository": {
                        "ImageIdentifier": image_uri,
                        "ImageRepositoryType": "ECR",
                        "ImageConfiguration": {"Port": str(self.agent_port)},
                    }
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(f"Error updating App Runner service: {exc}") from exc

        service = response["Service"]
        logger.info(
            f"App Runner service updated: {service.get('ServiceName')} "
            f"status={service.get('Status')}"
        )
        return DeployResult(
            service_id=service.get("ServiceArn") or service_arn,
            service_name=service.get("ServiceName", ""),
            url=_service_url(service),
            status=service.get("Status") or "UNKNOWN",
            created=False,
        )

    def get_status(self, service_id: str) -> StatusResult:
        """Get live status for an App Runner service."""
        descriptor = self.describe(service_id)
        return StatusResult(status=descriptor.status or "UNKNOWN", url=descriptor.url)

    def destroy(self, service_id: str) -> None:
        """Delete an App Runner service."""
        try:
            self.client.delete_service(ServiceArn=service_id)
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(f"Error deleting App Runner service: {exc}") from exc
        logger.info(f"App Runner service deleted: {service_id}")
