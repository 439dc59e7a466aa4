"""Base interface for hosted service deployers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from hangar.models.deployment import DeployResult, ServiceDescriptor, StatusResult


class BaseDeployer(ABC):
    """Abstract base class for managed-runtime deployers."""

    @abstractmethod
    def resolve(self, service_name: str) -> ServiceDescriptor | None:
        """Look up a service by name.

        Args:
            service_name: Name of the hosted service.

        Returns:
            ServiceDescriptor when the service exists, otherwise None.

        Raises:
            DeployError: If the platform lookup itself fails.
        """

    @abstractmethod
    def describe(self, service_id: str) -> ServiceDescriptor:
        """Fetch full service details by platform identifier.

        Raises:
            DeployError: If the service cannot be described.
        """

    @abstractmethod
    def create_or_update(
        self,
        *,
        service_name: str,
        image_uri: str,
        access_role_arn: str,
    ) -> DeployResult:
        """Create the service if absent, otherwise point it at a new image.

        Args:
            service_name: Name for the hosted service.
            image_uri: Fully qualified image reference including tag.
            access_role_arn: Role the platform assumes to pull the image.

        Returns:
            DeployResult with service id, name, url and status.

        Raises:
            DeployError: If the create or update call fails.
        """

    @abstractmethod
    def get_status(self, service_id: str) -> StatusResult:
        """Retrieve live status and URL by service identifier.

        Raises:
            DeployError: If status check fails.
        """

    @abstractmethod
    def destroy(self, service_id: str) -> None:
        """Delete a hosted service by identifier.

        Raises:
            DeployError: If the delete call fails.
        """
