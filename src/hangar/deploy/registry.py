"""ECR registry publishing for built agent images."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hangar.lib.errors import PublishError
from hangar.lib.logging_config import get_logger

if TYPE_CHECKING:
    from hangar.config.settings import Settings
    from hangar.deploy.builder import ContainerBuilder

logger = get_logger(__name__)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class RegistryPublisher:
    """Ensure a project repository exists in ECR and push images to it."""

    def __init__(
        self,
        settings: Settings,
        builder: ContainerBuilder,
        client: Any | None = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            settings: Application settings (region, credentials)
            builder: Container builder used to tag and push images
            client: Optional pre-built ECR client
        """
        self.builder = builder
        self.client = client or boto3.session.Session(
            **settings.boto3_session_kwargs()
        ).client("ecr")

    def ensure_repository(self, project_name: str) -> str:
        """Create the project repository or return the existing one.

        Args:
            project_name: Project name, lower-cased into the repository name

        Returns:
            Repository URI

        Raises:
            PublishError: On any platform error other than "already exists"
        """
        repository_name = project_name.lower()
        try:
            result = self.client.create_repository(repositoryName=repository_name)
            logger.info(f"Repository {repository_name} created successfully")
            return str(result["repository"]["repositoryUri"])
        except ClientError as exc:
            if _error_code(exc) != "RepositoryAlreadyExistsException":
                raise PublishError(f"Error creating repository: {exc}") from exc
        except BotoCoreError as exc:
            raise PublishError(f"Error creating repository: {exc}") from exc

        try:
            result = self.client.describe_repositories(
                repositoryNames=[repository_name]
            )
        except (ClientError, BotoCoreError) as exc:
            raise PublishError(f"Error describing repository: {exc}") from exc

        repositories = result.get("repositories") or []
        if not repositories:
            raise PublishError(f"Repository {repository_name} could not be found")
        logger.info(f"Repository {repository_name} already exists")
        return str(repositories[0]["repositoryUri"])

    def get_auth_config(self) -> dict[str, str]:
        """Exchange a short-lived ECR token for Docker registry credentials.

        Raises:
            PublishError: If the token cannot be obtained or decoded
        """
        try:
            response = self.client.get_authorization_token()
            auth_data = response["authorizationData"][0]
            token = base64.b64decode(auth_data["authorizationToken"]).decode("utf-8")
        except (ClientError, BotoCoreError, KeyError, IndexError, ValueError) as exc:
            raise PublishError(f"Failed to obtain registry credentials: {exc}") from exc

        username, _, password = token.partition(":")
        return {
            "username": username,
            "password": password,
            "serveraddress": str(auth_data.get("proxyEndpoint", "")),
        }

    def push_image(self, repository_uri: str, image_ref: str, version: str) -> str:
        """Authenticate, retag and push a local image.

        Returns:
            Fully qualified image reference ``repository_uri:version``
        """
        auth_config = self.get_auth_config()
        return self.builder.tag_and_push(
            image_ref, repository_uri, version, auth_config=auth_config
        )

    def publish(self, project_name: str, image_ref: str, version: str) -> str:
        """Ensure the repository and push the image to it."""
        repository_uri = self.ensure_repository(project_name)
        return self.push_image(repository_uri, image_ref, version)
