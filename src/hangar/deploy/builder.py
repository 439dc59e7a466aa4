"""Container image builder for staged agent bundles.

This module builds, smoke-runs, tags and pushes container images through
the Docker SDK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.errors import BuildError as DockerBuildError

from hangar.lib.errors import BuildError, DockerNotAvailableError, PublishError
from hangar.lib.logging_config import get_logger

if TYPE_CHECKING:
    from docker.models.images import Image

logger = get_logger(__name__)


@dataclass
class BuildResult:
    """Result of a container image build operation.

    Attributes:
        image_id: The SHA256 ID of the built image
        image_name: The repository/image name
        tag: The image tag
        full_name: Full image reference (name:tag)
        log_lines: Build log output lines
    """

    image_id: str
    image_name: str
    tag: str
    full_name: str
    log_lines: list[str] = field(default_factory=list)

    @classmethod
    def from_image(
        cls,
        image: Image,
        image_name: str,
        tag: str,
        log_lines: list[str] | None = None,
    ) -> BuildResult:
        """Create BuildResult from a Docker image object.

        Args:
            image: Docker image object from build
            image_name: Repository/image name
            tag: Image tag
            log_lines: Optional build log lines

        Returns:
            BuildResult instance
        """
        image_id = image.id or ""
        return cls(
            image_id=image_id,
            image_name=image_name,
            tag=tag,
            full_name=f"{image_name}:{tag}",
            log_lines=log_lines or [],
        )


def get_oci_labels(project_name: str, version: str) -> dict[str, str]:
    """Generate OCI-compliant container image labels.

    Example:
        >>> labels = get_oci_labels("demo", "1")
        >>> labels["org.opencontainers.image.title"]
        'demo'
    """
    created = datetime.now(timezone.utc).isoformat()

    return {
        "org.opencontainers.image.title": project_name,
        "org.opencontainers.image.version": version,
        "org.opencontainers.image.created": created,
        "com.hangar.managed": "true",
    }


def _collect_log_lines(entries: Any) -> list[str]:
    """Flatten Docker SDK build/push stream entries into text lines."""
    log_lines: list[str] = []
    for log_entry in entries or []:
        if not isinstance(log_entry, dict):
            continue
        if "stream" in log_entry:
            stream_val = log_entry["stream"]
            if isinstance(stream_val, str) and stream_val.strip():
                log_lines.append(stream_val.rstrip("\n"))
        elif "error" in log_entry:
            log_lines.append(f"ERROR: {log_entry['error']}")
        elif "status" in log_entry:
            log_lines.append(str(log_entry["status"]))
    return log_lines


class ContainerBuilder:
    """Builder for agent container images.

    Example:
        >>> builder = ContainerBuilder()
        >>> result = builder.build("./var/temp/abc", "demo", "1")
        >>> print(result.full_name)
        demo:1
    """

    def __init__(self, platform: str = "linux/amd64", agent_port: int = 3000) -> None:
        """Initialize the container builder.

        Connects to the Docker daemon using the environment configuration.

        Args:
            platform: Target platform for built images
            agent_port: Container port published by the smoke run

        Raises:
            DockerNotAvailableError: If Docker daemon is not available
        """
        try:
            self.client = docker.from_env()  # type: ignore[attr-defined]
        except DockerException as e:
            raise DockerNotAvailableError(operation="init") from e
        self.platform = platform
        self.agent_port = agent_port

    def build(
        self,
        build_context: str,
        project_name: str,
        version: str,
        labels: dict[str, str] | None = None,
        dockerfile: str = "Dockerfile",
        **build_kwargs: Any,
    ) -> BuildResult:
        """Build an image tagged ``project_name:version`` from a context.

        Args:
            build_context: Path to the build context directory
            project_name: Image name
            version: Image tag
            labels: Optional labels, defaults to OCI labels for the project
            dockerfile: Path to Dockerfile relative to context
            **build_kwargs: Additional arguments passed to Docker build

        Returns:
            BuildResult with image details and build logs

        Raises:
            BuildError: If the context is missing or the build fails
        """
        context_path = Path(build_context)
        if not context_path.exists():
            raise BuildError(f"Build context not found: {build_context}")

        image_name = project_name.lower()
        full_tag = f"{image_name}:{version}"
        logger.info(f"Building image {full_tag} from {context_path}")

        try:
            image, build_logs = self.client.images.build(
                path=str(context_path),
                tag=full_tag,
                dockerfile=dockerfile,
                labels=labels or get_oci_labels(project_name, version),
                rm=True,  # Remove intermediate containers
                platform=self.platform,
                **build_kwargs,
            )
        except DockerBuildError as e:
            log_lines = _collect_log_lines(e.build_log)
            raise BuildError(f"Docker build failed: {e.msg}", log_lines) from e
        except DockerException as e:
            raise BuildError(f"Docker error during build: {e}") from e

        log_lines = _collect_log_lines(build_logs)
        logger.info(f"Docker image {full_tag} built successfully")
        return BuildResult.from_image(
            image=image,
            image_name=image_name,
            tag=version,
            log_lines=log_lines,
        )

    def smoke_run(self, image_ref: str, project_name: str) -> str | None:
        """Start the built image locally as ``<project>-container``.

        A previous container with the same name is removed first.

        Args:
            image_ref: Local image reference (name:tag)
            project_name: Project name used for the container name

        Returns:
            None on success, otherwise a warning describing the failure
        """
        container_name = f"{project_name.lower()}-container"
        try:
            try:
                self.client.containers.get(container_name).remove(force=True)
            except NotFound:
                pass

            container = self.client.containers.run(
                image_ref,
                detach=True,
                name=container_name,
                ports={f"{self.agent_port}/tcp": self.agent_port},
            )
        except DockerException as e:
            warning = f"Smoke run of {image_ref} failed: {e}"
            logger.warning(warning)
            return warning

        logger.info(
            f"Container {container_name} started ({getattr(container, 'short_id', '')})"
        )
        return None

    def tag_and_push(
        self,
        image_ref: str,
        repository_uri: str,
        version: str,
        auth_config: dict[str, str] | None = None,
    ) -> str:
        """Retag a local image to a remote repository and push it.

        Args:
            image_ref: Local image reference (name:tag)
            repository_uri: Remote repository URI without tag
            version: Remote tag
            auth_config: Registry credentials (username/password)

        Returns:
            Fully qualified remote reference ``repository_uri:version``

        Raises:
            PublishError: If tagging or pushing fails
        """
        remote_ref = f"{repository_uri}:{version}"
        try:
            image = self.client.images.get(image_ref)
            image.tag(repository_uri, tag=version)
            stream = self.client.images.push(
                repository_uri,
                tag=version,
                auth_config=auth_config,
                stream=True,
                decode=True,
            )
            for entry in stream:
                if isinstance(entry, dict) and "error" in entry:
                    raise PublishError(f"Push of {remote_ref} failed: {entry['error']}")
        except ImageNotFound as e:
            raise PublishError(f"Local image not found: {image_ref}") from e
        except (APIError, DockerException) as e:
            raise PublishError(f"Docker error while pushing {remote_ref}: {e}") from e

        logger.info(f"Pushed {remote_ref}")
        return remote_ref
