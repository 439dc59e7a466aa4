"""Deployment pipeline orchestration.

Takes an accepted submission through staging, build, registry push,
role provisioning and service create-or-update, writing the status record
at every transition. Stages run sequentially; blocking SDK calls are
moved off the event loop with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import re
from collections import Counter
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hangar.config.defaults import (
    ENV_FILE_FIELD,
    EXTRA_CONFIG_FIELD,
    MAIN_CONFIG_FIELD,
    MAX_EXTRA_CONFIGS,
)
from hangar.deploy.identifiers import derive_agent_id, derive_request_id
from hangar.deploy.stager import ArtifactStager, validate_uploads
from hangar.deploy.state import StatusRecorder
from hangar.lib.errors import (
    DeploymentError,
    DuplicateRequestError,
    UploadValidationError,
)
from hangar.lib.logging_config import get_logger
from hangar.models.deployment import (
    AgentRecord,
    DeploymentRequest,
    DeploymentStatus,
    DeployResult,
    UploadedFile,
)

if TYPE_CHECKING:
    from hangar.config.settings import Settings
    from hangar.deploy.access import AccessProvisioner
    from hangar.deploy.builder import ContainerBuilder
    from hangar.deploy.deployers.base import BaseDeployer
    from hangar.deploy.registry import RegistryPublisher
    from hangar.deploy.storage import RemoteStorageUploader

logger = get_logger(__name__)

# Service names double as image and repository names: App Runner wants 4-40
# characters, ECR wants lowercase with single separators between components
PROJECT_NAME_PATTERN = re.compile(r"^(?=.{4,40}$)[a-z0-9]+(?:[-_][a-z0-9]+)*$")
# Docker tag grammar
VERSION_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


@dataclass
class Submission:
    """An intake submission before acceptance.

    Attributes:
        project_name: User-supplied project name
        version: User-supplied version
        files: Uploaded file parts
        extra_env: Entries added to the agent env file when not user-defined
    """

    project_name: str
    version: str
    files: list[UploadedFile] = field(default_factory=list)
    extra_env: dict[str, str] = field(default_factory=dict)


@dataclass
class AcceptedSubmission:
    """A submission that passed intake, ready to be run."""

    request: DeploymentRequest
    files: list[UploadedFile]
    extra_env: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def validate_submission(submission: Submission) -> None:
    """Check required fields, file parts and the upload allow-list.

    Raises:
        UploadValidationError: On the first problem found
    """
    project_name = submission.project_name.strip()
    version = submission.version.strip()
    if not project_name or not version:
        raise UploadValidationError("Missing required files or parameters")

    fields = [upload.field_name for upload in submission.files]
    if MAIN_CONFIG_FIELD not in fields or ENV_FILE_FIELD not in fields:
        raise UploadValidationError("Missing required files or parameters")
    if fields.count(MAIN_CONFIG_FIELD) > 1 or fields.count(ENV_FILE_FIELD) > 1:
        raise UploadValidationError("Only one main.json and one env.txt are allowed")
    if fields.count(EXTRA_CONFIG_FIELD) > MAX_EXTRA_CONFIGS:
        raise UploadValidationError(
            f"At most {MAX_EXTRA_CONFIGS} additional configuration files are allowed"
        )
    unknown = set(fields) - {MAIN_CONFIG_FIELD, ENV_FILE_FIELD, EXTRA_CONFIG_FIELD}
    if unknown:
        raise UploadValidationError(
            f"Unexpected file field(s): {', '.join(sorted(unknown))}"
        )

    if not PROJECT_NAME_PATTERN.match(project_name):
        raise UploadValidationError(
            f"Invalid project name: {project_name}. Use 4 to 40 lowercase "
            "letters or numbers, optionally joined by single '-' or '_'"
        )
    if not VERSION_PATTERN.match(version):
        raise UploadValidationError(
            f"Invalid version: {version}. Use letters, numbers, '.', '-' or '_'"
        )

    filenames = [upload.filename for upload in submission.files]
    duplicates = {name for name in filenames if filenames.count(name) > 1}
    if duplicates:
        raise UploadValidationError(
            f"Duplicate file name(s): {', '.join(sorted(duplicates))}"
        )

    validate_uploads(submission.files)


class DeploymentPipeline:
    """Accept submissions and run them through the deployment stages.

    Components that need Docker or AWS are created on first use so the
    server can start (and reject bad submissions) without either.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        recorder: StatusRecorder | None = None,
        stager: ArtifactStager | None = None,
        storage: RemoteStorageUploader | None = None,
        builder: ContainerBuilder | None = None,
        publisher: RegistryPublisher | None = None,
        provisioner: AccessProvisioner | None = None,
        deployer: BaseDeployer | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings shared by every stage
            recorder: Status recorder (default: file records under data_dir)
            stager: Artifact stager
            storage: Remote storage uploader, None to build from settings
            builder: Container builder
            publisher: Registry publisher
            provisioner: Access/role provisioner
            deployer: Service deployer
        """
        self.settings = settings
        self.recorder = recorder or StatusRecorder(
            settings.deployments_dir, settings.agents_dir
        )
        self.stager = stager or ArtifactStager(settings)
        self._storage = storage
        self._builder = builder
        self._publisher = publisher
        self._provisioner = provisioner
        self._deployer = deployer
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @property
    def storage(self) -> RemoteStorageUploader:
        """Remote storage uploader, created on first use."""
        if self._storage is None:
            from hangar.deploy.storage import RemoteStorageUploader

            self._storage = RemoteStorageUploader(self.settings)
        return self._storage

    @property
    def builder(self) -> ContainerBuilder:
        """Container builder, created on first use."""
        if self._builder is None:
            from hangar.deploy.builder import ContainerBuilder

            self._builder = ContainerBuilder(
                platform=self.settings.build_platform,
                agent_port=self.settings.agent_port,
            )
        return self._builder

    @property
    def publisher(self) -> RegistryPublisher:
        """Registry publisher, created on first use."""
        if self._publisher is None:
            from hangar.deploy.registry import RegistryPublisher

            self._publisher = RegistryPublisher(self.settings, self.builder)
        return self._publisher

    @property
    def provisioner(self) -> AccessProvisioner:
        """Access/role provisioner, created on first use."""
        if self._provisioner is None:
            from hangar.deploy.access import AccessProvisioner

            self._provisioner = AccessProvisioner(self.settings)
        return self._provisioner

    @property
    def deployer(self) -> BaseDeployer:
        """Service deployer, created on first use."""
        if self._deployer is None:
            from hangar.deploy.deployers import create_deployer

            self._deployer = create_deployer(self.settings)
        return self._deployer

    @asynccontextmanager
    async def request_lock(self, request_id: str) -> AsyncGenerator[None, None]:
        """Serialize work on one request id within this process."""
        lock = self._locks.setdefault(request_id, asyncio.Lock())
        self._lock_users[request_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[request_id] -= 1
            if self._lock_users[request_id] == 0:
                del self._lock_users[request_id]
                self._locks.pop(request_id, None)

    async def accept(self, submission: Submission) -> AcceptedSubmission:
        """Validate a submission, mirror its files and record IN-PROGRESS.

        Nothing is written when validation fails or the version exists.

        Raises:
            UploadValidationError: If fields, file parts or types are invalid
            DuplicateRequestError: If the project version was already submitted
        """
        validate_submission(submission)

        project_name = submission.project_name.strip()
        version = submission.version.strip()
        request = DeploymentRequest(
            project_name=project_name,
            version=version,
            request_id=derive_request_id(project_name, version),
            agent_id=derive_agent_id(project_name),
        )

        warnings: list[str] = []
        async with self.request_lock(request.request_id):
            if self.recorder.exists(request.request_id):
                raise DuplicateRequestError(project_name, version)

            if self.settings.mirror_uploads:
                warnings.extend(await self._mirror(request, submission.files))

            self.recorder.record(
                request.request_id,
                DeploymentStatus.IN_PROGRESS,
                "Processing the Request",
                warnings=warnings,
            )
            self.recorder.save_agent(
                request.agent_id,
                AgentRecord(project_name=project_name, request_id=request.request_id),
            )

        logger.info(
            f"Accepted {project_name}:{version} as request {request.request_id}"
        )
        return AcceptedSubmission(
            request=request,
            files=list(submission.files),
            extra_env=dict(submission.extra_env),
            warnings=warnings,
        )

    async def _mirror(
        self, request: DeploymentRequest, files: Sequence[UploadedFile]
    ) -> list[str]:
        try:
            failed = await self.storage.mirror(
                request.project_name, request.request_id, files
            )
        except DeploymentError as exc:
            logger.warning(f"Upload mirroring skipped: {exc.message}")
            return [f"Upload mirroring skipped: {exc.message}"]
        return [f"Upload mirroring failed for {key}" for key in failed]

    async def run(
        self,
        request: DeploymentRequest,
        files: Sequence[UploadedFile],
        *,
        extra_env: Mapping[str, str] | None = None,
        warnings: Sequence[str] = (),
    ) -> DeployResult | None:
        """Run every stage for an accepted request.

        Fatal stage errors are recorded as FAILED together with the last
        stage reached; they are not raised.

        Returns:
            The deploy result, or None when the run failed
        """
        run_warnings = list(warnings)
        stage = DeploymentStatus.IN_PROGRESS
        request_id = request.request_id

        def advance(status: DeploymentStatus, info: str) -> DeploymentStatus:
            self.recorder.record(request_id, status, info, warnings=run_warnings)
            return status

        async with self.request_lock(request_id):
            try:
                stage = advance(
                    DeploymentStatus.PROCESSING, "Request is being executed."
                )

                try:
                    context = await asyncio.to_thread(
                        self.stager.stage,
                        request_id,
                        files,
                        project_name=request.project_name,
                        version=request.version,
                        extra_env=extra_env,
                    )
                    build = await asyncio.to_thread(
                        self.builder.build,
                        str(context),
                        request.project_name,
                        request.version,
                    )
                finally:
                    await asyncio.to_thread(self.stager.cleanup, request_id)

                if self.settings.smoke_run:
                    warning = await asyncio.to_thread(
                        self.builder.smoke_run, build.full_name, request.project_name
                    )
                    if warning:
                        run_warnings.append(warning)
                stage = advance(DeploymentStatus.BUILDING, "Agent Deployment Image Built.")

                image_uri = await asyncio.to_thread(
                    self.publisher.publish,
                    request.project_name,
                    build.full_name,
                    request.version,
                )
                stage = advance(
                    DeploymentStatus.BUILDING, "Agent Deployment Image Uploaded."
                )

                role_arn, role_name = await asyncio.to_thread(
                    self.provisioner.ensure_service_role
                )
                if self.settings.attach_role_to_instance:
                    warning = await asyncio.to_thread(
                        self.provisioner.attach_role_to_instance, role_name
                    )
                    if warning:
                        run_warnings.append(warning)

                result = await asyncio.to_thread(
                    lambda: self.deployer.create_or_update(
                        service_name=request.project_name,
                        image_uri=image_uri,
                        access_role_arn=role_arn,
                    )
                )
                advance(DeploymentStatus.FINISHING, "Agent is being deployed!")
                return result

            except DeploymentError as exc:
                logger.error(f"Request {request_id} failed during {exc.operation}: {exc}")
                self._fail(request_id, stage, exc.message, run_warnings)
            except Exception as exc:
                logger.exception(f"Unexpected error in request {request_id}: {exc}")
                self._fail(request_id, stage, str(exc), run_warnings)
        return None

    def _fail(
        self,
        request_id: str,
        stage: DeploymentStatus,
        message: str,
        warnings: Sequence[str],
    ) -> None:
        self.recorder.record(
            request_id,
            DeploymentStatus.FAILED,
            f"Error: {message}",
            stage=stage,
            warnings=warnings,
        )

    async def execute(self, accepted: AcceptedSubmission) -> DeployResult | None:
        """Run an accepted submission (background task entry point)."""
        return await self.run(
            accepted.request,
            accepted.files,
            extra_env=accepted.extra_env,
            warnings=accepted.warnings,
        )
