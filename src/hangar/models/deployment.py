"""Pydantic models for deployment requests, records and service descriptors.

This module defines the data exchanged between the intake endpoint, the
deployment pipeline stages and the persisted status/agent records.
"""

from datetime import datetime
from enum import Enum
from pathlib import PurePath

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class DeploymentStatus(str, Enum):
    """Pipeline status written to the status record."""

    IN_PROGRESS = "IN-PROGRESS"
    PROCESSING = "PROCESSING"
    BUILDING = "BUILDING"
    FINISHING = "FINISHING"
    FAILED = "FAILED"


class UploadedFile(BaseModel):
    """A single file part accepted at intake.

    Attributes:
        field_name: Multipart field the file was submitted under
        filename: Original client-side file name
        content_type: Declared MIME type
        data: Raw file content
    """

    model_config = ConfigDict(extra="forbid")

    field_name: str = Field(..., description="Multipart field name")
    filename: str = Field(..., description="Original file name")
    content_type: str = Field(..., description="Declared MIME type")
    data: bytes = Field(default=b"", description="File content")

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v: str) -> str:
        """Strip any client-supplied directory components."""
        name = PurePath(v.replace("\\", "/")).name
        if not name or name in (".", ".."):
            raise ValueError(f"Invalid file name: {v!r}")
        return name

    @property
    def extension(self) -> str:
        """Lower-cased file extension including the dot."""
        return PurePath(self.filename).suffix.lower()


class DeploymentRequest(BaseModel):
    """An accepted deployment request with its derived identifiers."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    project_name: str = Field(..., min_length=1, description="Project name")
    version: str = Field(..., min_length=1, description="Project version")
    request_id: str = Field(..., description="sha256 of 'project-version'")
    agent_id: str = Field(..., description="md5 of the project name")


class StatusRecord(BaseModel):
    """Status document persisted per request id.

    Attributes:
        status: Current pipeline status
        info: Human-readable progress or error message
        stage: Last status reached before a failure (only set when FAILED)
        warnings: Best-effort stage failures that did not abort the run
        updated_at: Time the record was written
    """

    model_config = ConfigDict(extra="ignore")

    status: DeploymentStatus = Field(..., description="Pipeline status")
    info: str = Field(default="", description="Progress or error message")
    stage: DeploymentStatus | None = Field(
        default=None, description="Last stage reached before failure"
    )
    warnings: list[str] = Field(
        default_factory=list, description="Best-effort stage warnings"
    )
    updated_at: datetime | None = Field(default=None, description="Write time")


class AgentRecord(BaseModel):
    """Maps a project to its most recent deployment request."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    project_name: str = Field(..., description="Project name")
    request_id: str = Field(
        ...,
        validation_alias=AliasChoices("deployment_id", "request_id"),
        serialization_alias="deployment_id",
        description="Most recent request id",
    )


class ComputeSizing(BaseModel):
    """Normalized compute sizing of a hosted service."""

    model_config = ConfigDict(extra="forbid")

    vcpus: str = Field(..., description="Whole vCPU count")
    ram: str = Field(..., description="Memory, e.g. '4 GB'")


class ServiceDescriptor(BaseModel):
    """Hosted service details, always re-derived from the platform.

    Attributes:
        arn: Service ARN
        name: Service name
        version: Image tag suffix of the running image
        status: Platform status (RUNNING, OPERATION_IN_PROGRESS, ...)
        url: Public service URL
        image: Fully qualified image reference
        deployment_id: sha256 of 'name-version'
        agent_config: Normalized compute sizing
    """

    model_config = ConfigDict(extra="forbid")

    arn: str = Field(..., description="Service ARN")
    name: str = Field(..., description="Service name")
    version: str | None = Field(default=None, description="Image tag")
    status: str | None = Field(default=None, description="Platform status")
    url: str | None = Field(default=None, description="Public service URL")
    image: str | None = Field(default=None, description="Image reference")
    deployment_id: str | None = Field(default=None, description="Deployment id")
    agent_config: ComputeSizing | None = Field(
        default=None, description="Compute sizing"
    )


class DeployResult(BaseModel):
    """Result of a create-or-update operation.

    Attributes:
        service_id: Platform identifier (ARN) of the service
        service_name: Name of the service
        url: Public URL where the service is accessible (if available)
        status: Platform status after the call
        created: True when the service was created, False when updated
    """

    model_config = ConfigDict(extra="forbid")

    service_id: str = Field(..., description="Service identifier")
    service_name: str = Field(..., description="Service name")
    url: str | None = Field(default=None, description="Public URL")
    status: str = Field(..., description="Platform status")
    created: bool = Field(default=False, description="Whether it was created")


class StatusResult(BaseModel):
    """Result of a live status check."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(..., description="Current deployment status")
    url: str | None = Field(default=None, description="Public URL")
