"""Response models for the Hangar HTTP API."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ServerState(str, Enum):
    """Lifecycle state of the deployment server."""

    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class IntakeResponse(BaseModel):
    """Response to an accepted deployment submission."""

    success: bool = True
    agent_id: str = Field(..., description="md5 of the project name")
    request_id: str = Field(..., description="Id to poll the status record by")
    warnings: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error body returned for rejected or failed requests."""

    error: str = Field(..., description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="'healthy' or 'unhealthy'")
    version: str = Field(..., description="Hangar version")
    uptime_seconds: float = Field(default=0.0, ge=0.0)
    active_runs: int = Field(default=0, ge=0, description="Pipeline runs in flight")


class ProfileResponse(BaseModel):
    """Signed-in user's profile with a current access token."""

    twitter_id: str
    twitter_username: str
    access_token: str
    env: dict[str, str] = Field(
        default_factory=dict, description="Entries injected into agent env files"
    )
