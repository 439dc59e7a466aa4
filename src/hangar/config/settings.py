"""Environment-driven settings for Hangar.

Settings are read once into an explicit object and handed to each
component at construction time.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from hangar.config.validator import describe_settings_errors
from hangar.lib.errors import ConfigError

# Well-known placeholder; sessions signed with it can be forged
DEFAULT_SESSION_SECRET = "change-me"


class Settings(BaseSettings):
    """Application settings driven by ``HANGAR_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HANGAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=4000, ge=1, le=65535, description="Listen port")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    session_secret: SecretStr = Field(
        default=SecretStr(DEFAULT_SESSION_SECRET),
        description="Session cookie signing key",
    )
    log_level: str = Field(default="INFO")

    # Filesystem layout
    data_dir: Path = Field(
        default=Path("var"), description="Root for deployment/agent records"
    )
    staging_dir: Path = Field(
        default=Path("var/temp"), description="Per-request build contexts"
    )
    template_archive: Path = Field(
        default=Path("agent/aiagent.zip"),
        description="Template bundle merged into every build context",
    )

    # Container runtime
    agent_port: int = Field(default=3000, ge=1, le=65535)
    smoke_run: bool = Field(
        default=True, description="Start the built image locally before push"
    )
    build_platform: str = Field(default="linux/amd64")
    base_image: str = Field(default="node:20-slim")

    # AWS
    aws_region: str = Field(default="us-east-1")
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: SecretStr | None = Field(default=None)
    service_role_name: str = Field(default="ORCPYARServiceRole")
    attach_role_to_instance: bool = Field(
        default=True,
        description="Associate the service role with the EC2 host running Hangar",
    )
    mirror_uploads: bool = Field(
        default=True, description="Copy accepted uploads into a per-project S3 bucket"
    )

    # OAuth (Twitter/X)
    twitter_client_id: str | None = Field(default=None)
    twitter_client_secret: SecretStr | None = Field(default=None)
    oauth_callback_url: str = Field(default="http://localhost:4000/callback")
    agent_client_id: str = Field(
        default="", description="CLIENT_ID injected into agent env files"
    )
    agent_client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="CLIENT_SECRET injected into agent env files",
    )

    @field_validator("aws_region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Reject an empty AWS region."""
        if not v.strip():
            raise ValueError("aws_region must not be empty")
        return v.strip()

    @property
    def uses_default_session_secret(self) -> bool:
        """Whether session cookies are signed with the built-in placeholder."""
        return self.session_secret.get_secret_value() == DEFAULT_SESSION_SECRET

    @property
    def deployments_dir(self) -> Path:
        """Directory holding one status record per request id."""
        return self.data_dir / "deployments"

    @property
    def agents_dir(self) -> Path:
        """Directory holding one agent record per agent id."""
        return self.data_dir / "agents"

    @property
    def users_path(self) -> Path:
        """File holding persisted OAuth user tokens."""
        return self.data_dir / "users.json"

    def boto3_session_kwargs(self) -> dict[str, str]:
        """Return keyword arguments for ``boto3.session.Session``."""
        kwargs = {"region_name": self.aws_region}
        if self.aws_access_key_id and self.aws_secret_access_key:
            kwargs["aws_access_key_id"] = self.aws_access_key_id
            kwargs["aws_secret_access_key"] = (
                self.aws_secret_access_key.get_secret_value()
            )
        return kwargs


def load_settings(**overrides: object) -> Settings:
    """Build settings from the environment, applying explicit overrides.

    Raises:
        ConfigError: If any setting fails validation
    """
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except PydanticValidationError as exc:
        raise ConfigError(
            field="settings",
            message="; ".join(
                describe_settings_errors(
                    exc,
                    env_prefix=Settings.model_config.get("env_prefix") or "",
                    model=Settings,
                )
            ),
        ) from exc
