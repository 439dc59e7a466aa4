"""Status and agent record persistence.

One status file per request id under ``deployments/`` and one agent file
per agent id under ``agents/``. Records are overwritten in place; no
history is kept.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from hangar.lib.errors import DeploymentError
from hangar.lib.logging_config import get_logger
from hangar.models.deployment import AgentRecord, DeploymentStatus, StatusRecord

logger = get_logger(__name__)

RECORD_SUFFIX = ".txt"

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _write_json_atomic(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(model.model_dump(mode="json", by_alias=True), sort_keys=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class StatusRecorder:
    """Read and write status and agent records on the local filesystem."""

    def __init__(self, deployments_dir: Path, agents_dir: Path) -> None:
        """Initialize the recorder.

        Args:
            deployments_dir: Directory for per-request status records
            agents_dir: Directory for per-agent records
        """
        self.deployments_dir = Path(deployments_dir)
        self.agents_dir = Path(agents_dir)

    def status_path(self, request_id: str) -> Path:
        """Return the status record path for a request."""
        return self.deployments_dir / f"{request_id}{RECORD_SUFFIX}"

    def agent_path(self, agent_id: str) -> Path:
        """Return the agent record path for an agent."""
        return self.agents_dir / f"{agent_id}{RECORD_SUFFIX}"

    def exists(self, request_id: str) -> bool:
        """Return True when a status record exists for the request."""
        return self.status_path(request_id).exists()

    def record(
        self,
        request_id: str,
        status: DeploymentStatus,
        info: str,
        *,
        stage: DeploymentStatus | None = None,
        warnings: Sequence[str] = (),
    ) -> StatusRecord:
        """Overwrite the status record of a request.

        Write failures are logged and never raised; the pipeline keeps
        running even if its progress cannot be persisted.

        Returns:
            The record that was (or would have been) written
        """
        record = StatusRecord(
            status=status,
            info=info,
            stage=stage,
            warnings=list(warnings),
            updated_at=datetime.now(timezone.utc),
        )
        try:
            _write_json_atomic(self.status_path(request_id), record)
        except OSError as exc:
            logger.error(f"Failed to write status for request {request_id}: {exc}")
            return record

        logger.info(f"Request {request_id}: {status.value} - {info}")
        return record

    def get_status(self, request_id: str) -> StatusRecord | None:
        """Load the status record of a request.

        Raises:
            DeploymentError: If the record exists but cannot be read or parsed
        """
        return self._load(self.status_path(request_id), StatusRecord)

    def save_agent(self, agent_id: str, record: AgentRecord) -> None:
        """Overwrite the agent record for an agent id.

        Raises:
            DeploymentError: If the record cannot be written
        """
        try:
            _write_json_atomic(self.agent_path(agent_id), record)
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to write agent record {agent_id}: {exc}",
            ) from exc

    def get_agent(self, agent_id: str) -> AgentRecord | None:
        """Load the agent record for an agent id."""
        return self._load(self.agent_path(agent_id), AgentRecord)

    def _load(self, path: Path, model: type[_ModelT]) -> _ModelT | None:
        if not path.exists():
            return None
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to read record at {path}: {exc}",
            ) from exc
        if not content.strip():
            return None

        try:
            return model.model_validate_json(content)
        except ValidationError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Invalid record format in {path}: {exc}",
            ) from exc
