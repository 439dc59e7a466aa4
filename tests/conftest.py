"""Pytest configuration and shared fixtures for Hangar tests."""

import os
import zipfile
from collections.abc import Generator
from pathlib import Path

import pytest

from hangar.config.settings import Settings
from hangar.models.deployment import UploadedFile


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("HANGAR_"):
            del os.environ[key]
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def template_archive(tmp_path: Path) -> Path:
    """Create a template bundle archive with a package manifest."""
    archive = tmp_path / "agent" / "aiagent.zip"
    archive.parent.mkdir(parents=True)
    with zipfile.ZipFile(archive, "w") as bundle:
        bundle.writestr("package.json", '{"name": "aiagent"}')
        bundle.writestr("index.js", "console.log('agent');\n")
    return archive


@pytest.fixture
def settings(tmp_path: Path, template_archive: Path) -> Settings:
    """Settings rooted in a temporary directory, isolated from HANGAR_* env."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        data_dir=tmp_path / "var",
        staging_dir=tmp_path / "var" / "temp",
        template_archive=template_archive,
        aws_region="us-west-2",
        session_secret="test-secret",  # type: ignore[arg-type]
        agent_client_id="agent-client",
        agent_client_secret="agent-secret",  # type: ignore[arg-type]
    )


@pytest.fixture
def main_config() -> UploadedFile:
    """The required main.json upload."""
    return UploadedFile(
        field_name="main.json",
        filename="main.json",
        content_type="application/json",
        data=b'{"name": "demo"}',
    )


@pytest.fixture
def env_file() -> UploadedFile:
    """The required env.txt upload."""
    return UploadedFile(
        field_name="env.txt",
        filename="env.txt",
        content_type="text/plain",
        data=b"OPENAI_API_KEY=sk-test\n",
    )


@pytest.fixture
def uploads(main_config: UploadedFile, env_file: UploadedFile) -> list[UploadedFile]:
    """A valid set of uploads."""
    return [main_config, env_file]
