"""Build context staging for uploaded agent bundles.

Each request owns one directory under the staging root, named by its
request id, holding the uploaded files, the merged template bundle, the
build descriptor and the runtime env file.
"""

from __future__ import annotations

import shutil
import zipfile
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from pathlib import Path

from hangar.config.defaults import (
    ALLOWED_UPLOAD_TYPES,
    ENV_FILE_FIELD,
    RUNTIME_ENV_FILENAME,
)
from hangar.config.settings import Settings
from hangar.deploy.dockerfile import generate_dockerfile
from hangar.lib.errors import FileSystemError, UploadValidationError
from hangar.lib.logging_config import get_logger
from hangar.models.deployment import UploadedFile

logger = get_logger(__name__)


def validate_uploads(files: Iterable[UploadedFile]) -> None:
    """Check every upload against the content type/extension allow-list.

    Args:
        files: Uploaded files to check

    Raises:
        UploadValidationError: Naming the first file that is not allowed
    """
    for upload in files:
        content_type = upload.content_type.split(";")[0].strip().lower()
        if (content_type, upload.extension) not in ALLOWED_UPLOAD_TYPES:
            raise UploadValidationError(
                f"Only .json and .txt files are allowed "
                f"(rejected '{upload.filename}' with type '{upload.content_type}')",
                filename=upload.filename,
            )


def _defined_env_keys(content: str) -> set[str]:
    keys: set[str] = set()
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key = stripped.split("=", 1)[0].strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        keys.add(key)
    return keys


def merge_env_content(data: bytes, extra_env: Mapping[str, str] | None) -> bytes:
    """Append entries from extra_env that the user file does not define.

    Empty values in extra_env are skipped; user-defined keys always win.
    The user's bytes are kept as-is, whatever their encoding or line endings.

    Example:
        >>> merge_env_content(b"A=1\\n", {"A": "2", "B": "3"})
        b'A=1\\nB=3\\n'
    """
    if not extra_env:
        return data

    existing = _defined_env_keys(data.decode("utf-8", errors="surrogateescape"))
    additions = [
        f"{key}={value}"
        for key, value in extra_env.items()
        if value and key not in existing
    ]
    if not additions:
        return data

    merged = data
    if merged and not merged.endswith(b"\n"):
        merged += b"\n"
    return merged + ("\n".join(additions) + "\n").encode("utf-8")


class ArtifactStager:
    """Prepare per-request build contexts on the local filesystem.

    Example:
        >>> stager = ArtifactStager(settings)
        >>> with stager.staged(request_id, files) as context:
        ...     builder.build(str(context), "demo", "1")
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize the stager.

        Args:
            settings: Application settings (staging root, template archive)
        """
        self.staging_root = Path(settings.staging_dir)
        self.template_archive = Path(settings.template_archive)
        self.agent_port = settings.agent_port
        self.base_image = settings.base_image

    def context_path(self, request_id: str) -> Path:
        """Return the build context directory for a request."""
        return self.staging_root / request_id

    def stage(
        self,
        request_id: str,
        files: Iterable[UploadedFile],
        *,
        project_name: str | None = None,
        version: str | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> Path:
        """Create the build context for a request.

        Args:
            request_id: Request id naming the directory
            files: Uploaded files, written verbatim under their original names
            project_name: Project name for build descriptor labels
            version: Project version for build descriptor labels
            extra_env: Entries appended to the env file when not user-defined

        Returns:
            Path to the build context directory

        Raises:
            FileSystemError: If the directory, files or template cannot be written
        """
        uploads = list(files)
        validate_uploads(uploads)

        context = self.context_path(request_id)
        try:
            context.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileSystemError(
                f"Failed to create staging directory {context}: {exc}"
            ) from exc

        try:
            for upload in uploads:
                (context / upload.filename).write_bytes(upload.data)

            (context / "Dockerfile").write_text(
                generate_dockerfile(
                    project_name or request_id,
                    version or "latest",
                    port=self.agent_port,
                    base_image=self.base_image,
                ),
                encoding="utf-8",
            )
        except OSError as exc:
            raise FileSystemError(
                f"Failed to write build context {context}: {exc}"
            ) from exc

        self._extract_template(context)
        self._write_env_file(context, uploads, extra_env)

        logger.info(f"Staged build context for request {request_id} at {context}")
        return context

    @contextmanager
    def staged(
        self,
        request_id: str,
        files: Iterable[UploadedFile],
        *,
        project_name: str | None = None,
        version: str | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> Generator[Path, None, None]:
        """Stage a build context and remove it on every exit path."""
        try:
            yield self.stage(
                request_id,
                files,
                project_name=project_name,
                version=version,
                extra_env=extra_env,
            )
        finally:
            self.cleanup(request_id)

    def cleanup(self, request_id: str) -> None:
        """Remove the build context of a request, if present."""
        shutil.rmtree(self.context_path(request_id), ignore_errors=True)

    def sweep(self) -> list[str]:
        """Remove every leftover build context.

        Called at server start: contexts surviving a restart belong to runs
        that can no longer finish.

        Returns:
            Request ids whose contexts were removed
        """
        if not self.staging_root.is_dir():
            return []

        removed: list[str] = []
        for entry in self.staging_root.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
                removed.append(entry.name)
        if removed:
            logger.warning(f"Removed {len(removed)} stale build context(s)")
        return removed

    def _extract_template(self, context: Path) -> None:
        if not self.template_archive.is_file():
            raise FileSystemError(
                f"Template archive not found: {self.template_archive}"
            )
        try:
            with zipfile.ZipFile(self.template_archive) as archive:
                archive.extractall(context)
        except (OSError, zipfile.BadZipFile) as exc:
            raise FileSystemError(
                f"Failed to extract template archive {self.template_archive}: {exc}"
            ) from exc
        logger.debug(f"Extracted template archive into {context}")

    def _write_env_file(
        self,
        context: Path,
        uploads: list[UploadedFile],
        extra_env: Mapping[str, str] | None,
    ) -> None:
        env_upload = next(
            (u for u in uploads if u.field_name == ENV_FILE_FIELD), None
        )
        if env_upload is None:
            env_upload = next((u for u in uploads if u.extension == ".txt"), None)

        data = merge_env_content(env_upload.data if env_upload else b"", extra_env)
        try:
            (context / RUNTIME_ENV_FILENAME).write_bytes(data)
        except OSError as exc:
            raise FileSystemError(f"Failed to write env file: {exc}") from exc
