"""S3 mirroring of uploaded agent bundles."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hangar.deploy.identifiers import derive_bucket_name
from hangar.lib.errors import DeploymentError
from hangar.lib.logging_config import get_logger

if TYPE_CHECKING:
    from hangar.config.settings import Settings
    from hangar.models.deployment import UploadedFile

logger = get_logger(__name__)


class RemoteStorageUploader:
    """Mirror uploaded files into a per-project S3 bucket."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        """Initialize the uploader.

        Args:
            settings: Application settings (region, credentials)
            client: Optional pre-built S3 client
        """
        self.region = settings.aws_region
        self.client = client or boto3.session.Session(
            **settings.boto3_session_kwargs()
        ).client("s3")

    def ensure_bucket(self, bucket_name: str) -> None:
        """Create a bucket, accepting one this account already owns.

        Raises:
            DeploymentError: On any other create failure
        """
        params: dict[str, Any] = {"Bucket": bucket_name}
        # us-east-1 rejects an explicit location constraint
        if self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}

        try:
            self.client.create_bucket(**params)
            logger.info(f"Bucket {bucket_name} created")
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "BucketAlreadyOwnedByYou":
                logger.debug(f"Bucket {bucket_name} already exists and is owned by you")
                return
            raise DeploymentError(
                operation="mirror",
                message=f"S3 bucket creation failed for {bucket_name}: {exc}",
            ) from exc
        except BotoCoreError as exc:
            raise DeploymentError(
                operation="mirror",
                message=f"S3 bucket creation failed for {bucket_name}: {exc}",
            ) from exc

    def upload(self, bucket_name: str, key: str, data: bytes) -> bool:
        """Upload one object, best-effort.

        Returns:
            True when the object was stored, False when the upload failed
        """
        try:
            self.client.put_object(Bucket=bucket_name, Key=key, Body=data)
        except (ClientError, BotoCoreError) as exc:
            logger.warning(f"Error uploading {key} to S3 bucket {bucket_name}: {exc}")
            return False
        return True

    async def mirror(
        self,
        project_name: str,
        request_id: str,
        files: Iterable[UploadedFile],
    ) -> list[str]:
        """Copy uploads to ``<bucket>/<request_id>/<filename>`` concurrently.

        Args:
            project_name: Project name, hashed into the bucket name
            request_id: Request id used as the key prefix
            files: Uploaded files

        Returns:
            Keys that could not be uploaded

        Raises:
            DeploymentError: If the bucket cannot be ensured
        """
        bucket_name = derive_bucket_name(project_name)
        await asyncio.to_thread(self.ensure_bucket, bucket_name)

        uploads = list(files)
        keys = [f"{request_id}/{upload.filename}" for upload in uploads]
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self.upload, bucket_name, key, upload.data)
                for key, upload in zip(keys, uploads)
            )
        )

        failed = [key for key, ok in zip(keys, results) if not ok]
        if failed:
            logger.warning(f"{len(failed)} upload(s) to {bucket_name} failed")
        else:
            logger.info(f"Uploaded {len(keys)} document(s) to {bucket_name}")
        return failed
