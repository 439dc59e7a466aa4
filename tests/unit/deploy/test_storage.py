"""Unit tests for S3 mirroring of uploads."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from hangar.config.settings import Settings
from hangar.deploy.identifiers import derive_bucket_name
from hangar.deploy.storage import RemoteStorageUploader
from hangar.lib.errors import DeploymentError
from hangar.models.deployment import UploadedFile


def client_error(code: str) -> ClientError:
    """Build a botocore ClientError with the given code."""
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


@pytest.fixture
def s3() -> MagicMock:
    """An S3 client mock."""
    return MagicMock()


@pytest.mark.unit
class TestEnsureBucket:
    """Tests for bucket creation."""

    def test_location_constraint_outside_us_east_1(
        self, settings: Settings, s3: MagicMock
    ) -> None:
        """Test regions other than us-east-1 pass a location constraint."""
        RemoteStorageUploader(settings, client=s3).ensure_bucket("bucket")

        s3.create_bucket.assert_called_once_with(
            Bucket="bucket",
            CreateBucketConfiguration={"LocationConstraint": "us-west-2"},
        )

    def test_no_constraint_in_us_east_1(self, settings: Settings, s3: MagicMock) -> None:
        """Test us-east-1 omits the location constraint."""
        east = settings.model_copy(update={"aws_region": "us-east-1"})
        RemoteStorageUploader(east, client=s3).ensure_bucket("bucket")

        s3.create_bucket.assert_called_once_with(Bucket="bucket")

    def test_owned_bucket_tolerated(self, settings: Settings, s3: MagicMock) -> None:
        """Test BucketAlreadyOwnedByYou is success."""
        s3.create_bucket.side_effect = client_error("BucketAlreadyOwnedByYou")
        RemoteStorageUploader(settings, client=s3).ensure_bucket("bucket")

    def test_foreign_bucket_fatal(self, settings: Settings, s3: MagicMock) -> None:
        """Test BucketAlreadyExists (owned elsewhere) is an error."""
        s3.create_bucket.side_effect = client_error("BucketAlreadyExists")

        with pytest.raises(DeploymentError) as exc_info:
            RemoteStorageUploader(settings, client=s3).ensure_bucket("bucket")
        assert exc_info.value.operation == "mirror"


@pytest.mark.unit
class TestMirror:
    """Tests for concurrent upload mirroring."""

    def test_upload_failure_returns_false(self, settings: Settings, s3: MagicMock) -> None:
        """Test a failed upload is logged and reported, not raised."""
        s3.put_object.side_effect = client_error("AccessDenied")
        uploader = RemoteStorageUploader(settings, client=s3)

        assert uploader.upload("bucket", "key", b"data") is False

    @pytest.mark.asyncio
    async def test_mirror_uploads_every_file(
        self, settings: Settings, s3: MagicMock, uploads: list[UploadedFile]
    ) -> None:
        """Test keys are '<request_id>/<filename>' in the project bucket."""
        uploader = RemoteStorageUploader(settings, client=s3)

        failed = await uploader.mirror("demo", "req-1", uploads)

        assert failed == []
        bucket = derive_bucket_name("demo")
        keys = sorted(call.kwargs["Key"] for call in s3.put_object.call_args_list)
        assert keys == ["req-1/env.txt", "req-1/main.json"]
        assert {call.kwargs["Bucket"] for call in s3.put_object.call_args_list} == {
            bucket
        }

    @pytest.mark.asyncio
    async def test_mirror_reports_failed_keys(
        self, settings: Settings, s3: MagicMock, uploads: list[UploadedFile]
    ) -> None:
        """Test failed uploads are returned by key."""

        def put_object(**kwargs: object) -> dict[str, str]:
            if kwargs["Key"] == "req-1/env.txt":
                raise client_error("SlowDown")
            return {}

        s3.put_object.side_effect = put_object
        uploader = RemoteStorageUploader(settings, client=s3)

        assert await uploader.mirror("demo", "req-1", uploads) == ["req-1/env.txt"]

    @pytest.mark.asyncio
    async def test_mirror_bucket_failure_raises(
        self, settings: Settings, s3: MagicMock, uploads: list[UploadedFile]
    ) -> None:
        """Test nothing is uploaded when the bucket cannot be ensured."""
        s3.create_bucket.side_effect = client_error("AccessDenied")
        uploader = RemoteStorageUploader(settings, client=s3)

        with pytest.raises(DeploymentError):
            await uploader.mirror("demo", "req-1", uploads)
        s3.put_object.assert_not_called()
