"""Integration tests for a full deployment run.

The real stager, recorder, publisher, provisioner and App Runner deployer
are wired together; only the Docker and AWS clients are mocked.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
from botocore.exceptions import ClientError

from hangar.config.settings import Settings
from hangar.deploy.access import AccessProvisioner
from hangar.deploy.builder import ContainerBuilder
from hangar.deploy.deployers.aws_apprunner import AppRunnerDeployer
from hangar.deploy.identifiers import derive_bucket_name, derive_request_id
from hangar.deploy.pipeline import DeploymentPipeline, Submission
from hangar.deploy.registry import RegistryPublisher
from hangar.deploy.storage import RemoteStorageUploader
from hangar.models.deployment import DeploymentStatus, UploadedFile

REPOSITORY_URI = "123.dkr.ecr.us-west-2.amazonaws.com/demo"
ROLE_ARN = "arn:aws:iam::123:role/ORCPYARServiceRole"
SERVICE_ARN = "arn:aws:apprunner:us-west-2:123:service/demo/abc"


def client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


@pytest.fixture
def docker_client() -> Generator[MagicMock, None, None]:
    """Patch the Docker client used by the builder."""
    client = MagicMock()
    image = MagicMock()
    image.id = "sha256:abc"
    client.images.build.return_value = (image, [{"stream": "Step 1/7 : FROM node"}])
    client.images.push.return_value = iter([{"status": "Pushed"}])
    with patch("docker.from_env", return_value=client):
        yield client


@pytest.fixture
def ecr() -> MagicMock:
    client = MagicMock()
    client.create_repository.return_value = {
        "repository": {"repositoryUri": REPOSITORY_URI}
    }
    client.get_authorization_token.return_value = {
        "authorizationData": [
            {
                "authorizationToken": base64.b64encode(b"AWS:pw").decode(),
                "proxyEndpoint": "https://123.dkr.ecr.us-west-2.amazonaws.com",
            }
        ]
    }
    return client


@pytest.fixture
def iam() -> MagicMock:
    client = MagicMock()
    client.get_role.side_effect = client_error("NoSuchEntity")
    client.create_role.return_value = {"Role": {"Arn": ROLE_ARN}}
    client.get_paginator.return_value.paginate.return_value = [{"Policies": []}]
    client.create_policy.return_value = {
        "Policy": {"Arn": "arn:aws:iam::123:policy/ORCPYARServiceRole-policy"}
    }
    return client


@pytest.fixture
def apprunner() -> MagicMock:
    client = MagicMock()
    client.list_services.return_value = {"ServiceSummaryList": []}
    client.create_service.return_value = {
        "Service": {
            "ServiceArn": SERVICE_ARN,
            "ServiceName": "demo",
            "ServiceUrl": "abc.us-west-2.awsapprunner.com",
            "Status": "OPERATION_IN_PROGRESS",
        }
    }
    return client


@pytest.fixture
def s3() -> MagicMock:
    return MagicMock()


@pytest.fixture
def pipeline(
    settings: Settings,
    docker_client: MagicMock,
    ecr: MagicMock,
    iam: MagicMock,
    apprunner: MagicMock,
    s3: MagicMock,
) -> DeploymentPipeline:
    """Pipeline built from real components over mocked clients."""
    builder = ContainerBuilder(platform=settings.build_platform)
    no_imds = httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(404))
    )
    return DeploymentPipeline(
        settings,
        storage=RemoteStorageUploader(settings, client=s3),
        builder=builder,
        publisher=RegistryPublisher(settings, builder, client=ecr),
        provisioner=AccessProvisioner(
            settings, iam_client=iam, ec2_client=MagicMock(), http_client=no_imds
        ),
        deployer=AppRunnerDeployer(settings, client=apprunner),
    )


def submission() -> Submission:
    return Submission(
        project_name="demo",
        version="1",
        files=[
            UploadedFile(
                field_name="main.json",
                filename="main.json",
                content_type="application/json",
                data=b'{"name": "demo"}',
            ),
            UploadedFile(
                field_name="env.txt",
                filename="env.txt",
                content_type="text/plain",
                data=b"OPENAI_API_KEY=sk-test\n",
            ),
            UploadedFile(
                field_name="extra_json",
                filename="character.json",
                content_type="application/json",
                data=b"{}",
            ),
        ],
        extra_env={"TWITTER_ACCESS_TOKEN": "at-1", "OPENAI_API_KEY": "ignored"},
    )


@pytest.mark.integration
class TestPipelineFlow:
    """End-to-end run of accept and execute."""

    @pytest.mark.asyncio
    async def test_first_deployment(
        self,
        pipeline: DeploymentPipeline,
        settings: Settings,
        docker_client: MagicMock,
        ecr: MagicMock,
        iam: MagicMock,
        apprunner: MagicMock,
        s3: MagicMock,
    ) -> None:
        """Test a new project goes from upload to a created service."""
        staged: dict[str, Any] = {}

        def capture_build(**kwargs: Any) -> Any:
            context = Path(kwargs["path"])
            staged["files"] = sorted(p.name for p in context.iterdir())
            staged["env"] = (context / ".env").read_text()
            staged["dockerfile"] = (context / "Dockerfile").read_text()
            staged["context"] = context
            image = MagicMock()
            image.id = "sha256:abc"
            return image, []

        docker_client.images.build.side_effect = capture_build

        accepted = await pipeline.accept(submission())
        result = await pipeline.execute(accepted)

        assert result is not None
        assert result.created is True
        assert result.url == "https://abc.us-west-2.awsapprunner.com"

        request_id = derive_request_id("demo", "1")
        status = pipeline.recorder.get_status(request_id)
        assert status is not None
        assert status.status is DeploymentStatus.FINISHING
        assert status.info == "Agent is being deployed!"
        assert len(status.warnings) == 1
        assert status.warnings[0].startswith("Role attachment skipped")

        # Build context held uploads, template and generated files
        assert staged["files"] == sorted(
            [
                ".env",
                "Dockerfile",
                "character.json",
                "env.txt",
                "index.js",
                "main.json",
                "package.json",
            ]
        )
        assert staged["env"] == "OPENAI_API_KEY=sk-test\nTWITTER_ACCESS_TOKEN=at-1\n"
        assert "EXPOSE 3000" in staged["dockerfile"]
        assert not staged["context"].exists()

        # Uploads mirrored under the request id
        s3.create_bucket.assert_called_once_with(
            Bucket=derive_bucket_name("demo"),
            CreateBucketConfiguration={"LocationConstraint": "us-west-2"},
        )
        keys = sorted(call.kwargs["Key"] for call in s3.put_object.call_args_list)
        assert keys == [
            f"{request_id}/character.json",
            f"{request_id}/env.txt",
            f"{request_id}/main.json",
        ]

        # Image tagged and pushed with registry credentials
        docker_client.images.get.return_value.tag.assert_called_once_with(
            REPOSITORY_URI, tag="1"
        )
        push_kwargs = docker_client.images.push.call_args.kwargs
        assert push_kwargs["auth_config"]["username"] == "AWS"

        # Role and policy created, service created with the role
        iam.create_role.assert_called_once()
        trust = json.loads(iam.create_role.call_args.kwargs["AssumeRolePolicyDocument"])
        assert (
            trust["Statement"][0]["Principal"]["Service"]
            == "build.apprunner.amazonaws.com"
        )
        iam.attach_role_policy.assert_called_once()
        create = apprunner.create_service.call_args.kwargs
        source = create["SourceConfiguration"]
        assert source["ImageRepository"]["ImageIdentifier"] == f"{REPOSITORY_URI}:1"
        assert source["AuthenticationConfiguration"]["AccessRoleArn"] == ROLE_ARN
        assert create["InstanceConfiguration"] == {"Cpu": "2 vCPU", "Memory": "4 GB"}
        assert create["HealthCheckConfiguration"]["Path"] == "/health"

    @pytest.mark.asyncio
    async def test_existing_service_updated(
        self,
        pipeline: DeploymentPipeline,
        apprunner: MagicMock,
    ) -> None:
        """Test a project with a live service only has its image swapped."""
        apprunner.list_services.return_value = {
            "ServiceSummaryList": [{"ServiceName": "demo", "ServiceArn": SERVICE_ARN}]
        }
        apprunner.describe_service.return_value = {
            "Service": {
                "ServiceArn": SERVICE_ARN,
                "ServiceName": "demo",
                "Status": "RUNNING",
                "SourceConfiguration": {
                    "ImageRepository": {"ImageIdentifier": f"{REPOSITORY_URI}:0"}
                },
            }
        }
        apprunner.update_service.return_value = {
            "Service": {
                "ServiceArn": SERVICE_ARN,
                "ServiceName": "demo",
                "Status": "OPERATION_IN_PROGRESS",
            }
        }

        result = await pipeline.execute(await pipeline.accept(submission()))

        assert result is not None
        assert result.created is False
        apprunner.create_service.assert_not_called()
        update = apprunner.update_service.call_args.kwargs
        assert update["ServiceArn"] == SERVICE_ARN
        assert (
            update["SourceConfiguration"]["ImageRepository"]["ImageIdentifier"]
            == f"{REPOSITORY_URI}:1"
        )

    @pytest.mark.asyncio
    async def test_push_denied(
        self,
        pipeline: DeploymentPipeline,
        ecr: MagicMock,
        apprunner: MagicMock,
        settings: Settings,
    ) -> None:
        """Test a registry failure stops the run after the build."""
        ecr.create_repository.side_effect = client_error("AccessDeniedException")

        accepted = await pipeline.accept(submission())
        result = await pipeline.execute(accepted)

        assert result is None
        status = pipeline.recorder.get_status(accepted.request.request_id)
        assert status is not None
        assert status.status is DeploymentStatus.FAILED
        assert status.stage is DeploymentStatus.BUILDING
        assert status.info.startswith("Error: Error creating repository")
        apprunner.create_service.assert_not_called()
        assert not any(settings.staging_dir.iterdir())
