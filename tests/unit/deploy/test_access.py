"""Unit tests for IAM service role provisioning."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from hangar.config.defaults import SERVICE_ROLE_TRUST_POLICY
from hangar.config.settings import Settings
from hangar.deploy.access import AccessProvisioner
from hangar.lib.errors import ProvisioningError

ROLE_ARN = "arn:aws:iam::123:role/ORCPYARServiceRole"
POLICY_ARN = "arn:aws:iam::123:policy/ORCPYARServiceRole-policy"


def client_error(code: str, operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError with the given code."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def imds_transport(
    token_status: int = 200, id_status: int = 200
) -> httpx.MockTransport:
    """Instance metadata service double."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT" and request.url.path == "/latest/api/token":
            assert request.headers["X-aws-ec2-metadata-token-ttl-seconds"] == "21600"
            return httpx.Response(token_status, text="imds-token")
        if request.url.path == "/latest/meta-data/instance-id":
            assert request.headers["X-aws-ec2-metadata-token"] == "imds-token"
            return httpx.Response(id_status, text="i-0abc\n")
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
def iam() -> MagicMock:
    """An IAM client mock with one page of unrelated policies."""
    mock = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Policies": [{"PolicyName": "other", "Arn": "arn:other"}]}
    ]
    mock.get_paginator.return_value = paginator
    mock.create_policy.return_value = {"Policy": {"Arn": POLICY_ARN}}
    return mock


@pytest.fixture
def ec2() -> MagicMock:
    """An EC2 client mock."""
    return MagicMock()


def make_provisioner(
    settings: Settings,
    iam: MagicMock,
    ec2: MagicMock,
    transport: httpx.MockTransport | None = None,
) -> AccessProvisioner:
    """Build a provisioner wired to mocks."""
    http = httpx.Client(transport=transport or imds_transport())
    return AccessProvisioner(settings, iam_client=iam, ec2_client=ec2, http_client=http)


@pytest.mark.unit
class TestEnsureServiceRole:
    """Tests for ensure_service_role and ensure_policy."""

    def test_existing_role_reused(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test an existing role is returned without creating one."""
        iam.get_role.return_value = {"Role": {"Arn": ROLE_ARN}}
        provisioner = make_provisioner(settings, iam, ec2)

        assert provisioner.ensure_service_role() == (ROLE_ARN, "ORCPYARServiceRole")
        iam.create_role.assert_not_called()
        iam.attach_role_policy.assert_called_once_with(
            RoleName="ORCPYARServiceRole", PolicyArn=POLICY_ARN
        )

    def test_missing_role_created(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test NoSuchEntity creates the role with the build trust policy."""
        iam.get_role.side_effect = client_error("NoSuchEntity", "GetRole")
        iam.create_role.return_value = {"Role": {"Arn": ROLE_ARN}}
        provisioner = make_provisioner(settings, iam, ec2)

        role_arn, role_name = provisioner.ensure_service_role()

        assert role_arn == ROLE_ARN
        kwargs = iam.create_role.call_args.kwargs
        assert kwargs["RoleName"] == role_name
        assert json.loads(kwargs["AssumeRolePolicyDocument"]) == SERVICE_ROLE_TRUST_POLICY
        trust = SERVICE_ROLE_TRUST_POLICY["Statement"][0]["Principal"]["Service"]
        assert trust == "build.apprunner.amazonaws.com"

    def test_lookup_failure_is_fatal(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test other lookup errors are not treated as 'absent'."""
        iam.get_role.side_effect = client_error("AccessDenied", "GetRole")
        provisioner = make_provisioner(settings, iam, ec2)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.ensure_service_role()
        assert exc_info.value.operation == "provision"
        iam.create_role.assert_not_called()

    def test_existing_policy_reused(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test a policy matched by name is attached, not recreated."""
        iam.get_paginator.return_value.paginate.return_value = [
            {"Policies": []},
            {"Policies": [{"PolicyName": "ORCPYARServiceRole-policy", "Arn": POLICY_ARN}]},
        ]
        provisioner = make_provisioner(settings, iam, ec2)

        assert provisioner.ensure_policy("ORCPYARServiceRole") == POLICY_ARN
        iam.create_policy.assert_not_called()
        iam.get_paginator.return_value.paginate.assert_called_once_with(Scope="Local")
        iam.attach_role_policy.assert_called_once()

    def test_attach_failure_is_fatal(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test policy attach errors raise ProvisioningError."""
        iam.attach_role_policy.side_effect = client_error("LimitExceeded")
        provisioner = make_provisioner(settings, iam, ec2)

        with pytest.raises(ProvisioningError, match="attaching custom policy"):
            provisioner.ensure_policy("ORCPYARServiceRole")


@pytest.mark.unit
class TestInstanceAttachment:
    """Tests for instance metadata lookup and role association."""

    def test_fetch_instance_id(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test the IMDSv2 token then id requests."""
        provisioner = make_provisioner(settings, iam, ec2)
        assert provisioner.fetch_instance_id() == "i-0abc"

    def test_fetch_instance_id_token_failure(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test a failed token request raises ProvisioningError."""
        provisioner = make_provisioner(
            settings, iam, ec2, transport=imds_transport(token_status=401)
        )
        with pytest.raises(ProvisioningError, match="instance ID"):
            provisioner.fetch_instance_id()

    def test_bind_tolerates_existing_profile(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test EntityAlreadyExists and LimitExceeded are tolerated."""
        iam.create_instance_profile.side_effect = client_error("EntityAlreadyExists")
        iam.add_role_to_instance_profile.side_effect = client_error("LimitExceeded")
        provisioner = make_provisioner(settings, iam, ec2)

        assert provisioner.bind_role_to_compute_identity("i-0abc", "role") is None
        ec2.associate_iam_instance_profile.assert_called_once_with(
            IamInstanceProfile={"Name": "role"}, InstanceId="i-0abc"
        )

    def test_bind_profile_failure_is_fatal(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test other instance profile errors raise."""
        iam.create_instance_profile.side_effect = client_error("AccessDenied")
        provisioner = make_provisioner(settings, iam, ec2)

        with pytest.raises(ProvisioningError):
            provisioner.bind_role_to_compute_identity("i-0abc", "role")

    def test_association_failure_is_warning(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test an association failure is returned as a warning."""
        ec2.associate_iam_instance_profile.side_effect = client_error(
            "IncorrectState"
        )
        provisioner = make_provisioner(settings, iam, ec2)

        warning = provisioner.bind_role_to_compute_identity("i-0abc", "role")

        assert warning is not None
        assert "i-0abc" in warning

    def test_attach_outside_ec2_is_warning(
        self, settings: Settings, iam: MagicMock, ec2: MagicMock
    ) -> None:
        """Test an unreachable metadata service reduces to a warning."""

        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route", request=request)

        provisioner = make_provisioner(
            settings, iam, ec2, transport=httpx.MockTransport(unreachable)
        )

        warning = provisioner.attach_role_to_instance("role")

        assert warning is not None
        assert warning.startswith("Role attachment skipped")
        iam.create_instance_profile.assert_not_called()
