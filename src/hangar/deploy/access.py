"""IAM provisioning for the App Runner service role.

Ensures the service role, its permission policy and the instance profile
exist, matching everything by name so repeated runs converge on the same
resources.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from hangar.config.defaults import (
    IMDS_BASE_URL,
    IMDS_TIMEOUT_SECONDS,
    IMDS_TOKEN_TTL_SECONDS,
    SERVICE_POLICY_DESCRIPTION,
    SERVICE_ROLE_DESCRIPTION,
    SERVICE_ROLE_POLICY,
    SERVICE_ROLE_TRUST_POLICY,
)
from hangar.lib.errors import ProvisioningError
from hangar.lib.logging_config import get_logger

if TYPE_CHECKING:
    from hangar.config.settings import Settings

logger = get_logger(__name__)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class AccessProvisioner:
    """Ensure the IAM resources App Runner needs to pull images."""

    def __init__(
        self,
        settings: Settings,
        iam_client: Any | None = None,
        ec2_client: Any | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            settings: Application settings (region, credentials, role name)
            iam_client: Optional pre-built IAM client
            ec2_client: Optional pre-built EC2 client
            http_client: Optional HTTP client for the instance metadata service
        """
        session = None
        if iam_client is None or ec2_client is None:
            session = boto3.session.Session(**settings.boto3_session_kwargs())
        self.iam = iam_client or session.client("iam")  # type: ignore[union-attr]
        self.ec2 = ec2_client or session.client("ec2")  # type: ignore[union-attr]
        self.http = http_client or httpx.Client(timeout=IMDS_TIMEOUT_SECONDS)
        self.role_name = settings.service_role_name

    @property
    def policy_name(self) -> str:
        """Name of the custom policy attached to the service role."""
        return f"{self.role_name}-policy"

    def get_role_arn(self, role_name: str) -> str | None:
        """Return the role ARN, or None when the role does not exist.

        Raises:
            ProvisioningError: On any lookup failure other than NoSuchEntity
        """
        try:
            result = self.iam.get_role(RoleName=role_name)
        except ClientError as exc:
            if _error_code(exc) == "NoSuchEntity":
                logger.info(f"Role {role_name} does not exist")
                return None
            raise ProvisioningError(f"Error checking role {role_name}: {exc}") from exc
        except BotoCoreError as exc:
            raise ProvisioningError(f"Error checking role {role_name}: {exc}") from exc
        return str(result["Role"]["Arn"])

    def ensure_service_role(self) -> tuple[str, str]:
        """Ensure the service role and its policy exist.

        Returns:
            Tuple of (role ARN, role name)

        Raises:
            ProvisioningError: If the role or policy cannot be ensured
        """
        role_name = self.role_name
        role_arn = self.get_role_arn(role_name)
        if role_arn is None:
            try:
                result = self.iam.create_role(
                    RoleName=role_name,
                    AssumeRolePolicyDocument=json.dumps(SERVICE_ROLE_TRUST_POLICY),
                    Description=SERVICE_ROLE_DESCRIPTION,
                )
            except (ClientError, BotoCoreError) as exc:
                raise ProvisioningError(
                    f"Error creating role {role_name}: {exc}"
                ) from exc
            role_arn = str(result["Role"]["Arn"])
            logger.info(f"IAM role created: {role_arn}")

        self.ensure_policy(role_name)
        return role_arn, role_name

    def find_policy_arn(self, policy_name: str) -> str | None:
        """Return the ARN of a customer-managed policy matched by name."""
        try:
            paginator = self.iam.get_paginator("list_policies")
            for page in paginator.paginate(Scope="Local"):
                for policy in page.get("Policies", []):
                    if policy.get("PolicyName") == policy_name:
                        return str(policy["Arn"])
        except (ClientError, BotoCoreError) as exc:
            raise ProvisioningError(f"Error listing policies: {exc}") from exc
        return None

    def ensure_policy(self, role_name: str) -> str:
        """Create the role policy if absent and attach it.

        Attaching is repeated on every call; the platform treats an
        already-attached policy as a no-op.

        Returns:
            Policy ARN
        """
        policy_name = f"{role_name}-policy"
        policy_arn = self.find_policy_arn(policy_name)
        if policy_arn is None:
            try:
                result = self.iam.create_policy(
                    PolicyName=policy_name,
                    PolicyDocument=json.dumps(SERVICE_ROLE_POLICY),
                    Description=SERVICE_POLICY_DESCRIPTION,
                )
            except (ClientError, BotoCoreError) as exc:
                raise ProvisioningError(
                    f"Error creating custom policy: {exc}"
                ) from exc
            policy_arn = str(result["Policy"]["Arn"])
            logger.info(f"Custom policy created: {policy_arn}")

        try:
            self.iam.attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
        except (ClientError, BotoCoreError) as exc:
            raise ProvisioningError(f"Error attaching custom policy: {exc}") from exc
        logger.info(f"Attached custom policy to role {role_name}")
        return policy_arn

    def fetch_instance_id(self) -> str:
        """Return the id of the EC2 instance running this process (IMDSv2).

        Raises:
            ProvisioningError: If either the token or metadata request fails
        """
        try:
            token_response = self.http.put(
                f"{IMDS_BASE_URL}/api/token",
                headers={
                    "X-aws-ec2-metadata-token-ttl-seconds": str(
                        IMDS_TOKEN_TTL_SECONDS
                    )
                },
            )
            token_response.raise_for_status()
            id_response = self.http.get(
                f"{IMDS_BASE_URL}/meta-data/instance-id",
                headers={"X-aws-ec2-metadata-token": token_response.text},
            )
            id_response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProvisioningError(f"Failed to fetch instance ID: {exc}") from exc
        return id_response.text.strip()

    def bind_role_to_compute_identity(
        self, instance_id: str, role_name: str
    ) -> str | None:
        """Wrap the role in an instance profile and associate it.

        Returns:
            None on success, otherwise a warning when the association failed

        Raises:
            ProvisioningError: If the instance profile cannot be prepared
        """
        try:
            self.iam.create_instance_profile(InstanceProfileName=role_name)
        except ClientError as exc:
            if _error_code(exc) != "EntityAlreadyExists":
                raise ProvisioningError(
                    f"Error creating instance profile {role_name}: {exc}"
                ) from exc
            logger.debug(f"Instance profile {role_name} exists")
        except BotoCoreError as exc:
            raise ProvisioningError(
                f"Error creating instance profile {role_name}: {exc}"
            ) from exc

        try:
            self.iam.add_role_to_instance_profile(
                InstanceProfileName=role_name, RoleName=role_name
            )
        except ClientError as exc:
            # An instance profile holds a single role
            if _error_code(exc) != "LimitExceeded":
                raise ProvisioningError(
                    f"Error adding role to instance profile: {exc}"
                ) from exc
        except BotoCoreError as exc:
            raise ProvisioningError(
                f"Error adding role to instance profile: {exc}"
            ) from exc

        try:
            self.ec2.associate_iam_instance_profile(
                IamInstanceProfile={"Name": role_name},
                InstanceId=instance_id,
            )
        except (ClientError, BotoCoreError) as exc:
            warning = f"Error attaching IAM role to instance {instance_id}: {exc}"
            logger.warning(warning)
            return warning

        logger.info(f"IAM role {role_name} attached to instance {instance_id}")
        return None

    def attach_role_to_instance(self, role_name: str) -> str | None:
        """Associate the role with the host instance, best-effort.

        Returns:
            None on success, otherwise a warning describing the failure
        """
        try:
            instance_id = self.fetch_instance_id()
            return self.bind_role_to_compute_identity(instance_id, role_name)
        except ProvisioningError as exc:
            logger.warning(f"Role attachment skipped: {exc.message}")
            return f"Role attachment skipped: {exc.message}"
