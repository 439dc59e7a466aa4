"""Fixed deployment defaults for Hangar.

Values here are part of the deployment contract (health check policy,
compute sizing, access policy documents) and are not user-configurable.
"""

from typing import Any

# Upload allow-list: (content type, extension) pairs
ALLOWED_UPLOAD_TYPES: frozenset[tuple[str, str]] = frozenset(
    {
        ("application/json", ".json"),
        ("text/plain", ".txt"),
    }
)

# Conventional upload part names
MAIN_CONFIG_FIELD = "main.json"
ENV_FILE_FIELD = "env.txt"
EXTRA_CONFIG_FIELD = "extra_json"
MAX_EXTRA_CONFIGS = 2

# Runtime env file written into the build context
RUNTIME_ENV_FILENAME = ".env"

# Max upload size per file (50MB)
MAX_UPLOAD_BYTES = 50 * 1024 * 1024

# App Runner health check policy applied on service creation
HEALTH_CHECK_CONFIG: dict[str, Any] = {
    "Protocol": "HTTP",
    "Path": "/health",
    "Interval": 10,
    "Timeout": 5,
    "HealthyThreshold": 1,
    "UnhealthyThreshold": 5,
}

# App Runner compute sizing applied on service creation
INSTANCE_CONFIG: dict[str, str] = {
    "Cpu": "2 vCPU",
    "Memory": "4 GB",
}

# Trust policy letting App Runner pull images with the service role
SERVICE_ROLE_TRUST_POLICY: dict[str, Any] = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "build.apprunner.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

SERVICE_ROLE_DESCRIPTION = (
    "Role for AWS App Runner to assume during service deployment"
)
SERVICE_POLICY_DESCRIPTION = "Custom policy for App Runner service role"

# Permissions attached to the service role
SERVICE_ROLE_POLICY: dict[str, Any] = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Action": ["logs:CreateLogGroup", "logs:PutRetentionPolicy"],
            "Effect": "Allow",
            "Resource": "arn:aws:logs:*:*:log-group:/aws/apprunner/*",
        },
        {
            "Effect": "Allow",
            "Action": [
                "logs:CreateLogStream",
                "logs:PutLogEvents",
                "logs:DescribeLogStreams",
            ],
            "Resource": [
                "arn:aws:logs:*:*:log-group:/aws/apprunner/*:log-stream:*"
            ],
        },
        {
            "Effect": "Allow",
            "Action": [
                "events:PutRule",
                "events:PutTargets",
                "events:DeleteRule",
                "events:RemoveTargets",
                "events:DescribeRule",
                "events:EnableRule",
                "events:DisableRule",
            ],
            "Resource": "arn:aws:events:*:*:rule/AWSAppRunnerManagedRule*",
        },
        {
            "Effect": "Allow",
            "Action": [
                "ecr:GetDownloadUrlForLayer",
                "ecr:BatchGetImage",
                "ecr:DescribeImages",
                "ecr:GetAuthorizationToken",
                "ecr:BatchCheckLayerAvailability",
            ],
            "Resource": "*",
        },
        {"Effect": "Allow", "Action": "s3:*", "Resource": "*"},
    ],
}

# EC2 instance metadata service (IMDSv2)
IMDS_BASE_URL = "http://169.254.169.254/latest"
IMDS_TOKEN_TTL_SECONDS = 21600
IMDS_TIMEOUT_SECONDS = 2.0
