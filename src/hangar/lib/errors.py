"""Custom exception hierarchy for Hangar intake and deployment operations."""


class HangarError(Exception):
    """Base exception for all Hangar errors.

    All Hangar-specific exceptions inherit from this class, enabling
    centralized exception handling at the HTTP and CLI boundaries.
    """

    pass


class ConfigError(HangarError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class UploadValidationError(HangarError):
    """Exception raised when an intake submission is rejected.

    Covers missing form fields and uploads whose content type and
    extension are not on the allow-list.

    Attributes:
        message: Human-readable error message
        filename: Offending file name, if the error concerns a single file
    """

    def __init__(self, message: str, filename: str | None = None) -> None:
        """Create an upload validation error.

        Args:
            message: Description of what went wrong
            filename: Name of the rejected file, if any
        """
        self.message = message
        self.filename = filename
        super().__init__(message)


class DuplicateRequestError(HangarError):
    """Exception raised when a project version was already submitted."""

    def __init__(self, project_name: str, version: str) -> None:
        """Create a duplicate request error for a project version."""
        self.project_name = project_name
        self.version = version
        self.message = "Version name already used for the project"
        super().__init__(self.message)


class DeploymentError(HangarError):
    """Exception raised when a deployment pipeline stage fails.

    Attributes:
        operation: Pipeline operation that failed (stage, build, publish, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Initialize DeploymentError with the failing operation.

        Args:
            operation: Name of the operation that failed
            message: Descriptive error message
        """
        self.operation = operation
        self.message = message
        super().__init__(message)


class FileSystemError(DeploymentError):
    """Exception raised when the staging directory cannot be prepared."""

    def __init__(self, message: str) -> None:
        """Create a staging filesystem error."""
        super().__init__(operation="stage", message=message)


class BuildError(DeploymentError):
    """Exception raised when the container build fails.

    Attributes:
        log_lines: Diagnostic output captured from the build tool
    """

    def __init__(self, message: str, log_lines: list[str] | None = None) -> None:
        """Create a build error carrying the build tool output.

        Args:
            message: Descriptive error message
            log_lines: Build output lines leading up to the failure
        """
        self.log_lines = log_lines or []
        super().__init__(operation="build", message=message)


class PublishError(DeploymentError):
    """Exception raised when the registry repository or push fails."""

    def __init__(self, message: str) -> None:
        """Create a registry publish error."""
        super().__init__(operation="publish", message=message)


class ProvisioningError(DeploymentError):
    """Exception raised when the service role or its policy cannot be ensured."""

    def __init__(self, message: str) -> None:
        """Create an access provisioning error."""
        super().__init__(operation="provision", message=message)


class DeployError(DeploymentError):
    """Exception raised when the hosted service cannot be created or updated."""

    def __init__(self, message: str) -> None:
        """Create a service deploy error."""
        super().__init__(operation="deploy", message=message)


class DockerNotAvailableError(DeploymentError):
    """Exception raised when the Docker daemon cannot be reached."""

    def __init__(self, operation: str = "build") -> None:
        """Create an error describing how to make Docker available."""
        super().__init__(
            operation=operation,
            message=(
                "Docker is not available. Ensure the Docker daemon is running "
                "and the current user can access it."
            ),
        )


class OAuthError(HangarError):
    """Exception raised when the OAuth flow or a token refresh fails."""

    def __init__(self, message: str) -> None:
        """Create an OAuth error."""
        self.message = message
        super().__init__(message)
