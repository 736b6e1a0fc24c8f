"""Custom exceptions for labctl."""


class LabError(Exception):
    """Base exception for all labctl errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ConfigurationError(LabError):
    """Exception raised for configuration errors."""

    pass


class PortAllocationError(LabError):
    """Exception raised when host ports cannot be allocated."""

    pass


class SessionError(LabError):
    """Exception raised when a session record cannot be read or written."""

    pass


class SessionNotFoundError(SessionError):
    """Exception raised when no session record exists for a cluster."""

    def __init__(self, cluster_name: str):
        self.cluster_name = cluster_name
        super().__init__(
            f"No session found for cluster '{cluster_name}'",
            "Create the cluster first with: labctl cluster create",
        )


class ClusterExistsError(LabError):
    """Exception raised when creating a cluster that already exists."""

    def __init__(self, cluster_name: str):
        self.cluster_name = cluster_name
        super().__init__(
            f"Cluster '{cluster_name}' already exists",
            f"Delete it first with: labctl cluster delete --cluster {cluster_name}",
        )


class ClusterNotFoundError(LabError):
    """Exception raised when the runtime has no cluster with the given name."""

    def __init__(self, cluster_name: str, details: str = None):
        self.cluster_name = cluster_name
        super().__init__(f"Cluster '{cluster_name}' not found", details)


class CreatePhaseError(LabError):
    """Exception raised when a phase of cluster creation fails.

    Attributes:
        phase: The Phase that failed
        cause: The original exception
        warnings: Best-effort cleanup steps that also failed
    """

    def __init__(self, phase, cause: Exception, warnings: list | None = None):
        self.phase = phase
        self.cause = cause
        self.warnings = warnings or []
        super().__init__(f"Cluster creation failed during {phase.value}: {cause}")


class ReadinessError(LabError):
    """Base exception for readiness polling failures."""

    pass


class ReadinessTimeoutError(ReadinessError):
    """Exception raised when a readiness signal does not converge in time."""

    def __init__(self, ready: int, total: int, description: str = "resources"):
        self.ready = ready
        self.total = total
        super().__init__(
            f"Timed out waiting for {description} to become ready ({ready}/{total} ready)"
        )


class ReadinessCancelledError(ReadinessError):
    """Exception raised when readiness polling is cancelled by the caller."""

    def __init__(self, ready: int = 0, total: int = 0):
        self.ready = ready
        self.total = total
        super().__init__(f"Readiness polling cancelled ({ready}/{total} ready)")


class CommandError(LabError):
    """Exception raised when an external command (k3d, helm, docker, git) fails."""

    pass


class KubernetesError(LabError):
    """Exception raised for Kubernetes API errors."""

    pass


class ResourceExistsError(KubernetesError):
    """Exception raised when creating a Kubernetes object that already exists."""

    pass


class CatalogError(LabError):
    """Exception raised for catalog read/write errors."""

    pass
