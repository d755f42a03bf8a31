"""Exception hierarchy for Constech Worker."""

from typing import Optional


class WorkerError(RuntimeError):
    """Base class for errors raised by Constech Worker."""


class ConfigError(WorkerError):
    """Raised when configuration cannot be loaded, validated or saved."""


class GitHubError(WorkerError):
    """Raised when a primary GitHub operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ContainerRuntimeError(WorkerError):
    """Raised when the container runtime rejects an operation."""


class ContainerNotFoundError(ContainerRuntimeError):
    """Raised when a container no longer exists."""


class ImageBuildError(ContainerRuntimeError):
    """Raised when the execution image cannot be resolved or built."""


class ExecutionTimeoutError(ContainerRuntimeError):
    """Raised when the agent execution exceeds its configured ceiling."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Agent execution timed out after {timeout_seconds:g} seconds")
        self.timeout_seconds = timeout_seconds


class WorkflowRequestError(ValueError):
    """Raised when a dispatch request has an invalid shape."""
