"""Container runtime adapters for isolated execution environments."""

from constech_worker.core.runtime.base import (
    MANAGED_LABEL,
    ContainerRuntime,
    ContainerSpec,
    ContainerState,
    ContainerSummary,
    ExecResult,
)
from constech_worker.core.runtime.docker import DockerCliRuntime
from constech_worker.core.runtime.image import ImageResolver

__all__ = [
    "MANAGED_LABEL",
    "ContainerRuntime",
    "ContainerSpec",
    "ContainerState",
    "ContainerSummary",
    "DockerCliRuntime",
    "ExecResult",
    "ImageResolver",
]
