"""Container runtime interfaces.

The workflow engine only talks to isolated execution environments through
:class:`ContainerRuntime`, so the Docker CLI adapter can be swapped for an
in-memory fake in tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

MANAGED_LABEL = "constech-worker.managed"

LineHandler = Callable[[str], None]


class ContainerSpec(BaseModel):
    """Everything needed to create an isolated execution environment.

    Attributes:
        image: Image reference to run
        name: Container name
        command: Long-running command keeping the container alive
        environment: Plain environment values
        secrets: Secret environment values, never placed on a command line
        binds: Volume binds in ``source:target[:mode]`` form
        labels: Extra labels; the managed label is always added
        working_dir: Working directory inside the container
        user: User the container runs as
    """

    image: str
    name: str
    command: List[str] = Field(default_factory=lambda: ["sleep", "infinity"])
    environment: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict)
    binds: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    working_dir: Optional[str] = None
    user: Optional[str] = None


class ContainerState(BaseModel):
    status: str
    running: bool
    exit_code: Optional[int] = None


class ExecResult(BaseModel):
    """Outcome of a command executed inside a container."""

    exit_code: int
    output: str = ""


class ContainerSummary(BaseModel):
    """A managed container as listed by the runtime."""

    id: str
    name: str
    image: str
    state: str
    status: str
    created: str = ""

    @property
    def running(self) -> bool:
        return self.state == "running"


class ContainerRuntime(ABC):
    """Abstract runtime capable of managing isolated execution environments."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if the runtime daemon is reachable."""

    @abstractmethod
    def create(self, spec: ContainerSpec) -> str:
        """Create a container and return its ID."""

    @abstractmethod
    def start(self, container_id: str) -> None:
        pass

    @abstractmethod
    def inspect(self, container_id: str) -> ContainerState:
        """Return the container state.

        Raises:
            ContainerNotFoundError: If the container does not exist
        """

    @abstractmethod
    def exec_stream(
        self,
        container_id: str,
        command: List[str],
        *,
        env: Optional[Dict[str, str]] = None,
        user: Optional[str] = None,
        workdir: Optional[str] = None,
        on_line: Optional[LineHandler] = None,
        timeout: Optional[float] = None,
    ) -> ExecResult:
        """Run a command, streaming combined stdout/stderr lines to ``on_line``.

        Raises:
            ExecutionTimeoutError: If the command outlives ``timeout`` seconds
        """

    @abstractmethod
    def copy_into(self, container_id: str, source: Union[str, Path], destination: str) -> None:
        pass

    @abstractmethod
    def logs(self, container_id: str, tail: int = 50) -> str:
        pass

    @abstractmethod
    def stop(self, container_id: str, timeout: int = 10) -> None:
        pass

    @abstractmethod
    def remove(self, container_id: str, force: bool = False) -> None:
        pass

    @abstractmethod
    def list_managed(self, include_stopped: bool = False) -> List[ContainerSummary]:
        """List containers carrying the managed label."""

    @abstractmethod
    def build_image(self, dockerfile: Union[str, Path], tag: str, context: Union[str, Path]) -> str:
        """Build an image and return its reference.

        Raises:
            ImageBuildError: If the build fails
        """
