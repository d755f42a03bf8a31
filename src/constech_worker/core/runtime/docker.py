"""Container runtime backed by the ``docker`` command line client."""

import json
import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv

from constech_worker.core.errors import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    ExecutionTimeoutError,
    ImageBuildError,
)
from constech_worker.core.runtime.base import (
    MANAGED_LABEL,
    ContainerRuntime,
    ContainerSpec,
    ContainerState,
    ContainerSummary,
    ExecResult,
    LineHandler,
)

load_dotenv()

DOCKER_PATH = os.getenv("CONSTECH_DOCKER_PATH", "docker")

logger = logging.getLogger(__name__)


def _env_flags(names: List[str]) -> List[str]:
    # Values stay in the child environment; only names reach the argv.
    flags: List[str] = []
    for name in names:
        flags.extend(["-e", name])
    return flags


class DockerCliRuntime(ContainerRuntime):
    """Manage execution environments by shelling out to ``docker``."""

    def __init__(self, docker_path: Optional[str] = None, command_timeout: int = 120) -> None:
        self.docker_path = docker_path or DOCKER_PATH
        self.command_timeout = command_timeout

    def _run(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        cmd = [self.docker_path, *args]
        logger.debug(f"Executing: {' '.join(cmd)}")
        proc_env = {**os.environ, **env} if env else None
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                env=proc_env,
                timeout=timeout if timeout is not None else self.command_timeout,
            )
        except FileNotFoundError as e:
            raise ContainerRuntimeError(f"Docker CLI not found: {self.docker_path}") from e
        except subprocess.TimeoutExpired as e:
            raise ContainerRuntimeError(f"docker {args[0]} timed out") from e

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if "No such container" in stderr or "No such object" in stderr:
                raise ContainerNotFoundError(stderr)
            raise ContainerRuntimeError(f"docker {args[0]} failed: {stderr}")
        return result

    def is_available(self) -> bool:
        try:
            result = self._run(["info", "--format", "{{.ServerVersion}}"], check=False, timeout=15)
        except ContainerRuntimeError as e:
            logger.debug(f"Docker unavailable: {e}")
            return False
        return result.returncode == 0

    def create(self, spec: ContainerSpec) -> str:
        args = ["create", "--name", spec.name, "--label", f"{MANAGED_LABEL}=true"]
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        for key, value in spec.environment.items():
            args.extend(["-e", f"{key}={value}"])
        args.extend(_env_flags(list(spec.secrets)))
        for bind in spec.binds:
            args.extend(["-v", bind])
        if spec.working_dir:
            args.extend(["-w", spec.working_dir])
        if spec.user:
            args.extend(["-u", spec.user])
        args.append(spec.image)
        args.extend(spec.command)

        result = self._run(args, env=spec.secrets)
        container_id = result.stdout.strip()
        logger.debug(f"Created container {spec.name}: {container_id[:12]}")
        return container_id

    def start(self, container_id: str) -> None:
        self._run(["start", container_id])

    def inspect(self, container_id: str) -> ContainerState:
        result = self._run(["inspect", "--format", "{{json .State}}", container_id])
        try:
            state = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ContainerRuntimeError(f"Unexpected inspect output: {result.stdout!r}") from e
        return ContainerState(
            status=state.get("Status", "unknown"),
            running=bool(state.get("Running")),
            exit_code=state.get("ExitCode"),
        )

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
        args = [self.docker_path, "exec"]
        args.extend(_env_flags(list(env or {})))
        if user:
            args.extend(["-u", user])
        if workdir:
            args.extend(["-w", workdir])
        args.append(container_id)
        args.extend(command)

        logger.debug(f"Executing in {container_id[:12]}: {' '.join(command)}")
        proc_env = {**os.environ, **env} if env else None
        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=proc_env,
            )
        except FileNotFoundError as e:
            raise ContainerRuntimeError(f"Docker CLI not found: {self.docker_path}") from e

        assert process.stdout is not None
        stdout_pipe = process.stdout
        lines: List[str] = []

        def _stream_output() -> None:
            for line in stdout_pipe:
                lines.append(line)
                if on_line:
                    try:
                        on_line(line)
                    except Exception as e:
                        logger.error("Stream handler error: %s", e)
            stdout_pipe.close()

        reader = threading.Thread(target=_stream_output, daemon=True)
        reader.start()

        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            reader.join(timeout=5)
            raise ExecutionTimeoutError(timeout or 0)

        reader.join()
        return ExecResult(exit_code=process.returncode, output="".join(lines))

    def copy_into(self, container_id: str, source: Union[str, Path], destination: str) -> None:
        self._run(["cp", str(source), f"{container_id}:{destination}"])

    def logs(self, container_id: str, tail: int = 50) -> str:
        result = self._run(["logs", "--tail", str(tail), container_id])
        return (result.stdout or "") + (result.stderr or "")

    def stop(self, container_id: str, timeout: int = 10) -> None:
        self._run(["stop", "-t", str(timeout), container_id], timeout=timeout + 30)

    def remove(self, container_id: str, force: bool = False) -> None:
        args = ["rm"]
        if force:
            args.append("-f")
        args.append(container_id)
        self._run(args)

    def list_managed(self, include_stopped: bool = False) -> List[ContainerSummary]:
        args = ["ps", "--filter", f"label={MANAGED_LABEL}=true", "--format", "{{json .}}"]
        if include_stopped:
            args.insert(1, "-a")
        result = self._run(args)

        containers = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparseable docker ps line: {line}")
                continue
            containers.append(
                ContainerSummary(
                    id=row.get("ID", ""),
                    name=row.get("Names", ""),
                    image=row.get("Image", ""),
                    state=row.get("State", ""),
                    status=row.get("Status", ""),
                    created=row.get("CreatedAt", ""),
                )
            )
        return containers

    def build_image(self, dockerfile: Union[str, Path], tag: str, context: Union[str, Path]) -> str:
        logger.info(f"Building image {tag}")
        try:
            result = self._run(
                ["build", "-f", str(dockerfile), "-t", tag, str(context)],
                check=False,
                timeout=1800,
            )
        except ContainerRuntimeError as e:
            raise ImageBuildError(f"Failed to build image {tag}: {e}") from e
        if result.returncode != 0:
            tail = "\n".join((result.stderr or "").strip().splitlines()[-20:])
            raise ImageBuildError(f"Failed to build image {tag}: {tail}")
        return tag
