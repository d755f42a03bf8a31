"""Resolution of the image the execution environment runs.

Precedence: a custom image from configuration, then an image built from the
project's dev container definition, then a generated default image with the
agent CLI and enabled auxiliary tools baked in.
"""

import logging
import re
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Union

from constech_worker.core.aux_tools import AuxToolManager
from constech_worker.core.config import WorkerConfig
from constech_worker.core.errors import ImageBuildError
from constech_worker.core.runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TAG = "constech-worker-default:latest"
DEVCONTAINER_CLI = ["npx", "--yes", "@devcontainers/cli", "build"]

_IMAGE_NAME_PATTERN = re.compile(r'"imageName":\["([^"]+)"\]')

DOCKERFILE_TEMPLATE = """FROM node:{node_version}

RUN apt-get update && apt-get install -y --no-install-recommends \\
  git gh jq curl ca-certificates \\
  && apt-get clean && rm -rf /var/lib/apt/lists/*

RUN useradd -m worker

ENV NPM_CONFIG_PREFIX=/usr/local/share/npm-global
ENV PATH=/usr/local/share/npm-global/bin:$PATH
RUN mkdir -p /usr/local/share/npm-global && chown -R worker /usr/local/share/npm-global

RUN npm install -g @anthropic-ai/claude-code
{aux_commands}
RUN git config --system user.name {author_name}
RUN git config --system user.email {author_email}

WORKDIR /workspace
USER worker

CMD ["sleep", "infinity"]
"""


def parse_devcontainer_image(output: str) -> Optional[str]:
    """Extract the image name reported by the dev container CLI."""
    for line in output.splitlines():
        if '"imageName"' in line:
            match = _IMAGE_NAME_PATTERN.search(line)
            if match:
                return match.group(1)
    return None


class ImageResolver:
    """Produces an image reference for the execution environment."""

    def __init__(
        self,
        config: WorkerConfig,
        runtime: ContainerRuntime,
        aux_tools: Optional[AuxToolManager] = None,
        project_root: Optional[Union[str, Path]] = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.aux_tools = aux_tools or AuxToolManager(config)
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self._temp_dirs: List[Path] = []

    def resolve(self) -> str:
        """Return the image reference to run.

        Raises:
            ImageBuildError: If the image cannot be built
        """
        if self.config.docker.custom_image:
            logger.debug(f"Using custom image: {self.config.docker.custom_image}")
            return self.config.docker.custom_image

        devcontainer_dir = self.project_root / self.config.docker.dev_container_path
        if devcontainer_dir.exists():
            return self.build_devcontainer()
        return self.build_default_image()

    def build_devcontainer(self) -> str:
        """Build the project's dev container and return the generated image name."""
        definition = self.project_root / self.config.docker.dev_container_path / "devcontainer.json"
        if not definition.is_file():
            logger.warning(f"devcontainer.json not found at: {definition}")

        cmd = [*DEVCONTAINER_CLI, "--workspace-folder", str(self.project_root)]
        logger.debug(f"Building dev container: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=self.project_root,
                capture_output=True,
                text=True,
                timeout=1800,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise ImageBuildError(f"Failed to build dev container: {e}") from e

        if result.returncode != 0:
            tail = "\n".join(result.stderr.strip().splitlines()[-20:])
            raise ImageBuildError(f"Failed to build dev container: {tail}")

        image = parse_devcontainer_image(result.stdout)
        if image is None:
            image = f"vsc-{self.config.project.name}-{int(time.time() * 1000)}"
            logger.warning(f"Dev container CLI did not report an image name, using {image}")
        logger.info(f"Development container ready: {image}")
        return image

    def render_dockerfile(self) -> str:
        aux_commands = "\n".join(self.aux_tools.image_build_commands())
        return DOCKERFILE_TEMPLATE.format(
            node_version=self.config.docker.node_version,
            aux_commands=aux_commands,
            author_name=_quote_arg(self.config.git.author_name),
            author_email=_quote_arg(self.config.git.author_email),
        )

    def build_default_image(self) -> str:
        temp_dir = Path(tempfile.mkdtemp(prefix="constech-docker-"))
        self._temp_dirs.append(temp_dir)
        dockerfile = temp_dir / "Dockerfile"
        dockerfile.write_text(self.render_dockerfile(), encoding="utf-8")
        logger.debug(f"Generated Dockerfile at: {dockerfile}")
        return self.runtime.build_image(dockerfile, DEFAULT_IMAGE_TAG, temp_dir)

    def cleanup(self) -> None:
        """Remove temporary build directories."""
        while self._temp_dirs:
            temp_dir = self._temp_dirs.pop()
            shutil.rmtree(temp_dir, ignore_errors=True)
            logger.debug(f"Removed temp build directory: {temp_dir}")


def _quote_arg(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
