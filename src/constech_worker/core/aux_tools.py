"""Auxiliary tool (MCP server) integration for the execution environment.

Every derivation here is pure and driven by ``docker.mcpServers`` in the
configuration. With no tool enabled each one returns an empty result and
callers skip the related step quietly.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from constech_worker.core.config import WorkerConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "mcp-config.json"
CONTAINER_CONFIG_PATH = "/tmp/mcp-config.json"
NPM_GLOBAL_MODULES = "/usr/local/share/npm-global/lib/node_modules"


@dataclass(frozen=True)
class AuxTool:
    """Registry entry describing one auxiliary tool."""

    name: str
    package: str
    secrets: List[str] = field(default_factory=list)

    @property
    def entrypoint(self) -> str:
        return f"{NPM_GLOBAL_MODULES}/{self.package}/dist/index.js"


TOOL_REGISTRY: Dict[str, AuxTool] = {
    "github": AuxTool("github", "@modelcontextprotocol/server-github", secrets=["GITHUB_TOKEN"]),
    "semgrep": AuxTool("semgrep", "@modelcontextprotocol/server-semgrep"),
    "ref": AuxTool("ref", "@modelcontextprotocol/server-ref"),
}


class AuxToolManager:
    """Projects enabled auxiliary tools into environment settings."""

    def __init__(self, config: WorkerConfig) -> None:
        self.config = config

    def enabled_tools(self) -> List[str]:
        """Return enabled tool names in registry order."""
        toggles = self.config.docker.mcp_servers
        return [name for name in TOOL_REGISTRY if getattr(toggles, name)]

    def _tools(self) -> List[AuxTool]:
        return [TOOL_REGISTRY[name] for name in self.enabled_tools()]

    def secret_environment(self, bot_token: str) -> Dict[str, str]:
        """Return the extra secret variables the enabled tools need."""
        env: Dict[str, str] = {}
        for tool in self._tools():
            for secret in tool.secrets:
                # Every tool secret is currently the bot token under another name.
                env[secret] = bot_token
        return env

    def image_build_commands(self) -> List[str]:
        """Return Dockerfile instructions installing the enabled tools."""
        packages = [tool.package for tool in self._tools()]
        if not packages:
            return []
        return [f"RUN npm install -g {' '.join(packages)}"]

    def init_commands(self) -> List[str]:
        """Return shell commands preparing the tools inside the environment.

        Missing tool packages only produce a warning on stderr.
        """
        tools = self._tools()
        if not tools:
            return []

        commands = [
            'echo "Initializing MCP servers..." >&2',
            f'cp {CONTAINER_CONFIG_PATH} "$HOME/.claude/config.json" 2>/dev/null || true',
        ]
        for tool in tools:
            commands.append(
                f"node -e \"require('{tool.package}')\" 2>/dev/null "
                f'|| echo "Warning: {tool.name} MCP server not found" >&2'
            )
        return commands

    def config_document(self) -> Dict[str, Any]:
        """Return the tool launch configuration read by the agent."""
        servers: Dict[str, Any] = {}
        for tool in self._tools():
            servers[tool.name] = {
                "command": "node",
                "args": [tool.entrypoint],
                "env": {secret: "${" + secret + "}" for secret in tool.secrets},
            }
        if not servers:
            return {}
        return {"mcpServers": servers}

    def write_config(self, directory: Union[str, Path]) -> Optional[Path]:
        """Write the configuration document into ``directory``.

        Returns:
            Path of the written file, or None when no tool is enabled
        """
        document = self.config_document()
        if not document:
            logger.debug("No MCP servers enabled, skipping MCP configuration")
            return None

        path = Path(directory) / CONFIG_FILENAME
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.debug(
            "MCP configuration for %s written to: %s", ", ".join(self.enabled_tools()), path
        )
        return path
