"""System health checks for the ``doctor`` command."""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Literal, Optional, Union

from constech_worker.core.config import BotSettings, ConfigManager
from constech_worker.core.errors import ConfigError, GitHubError, WorkerError
from constech_worker.core.github_client import GitHubClient
from constech_worker.core.instructions import InstructionParser, validate_structure
from constech_worker.core.runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)

CheckStatus = Literal["pass", "warn", "fail"]

MIN_PYTHON = (3, 10)


@dataclass
class HealthCheck:
    """Result of one health check.

    Attributes:
        name: Display name
        status: pass, warn or fail
        message: One-line result
        detail: Troubleshooting detail shown with --verbose
        recommendation: Suggested remedy for non-passing checks
        fix: Optional callable that repairs the problem (used by --fix)
    """

    name: str
    status: CheckStatus
    message: str
    detail: Optional[str] = None
    recommendation: Optional[str] = None
    fix: Optional[Callable[[], object]] = None


def _run(cmd: List[str], env: Optional[dict] = None) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, timeout=30, env=env)


def check_python_version() -> HealthCheck:
    version = ".".join(str(part) for part in sys.version_info[:3])
    if sys.version_info[:2] >= MIN_PYTHON:
        return HealthCheck("Python Version", "pass", version)
    required = ".".join(str(part) for part in MIN_PYTHON)
    return HealthCheck(
        "Python Version",
        "fail",
        f"{version} (requires >= {required})",
        recommendation=f"Install Python {required} or newer",
    )


def check_docker(runtime: ContainerRuntime) -> HealthCheck:
    if runtime.is_available():
        return HealthCheck("Docker", "pass", "Running")
    return HealthCheck(
        "Docker",
        "fail",
        "Not running or not installed",
        detail="Install Docker and ensure the daemon is running",
        recommendation="Install Docker from https://docs.docker.com/get-docker/",
    )


def check_github_cli() -> HealthCheck:
    try:
        _run(["gh", "--version"]).check_returncode()
    except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return HealthCheck(
            "GitHub CLI",
            "fail",
            "Not installed",
            detail="Install with: brew install gh && gh auth login",
            recommendation="Run: brew install gh && gh auth login",
        )

    result = _run(["gh", "api", "user", "--jq", ".login"])
    if result.returncode == 0 and result.stdout.strip():
        return HealthCheck("GitHub CLI", "pass", f"Authenticated as {result.stdout.strip()}")
    return HealthCheck(
        "GitHub CLI",
        "warn",
        "Installed but not authenticated",
        detail="Authenticate with: gh auth login",
        recommendation="Run: gh auth login",
    )


def check_agent_cli() -> HealthCheck:
    try:
        _run(["claude", "--version"]).check_returncode()
    except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return HealthCheck(
            "Claude Code",
            "fail",
            "Not installed",
            detail="Install with: npm install -g @anthropic-ai/claude-code && claude",
            recommendation="Run: npm install -g @anthropic-ai/claude-code && claude",
        )
    return HealthCheck("Claude Code", "pass", "Installed")


def check_configuration(manager: ConfigManager) -> HealthCheck:
    if not manager.exists():
        return HealthCheck(
            "Configuration",
            "warn",
            "No configuration found",
            recommendation="Run: constech-worker init",
            fix=manager.reset,
        )

    validation = manager.validate()
    if validation.valid:
        return HealthCheck("Configuration", "pass", "Valid configuration found")
    return HealthCheck(
        "Configuration",
        "fail",
        f"Invalid: {', '.join(validation.errors)}",
        recommendation="Run: constech-worker init",
    )


def check_git_repository(project_root: Path) -> HealthCheck:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--git-dir"], cwd=project_root, capture_output=True, timeout=30
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        result = None
    if result is None or result.returncode != 0:
        return HealthCheck("Git Repository", "fail", "Not in a git repository")

    remotes = subprocess.run(
        ["git", "remote", "-v"], cwd=project_root, capture_output=True, text=True, timeout=30
    )
    if remotes.returncode != 0 or not remotes.stdout.strip():
        return HealthCheck("Git Repository", "warn", "Git repo without remotes")
    if "github.com" in remotes.stdout:
        return HealthCheck("Git Repository", "pass", "Git repo with GitHub remote")
    return HealthCheck("Git Repository", "warn", "Git repo without GitHub remote")


def check_bot_token(
    bot: BotSettings,
    client_factory: Callable[[str], GitHubClient] = GitHubClient,
) -> HealthCheck:
    token_env_var = bot.token_env_var
    token = bot.resolve_token()
    recommendation = f"Set {token_env_var} environment variable with a valid GitHub token"
    if not token:
        return HealthCheck(
            "Bot Token",
            "fail",
            f"{token_env_var} not set",
            detail="Create a GitHub token with repo, project, and workflow scopes",
            recommendation=recommendation,
        )
    try:
        with client_factory(token) as client:
            login = client.get_current_user()["login"]
    except GitHubError as e:
        logger.debug(f"Bot token validation failed: {e}")
        return HealthCheck(
            "Bot Token", "fail", "Invalid or expired token", recommendation=recommendation
        )
    return HealthCheck("Bot Token", "pass", f"Valid token for {login}")


def check_reviewer(reviewer_env_var: str, default_reviewer: Optional[str]) -> HealthCheck:
    if reviewer_env_var and os.environ.get(reviewer_env_var):
        return HealthCheck("Reviewer", "pass", f"{reviewer_env_var} set")
    if default_reviewer:
        return HealthCheck("Reviewer", "pass", f"Default reviewer {default_reviewer}")
    return HealthCheck(
        "Reviewer",
        "warn",
        f"{reviewer_env_var or 'Reviewer variable'} not set and no default reviewer",
        recommendation="Pass --reviewer or run: constech-worker configure workflow.defaultReviewer <user>",
    )


def check_project_instructions(project_root: Path) -> HealthCheck:
    try:
        instructions = InstructionParser(project_root).read_instructions()
    except WorkerError as e:
        return HealthCheck(
            "Project Instructions",
            "fail",
            str(e),
            recommendation="Save CLAUDE.md as UTF-8 text",
        )
    if not instructions.full:
        return HealthCheck(
            "Project Instructions",
            "warn",
            "No CLAUDE.md found",
            recommendation="Add a CLAUDE.md describing project conventions",
        )
    report = validate_structure(instructions.full)
    if report.recommendations:
        return HealthCheck(
            "Project Instructions",
            "warn",
            f"{len(report.recommendations)} suggestions",
            detail="; ".join(report.recommendations),
        )
    return HealthCheck("Project Instructions", "pass", "CLAUDE.md looks complete")


def run_checks(
    manager: ConfigManager,
    runtime: ContainerRuntime,
    project_root: Optional[Union[str, Path]] = None,
    verbose: bool = False,
    client_factory: Callable[[str], GitHubClient] = GitHubClient,
) -> List[HealthCheck]:
    """Run every health check in display order."""
    root = Path(project_root) if project_root else Path.cwd()
    try:
        config = manager.load()
    except ConfigError:
        config = None

    bot = config.bot if config else BotSettings()
    checks = [
        check_python_version(),
        check_docker(runtime),
        check_github_cli(),
        check_agent_cli(),
        check_configuration(manager),
        check_git_repository(root),
        check_bot_token(bot, client_factory),
        check_reviewer(
            config.workflow.reviewer_env_var if config else "REVIEWER_USER",
            config.workflow.default_reviewer if config else None,
        ),
    ]
    if verbose:
        checks.append(check_project_instructions(root))
    return checks
