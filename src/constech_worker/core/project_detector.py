"""Detection of project settings from the local repository and GitHub."""

import logging
import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from constech_worker.core.config import DetectedSettings
from constech_worker.core.errors import ConfigError, GitHubError
from constech_worker.core.github_client import GitHubClient

logger = logging.getLogger(__name__)

_REMOTE_PATTERN = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")

# Normalized board option names to configuration keys.
STATUS_KEYS = {
    "backlog": "backlog",
    "todo": "ready",
    "ready": "ready",
    "inprogress": "inProgress",
    "inreview": "inReview",
    "done": "done",
}

ClientFactory = Callable[[str], GitHubClient]


def parse_remote_url(url: str) -> Optional[Tuple[str, str]]:
    """Return (owner, name) for a GitHub remote URL, or None."""
    match = _REMOTE_PATTERN.search(url.strip())
    if not match:
        return None
    return match.group(1), match.group(2)


def map_status_options(options: Dict[str, str]) -> Dict[str, str]:
    """Map normalized board option names onto configuration status keys."""
    mapped: Dict[str, str] = {}
    for name, option_id in options.items():
        key = STATUS_KEYS.get(name)
        if key and key not in mapped:
            mapped[key] = option_id
    return mapped


class ProjectDetector:
    """Detects repository coordinates, branches and the project board."""

    def __init__(
        self,
        project_root: Optional[Union[str, Path]] = None,
        client_factory: ClientFactory = GitHubClient,
    ) -> None:
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.client_factory = client_factory

    def _git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.project_root,
            capture_output=True,
            text=True,
            timeout=30,
        )
        if result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode, ["git", *args], result.stdout, result.stderr
            )
        return result.stdout.strip()

    def _branches(self) -> List[str]:
        output = self._git("branch", "-a", "--format=%(refname:short)")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def detect_repository(self) -> DetectedSettings:
        """Detect owner, name and branches from the git checkout.

        Raises:
            ConfigError: If this is not a git repository with a GitHub origin
        """
        try:
            remote = self._git("remote", "get-url", "origin")
        except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug(f"git remote lookup failed: {e}")
            raise ConfigError(
                "Could not detect repository. Make sure you are in a git repository "
                "with a GitHub remote."
            ) from e

        parsed = parse_remote_url(remote)
        if parsed is None:
            raise ConfigError(f"Not a GitHub repository: {remote}")
        owner, name = parsed

        default_branch = None
        working_branch = None
        try:
            default_branch = self._git("branch", "--show-current") or None
            branches = self._branches()
            if "staging" in branches or "origin/staging" in branches:
                working_branch = "staging"
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Branch detection failed: {e}")

        return DetectedSettings(
            owner=owner,
            name=name,
            default_branch=default_branch or "main",
            working_branch=working_branch,
        )

    def detect(self, bot_token: Optional[str] = None) -> DetectedSettings:
        """Detect everything available; GitHub lookups need ``bot_token``."""
        detected = self.detect_repository()
        logger.debug(f"Detected repository: {detected.owner}/{detected.name}")
        if not bot_token:
            return detected

        owner, name = detected.owner, detected.name
        if not owner or not name:
            return detected
        updates: Dict[str, object] = {}
        try:
            with self.client_factory(bot_token) as client:
                updates["bot_username"] = client.get_current_user()["login"]
                logger.debug(f"Detected bot username: {updates['bot_username']}")

                for board in client.discover_projects(owner, name):
                    if board.status_field_id:
                        updates["project_id"] = board.id
                        updates["status_field_id"] = board.status_field_id
                        updates["status_options"] = map_status_options(board.status_options)
                        logger.debug(f"Detected GitHub project: {board.title} ({board.id})")
                        break
                else:
                    logger.debug("No GitHub project with Status field found")
        except GitHubError as e:
            logger.warning(f"Failed to detect GitHub settings: {e}")

        return detected.model_copy(update=updates)
