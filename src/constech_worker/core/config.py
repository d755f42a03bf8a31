"""Typed configuration for Constech Worker.

The configuration file (``.constech-worker.json`` by default) is stored with
camelCase keys and validated through pydantic models. Values that have not
been resolved yet (for example the repository owner before ``init`` runs)
are ``None`` rather than placeholder strings; detection results travel in a
separate :class:`DetectedSettings` model and are merged explicitly.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from constech_worker.core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".constech-worker.json"
SEARCH_PLACES = (
    ".constech-worker.json",
    ".constech-workerrc",
    ".constech-workerrc.json",
)

StatusName = Literal["backlog", "ready", "inProgress", "inReview", "done"]


class _Settings(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class ProjectSettings(_Settings):
    """Repository identity and branch layout."""

    owner: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = Field(default=None, min_length=1)
    default_branch: str = Field(default="main", min_length=1)
    working_branch: str = Field(default="staging", min_length=1)

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"


class StatusOptions(_Settings):
    """Option IDs of the project board's single-select status field."""

    backlog: Optional[str] = None
    ready: Optional[str] = None
    in_progress: Optional[str] = None
    in_review: Optional[str] = None
    done: Optional[str] = None


class GitHubBoardSettings(_Settings):
    """GitHub project (v2) board identifiers."""

    project_id: Optional[str] = None
    status_field_id: Optional[str] = None
    status_options: StatusOptions = Field(default_factory=StatusOptions)

    @property
    def board_configured(self) -> bool:
        return bool(self.project_id and self.status_field_id)

    def status_option(self, status: StatusName) -> Optional[str]:
        """Return the option ID for a named board status, if configured."""
        mapping = {
            "backlog": self.status_options.backlog,
            "ready": self.status_options.ready,
            "inProgress": self.status_options.in_progress,
            "inReview": self.status_options.in_review,
            "done": self.status_options.done,
        }
        return mapping[status]


class BotSettings(_Settings):
    """Bot account used for every GitHub write."""

    token_env_var: str = Field(default="GITHUB_BOT_TOKEN", min_length=1)
    username: Optional[str] = None

    def resolve_token(self) -> Optional[str]:
        """Read the token from its configured variable, falling back to BOT_APP_TOKEN."""
        return os.environ.get(self.token_env_var) or os.environ.get("BOT_APP_TOKEN")


class AuxToolToggles(_Settings):
    """Auxiliary tool (MCP server) toggles."""

    github: bool = True
    semgrep: bool = False
    ref: bool = False


class DockerSettings(_Settings):
    """Execution image settings."""

    dev_container_path: str = ".devcontainer"
    custom_image: Optional[str] = None
    node_version: str = "20"
    mcp_servers: AuxToolToggles = Field(default_factory=AuxToolToggles)


class WorkflowSettings(_Settings):
    """Agent workflow settings."""

    quality_checks: List[str] = Field(
        default_factory=lambda: ["pnpm typecheck", "pnpm check", "pnpm build"]
    )
    package_manager: Literal["npm", "yarn", "pnpm"] = "pnpm"
    reviewer_env_var: str = "REVIEWER_USER"
    default_reviewer: Optional[str] = None
    execution_timeout_seconds: int = Field(default=3600, gt=0)

    @field_validator("quality_checks")
    @classmethod
    def strip_quality_checks(cls, v: List[str]) -> List[str]:
        """Drop blank quality check commands."""
        return [check.strip() for check in v if check.strip()]


class GitSettings(_Settings):
    """Author identity for commits made inside the environment."""

    author_name: str = Field(default="constech-worker", min_length=1)
    author_email: str = Field(default="constech-worker@users.noreply.github.com", min_length=3)


class WorkerConfig(_Settings):
    """Complete Constech Worker configuration."""

    project: ProjectSettings = Field(default_factory=ProjectSettings)
    github: GitHubBoardSettings = Field(default_factory=GitHubBoardSettings)
    bot: BotSettings = Field(default_factory=BotSettings)
    docker: DockerSettings = Field(default_factory=DockerSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    git: GitSettings = Field(default_factory=GitSettings)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the camelCase document stored on disk."""
        return self.model_dump(by_alias=True, mode="json")


class DetectedSettings(BaseModel):
    """Settings discovered from the local repository and GitHub.

    Every field is optional: ``None`` means "not detected" and never
    overwrites a configured value during a merge.
    """

    owner: Optional[str] = None
    name: Optional[str] = None
    default_branch: Optional[str] = None
    working_branch: Optional[str] = None
    bot_username: Optional[str] = None
    project_id: Optional[str] = None
    status_field_id: Optional[str] = None
    status_options: Dict[str, str] = Field(default_factory=dict)

    def as_overlay(self) -> Dict[str, Any]:
        """Return a nested camelCase document containing only detected values."""
        overlay: Dict[str, Any] = {}
        project = {
            "owner": self.owner,
            "name": self.name,
            "defaultBranch": self.default_branch,
            "workingBranch": self.working_branch,
        }
        overlay["project"] = {k: v for k, v in project.items() if v is not None}
        if self.bot_username is not None:
            overlay["bot"] = {"username": self.bot_username}
        github: Dict[str, Any] = {}
        if self.project_id is not None:
            github["projectId"] = self.project_id
        if self.status_field_id is not None:
            github["statusFieldId"] = self.status_field_id
        if self.status_options:
            github["statusOptions"] = dict(self.status_options)
        if github:
            overlay["github"] = github
        return overlay


class ConfigValidation(BaseModel):
    """Result of validating the stored configuration."""

    valid: bool
    errors: List[str] = Field(default_factory=list)


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict):
            existing = result.get(key)
            result[key] = _deep_merge(existing if isinstance(existing, dict) else {}, value)
        else:
            result[key] = value
    return result


def _normalize_key(segment: str) -> str:
    # Accept snake_case segments on the command line; the file uses camelCase.
    return to_camel(segment) if "_" in segment else segment


def _format_validation_error(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}")
    return messages


class ConfigManager:
    """Load, validate and persist the configuration file."""

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        search_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self._explicit_path = Path(config_path) if config_path else None
        self._search_dir = Path(search_dir) if search_dir else Path.cwd()
        self._config: Optional[WorkerConfig] = None

    @property
    def path(self) -> Path:
        """Path the configuration is read from and written to."""
        if self._explicit_path is not None:
            return self._explicit_path
        found = self._find()
        return found if found is not None else self._search_dir / CONFIG_FILENAME

    def _find(self) -> Optional[Path]:
        for name in SEARCH_PLACES:
            candidate = self._search_dir / name
            if candidate.is_file():
                return candidate
        return None

    def exists(self) -> bool:
        """Check if a configuration file exists."""
        return self.path.is_file()

    def _read_document(self) -> Optional[Dict[str, Any]]:
        path = self.path
        if not path.is_file():
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid configuration in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration {path}: {e}") from e
        if not isinstance(document, dict):
            raise ConfigError(f"Invalid configuration in {path}: expected a JSON object")
        return document

    def load(self) -> WorkerConfig:
        """Load configuration from file, or defaults when none exists.

        Raises:
            ConfigError: If the file cannot be parsed or fails schema validation
        """
        if self._config is not None:
            return self._config

        document = self._read_document()
        if document is None:
            logger.debug("No configuration found, using defaults")
            self._config = WorkerConfig()
            return self._config

        try:
            self._config = WorkerConfig.model_validate(document)
        except ValidationError as e:
            raise ConfigError(
                "Invalid configuration: " + "; ".join(_format_validation_error(e))
            ) from e
        logger.debug("Loaded config from: %s", self.path)
        return self._config

    def save(self, config: WorkerConfig) -> None:
        """Write configuration to disk."""
        path = self.path
        try:
            path.write_text(json.dumps(config.to_document(), indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to save configuration: {e}") from e
        self._config = config
        logger.info("Configuration saved to: %s", path)

    def get(self, key: str) -> Any:
        """Get a configuration value by dot-notation path.

        Raises:
            KeyError: If the key does not exist
        """
        value: Any = self.load().to_document()
        for segment in key.split("."):
            segment = _normalize_key(segment)
            if not isinstance(value, dict) or segment not in value:
                raise KeyError(key)
            value = value[segment]
        return value

    def set(self, key: str, value: Any) -> WorkerConfig:
        """Set a configuration value by dot-notation path and save.

        Raises:
            ConfigError: If the key is unknown or the resulting configuration is invalid
        """
        document = self.load().to_document()
        segments = [_normalize_key(segment) for segment in key.split(".")]
        current = document
        for segment in segments[:-1]:
            if not isinstance(current.get(segment), dict):
                raise ConfigError(f"Unknown configuration key: {key}")
            current = current[segment]
        if segments[-1] not in current or isinstance(current[segments[-1]], dict):
            raise ConfigError(f"Unknown configuration key: {key}")
        current[segments[-1]] = value

        try:
            updated = WorkerConfig.model_validate(document)
        except ValidationError as e:
            raise ConfigError(
                f"Invalid value for {key}: " + "; ".join(_format_validation_error(e))
            ) from e
        self.save(updated)
        return updated

    def validate(self) -> ConfigValidation:
        """Validate the stored configuration, including unresolved required fields."""
        try:
            document = self._read_document()
        except ConfigError as e:
            return ConfigValidation(valid=False, errors=[str(e)])

        try:
            config = WorkerConfig.model_validate(document or {})
        except ValidationError as e:
            return ConfigValidation(valid=False, errors=_format_validation_error(e))

        errors = []
        if not config.project.owner:
            errors.append("project.owner: not configured (run init or configure project.owner)")
        if not config.project.name:
            errors.append("project.name: not configured (run init or configure project.name)")
        return ConfigValidation(valid=not errors, errors=errors)

    def reset(self) -> WorkerConfig:
        """Overwrite the configuration file with defaults."""
        config = WorkerConfig()
        self.save(config)
        logger.info("Created default configuration file")
        return config

    def merge(self, detected: DetectedSettings) -> WorkerConfig:
        """Overlay detected values onto the stored (or default) configuration and save."""
        current = self.load() if self.exists() else WorkerConfig()
        merged = _deep_merge(current.to_document(), detected.as_overlay())
        try:
            config = WorkerConfig.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(
                "Detected settings are invalid: " + "; ".join(_format_validation_error(e))
            ) from e
        self.save(config)
        return config
