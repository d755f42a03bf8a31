"""Tests for configuration management."""

import json

import pytest
from pydantic import ValidationError

from constech_worker.core.config import (
    CONFIG_FILENAME,
    ConfigManager,
    DetectedSettings,
    WorkerConfig,
    WorkflowSettings,
)
from constech_worker.core.errors import ConfigError


def _write(path, document) -> None:
    path.write_text(json.dumps(document))


def test_defaults() -> None:
    config = WorkerConfig()
    assert config.project.owner is None
    assert config.project.working_branch == "staging"
    assert config.bot.token_env_var == "GITHUB_BOT_TOKEN"
    assert config.workflow.quality_checks == ["pnpm typecheck", "pnpm check", "pnpm build"]
    assert config.workflow.execution_timeout_seconds == 3600
    assert config.docker.mcp_servers.github is True


def test_document_uses_camel_case() -> None:
    document = WorkerConfig().to_document()
    assert document["project"]["workingBranch"] == "staging"
    assert document["docker"]["mcpServers"] == {"github": True, "semgrep": False, "ref": False}


def test_quality_checks_strip_blanks() -> None:
    settings = WorkflowSettings(quality_checks=[" pnpm test ", "", "  "])
    assert settings.quality_checks == ["pnpm test"]


def test_invalid_package_manager() -> None:
    with pytest.raises(ValidationError):
        WorkflowSettings(package_manager="pip")


def test_bot_token_falls_back_to_bot_app_token(monkeypatch) -> None:
    config = WorkerConfig()
    monkeypatch.delenv("GITHUB_BOT_TOKEN", raising=False)
    monkeypatch.setenv("BOT_APP_TOKEN", "fallback")
    assert config.bot.resolve_token() == "fallback"
    monkeypatch.setenv("GITHUB_BOT_TOKEN", "primary")
    assert config.bot.resolve_token() == "primary"


def test_load_defaults_when_missing(tmp_path) -> None:
    manager = ConfigManager(search_dir=tmp_path)
    assert not manager.exists()
    assert manager.path == tmp_path / CONFIG_FILENAME
    assert manager.load() == WorkerConfig()


def test_load_from_search_place(tmp_path) -> None:
    _write(tmp_path / ".constech-workerrc", {"project": {"owner": "acme", "name": "web"}})
    manager = ConfigManager(search_dir=tmp_path)
    assert manager.path == tmp_path / ".constech-workerrc"
    assert manager.load().project.slug == "acme/web"


def test_load_invalid_json(tmp_path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("{not json")
    with pytest.raises(ConfigError):
        ConfigManager(search_dir=tmp_path).load()


def test_load_schema_error(tmp_path) -> None:
    _write(tmp_path / CONFIG_FILENAME, {"workflow": {"executionTimeoutSeconds": 0}})
    with pytest.raises(ConfigError, match="executionTimeoutSeconds"):
        ConfigManager(search_dir=tmp_path).load()


def test_validate_reports_unresolved_fields(tmp_path) -> None:
    """Test a default configuration is not valid until owner and name are set."""
    manager = ConfigManager(search_dir=tmp_path)
    manager.reset()
    validation = manager.validate()
    assert not validation.valid
    assert any(error.startswith("project.owner") for error in validation.errors)
    assert any(error.startswith("project.name") for error in validation.errors)


def test_validate_complete(tmp_path) -> None:
    _write(tmp_path / CONFIG_FILENAME, {"project": {"owner": "acme", "name": "web"}})
    assert ConfigManager(search_dir=tmp_path).validate().valid


def test_get_and_set(tmp_path) -> None:
    manager = ConfigManager(search_dir=tmp_path)
    manager.set("project.owner", "acme")
    manager.set("workflow.default_reviewer", "alice")

    assert manager.get("project.owner") == "acme"
    assert manager.get("workflow.defaultReviewer") == "alice"
    stored = json.loads((tmp_path / CONFIG_FILENAME).read_text())
    assert stored["workflow"]["defaultReviewer"] == "alice"


def test_get_unknown_key(tmp_path) -> None:
    with pytest.raises(KeyError):
        ConfigManager(search_dir=tmp_path).get("project.nope")


def test_set_invalid_value_not_saved(tmp_path) -> None:
    manager = ConfigManager(search_dir=tmp_path)
    with pytest.raises(ConfigError):
        manager.set("workflow.packageManager", "pip")
    assert not manager.exists()


def test_set_null_clears_value(tmp_path) -> None:
    manager = ConfigManager(search_dir=tmp_path)
    manager.set("github.projectId", "PVT_1")
    manager.set("github.projectId", None)
    assert manager.get("github.projectId") is None


@pytest.mark.parametrize(
    "key", ["project.ownr", "projekt.owner", "project.owner.login", "docker.mcpServers"]
)
def test_set_unknown_key_not_saved(tmp_path, key) -> None:
    manager = ConfigManager(search_dir=tmp_path)
    with pytest.raises(ConfigError, match="Unknown configuration key"):
        manager.set(key, "acme")
    assert not manager.exists()


def test_merge_overlays_only_detected_values(tmp_path) -> None:
    """Test undetected values never overwrite configured ones."""
    _write(
        tmp_path / CONFIG_FILENAME,
        {"project": {"owner": "old", "workingBranch": "develop"}, "bot": {"username": "keep"}},
    )
    manager = ConfigManager(search_dir=tmp_path)
    config = manager.merge(
        DetectedSettings(
            owner="acme",
            name="web",
            project_id="PVT_1",
            status_field_id="PVTSSF_1",
            status_options={"inProgress": "opt2"},
        )
    )

    assert config.project.slug == "acme/web"
    assert config.project.working_branch == "develop"
    assert config.bot.username == "keep"
    assert config.github.board_configured
    assert config.github.status_option("inProgress") == "opt2"
    assert config.github.status_option("done") is None
    assert ConfigManager(search_dir=tmp_path).load() == config


def test_explicit_config_path(tmp_path) -> None:
    path = tmp_path / "custom.json"
    manager = ConfigManager(config_path=path)
    manager.reset()
    assert path.exists()
