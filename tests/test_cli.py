"""Tests for CLI commands."""

import json
from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from constech_worker.cli.cli import app
from constech_worker.core.cleanup import CleanupRegistry
from constech_worker.core.config import CONFIG_FILENAME, DetectedSettings
from constech_worker.core.errors import ConfigError, ContainerRuntimeError
from constech_worker.core.models import WorkflowRunState
from constech_worker.core.runtime import ContainerSummary

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    """Keep dispatch from replacing the test process signal handlers."""
    monkeypatch.setattr(CleanupRegistry, "install_signal_handlers", lambda self, *args, **kwargs: None)


@pytest.fixture
def project_dir(tmp_path, monkeypatch):
    """Run commands from a temp directory holding a valid configuration."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_BOT_TOKEN", raising=False)
    monkeypatch.delenv("BOT_APP_TOKEN", raising=False)
    monkeypatch.delenv("REVIEWER_USER", raising=False)
    (tmp_path / CONFIG_FILENAME).write_text(
        json.dumps(
            {
                "project": {"owner": "acme", "name": "web", "workingBranch": "staging"},
                "bot": {"username": "worker-bot"},
                "workflow": {"qualityChecks": ["pnpm build"]},
            }
        )
    )
    return tmp_path


def _state(success: bool, **kwargs) -> WorkflowRunState:
    state = WorkflowRunState(**kwargs)
    state.finish(success, None if success else "boom")
    return state


def test_cli_help():
    """Test CLI help command."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "Constech Worker" in result.output
    for command in ("init", "dispatch", "doctor", "configure", "containers"):
        assert command in result.output


def test_cli_version():
    """Test version flag."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "Constech Worker version" in result.output


@pytest.mark.parametrize(
    "args",
    [
        [],
        ["--issue", "3", "--prompt", "x", "--create-issue"],
        ["--create-issue"],
        ["--prompt", "   "],
    ],
)
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_rejects_invalid_arguments(mock_engine, args, project_dir):
    result = runner.invoke(app, ["dispatch", *args])
    assert result.exit_code == 1
    assert "Error" in result.output
    mock_engine.assert_not_called()


@patch("constech_worker.cli.cli.setup_logger")
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_dry_run(mock_engine, mock_setup_logger, project_dir):
    """Test dry run prints the plan and never executes."""
    result = runner.invoke(
        app, ["dispatch", "--prompt", "Add dark mode", "--create-issue", "--dry-run"]
    )
    assert result.exit_code == 0
    assert "DRY RUN - NO CHANGES WILL BE MADE" in result.output
    assert "Project: acme/web" in result.output
    assert "Base branch: staging" in result.output
    assert "GITHUB_BOT_TOKEN (missing)" in result.output
    assert "1. Create GitHub issue from prompt" in result.output
    assert "Run quality checks: pnpm build" in result.output
    mock_engine.assert_not_called()


@patch("constech_worker.cli.cli.setup_logger")
def test_dispatch_dry_run_base_override(mock_setup_logger, project_dir):
    result = runner.invoke(app, ["dispatch", "-i", "42", "--base", "develop", "--dry-run"])
    assert result.exit_code == 0
    assert "Base branch: develop" in result.output
    assert "Fetch issue #42" in result.output


@patch("constech_worker.cli.cli.setup_logger")
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_requires_token(mock_engine, mock_setup_logger, project_dir):
    result = runner.invoke(app, ["dispatch", "--issue", "42"])
    assert result.exit_code == 1
    assert "Environment variable GITHUB_BOT_TOKEN is required" in result.output
    mock_engine.assert_not_called()


@patch("constech_worker.cli.cli.setup_logger")
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_invalid_configuration(mock_engine, mock_setup_logger, project_dir):
    (project_dir / CONFIG_FILENAME).write_text(json.dumps({"project": {}}))
    result = runner.invoke(app, ["dispatch", "--issue", "42"])
    assert result.exit_code == 1
    assert "Configuration validation failed" in result.output
    assert "project.owner" in result.output
    mock_engine.assert_not_called()


@patch("constech_worker.cli.cli.setup_logger")
def test_dispatch_unreadable_configuration(mock_setup_logger, project_dir):
    (project_dir / CONFIG_FILENAME).write_text("{not json")
    result = runner.invoke(app, ["dispatch", "--issue", "42"])
    assert result.exit_code == 1
    assert "Run: constech-worker init" in result.output


@patch("constech_worker.cli.cli.setup_logger")
@patch("constech_worker.cli.cli.DockerCliRuntime")
@patch("constech_worker.cli.cli.GitHubClient")
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_success(mock_engine, mock_github, mock_runtime, mock_setup_logger, project_dir, monkeypatch):
    """Test a successful run exits 0 and passes options through."""
    monkeypatch.setenv("GITHUB_BOT_TOKEN", "ghp_test")
    mock_engine.return_value.execute.return_value = _state(
        True, issue_number=77, issue_created=True
    )

    result = runner.invoke(
        app,
        ["dispatch", "--prompt", "Add dark mode", "--create-issue", "--reviewer", "alice"],
    )

    assert result.exit_code == 0
    assert "SUCCESS" in result.output
    assert "Created GitHub issue #77" in result.output
    mock_github.assert_called_once_with("ghp_test")
    options = mock_engine.call_args.args[1]
    assert options.bot_token == "ghp_test"
    assert options.reviewer == "alice"
    request = mock_engine.return_value.execute.call_args.args[0]
    assert request.prompt == "Add dark mode"
    assert request.create_issue


@patch("constech_worker.cli.cli.setup_logger")
@patch("constech_worker.cli.cli.DockerCliRuntime")
@patch("constech_worker.cli.cli.GitHubClient")
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_failure(mock_engine, mock_github, mock_runtime, mock_setup_logger, project_dir, monkeypatch):
    monkeypatch.setenv("GITHUB_BOT_TOKEN", "ghp_test")
    mock_engine.return_value.execute.return_value = _state(False, issue_number=42)

    result = runner.invoke(app, ["dispatch", "--issue", "42"])

    assert result.exit_code == 1
    assert "TROUBLESHOOTING" in result.output
    assert "constech-worker doctor" in result.output


@patch("constech_worker.cli.cli.setup_logger")
@patch("constech_worker.cli.cli.DockerCliRuntime")
@patch("constech_worker.cli.cli.GitHubClient")
@patch("constech_worker.cli.cli.WorkflowEngine")
def test_dispatch_uses_fallback_token(mock_engine, mock_github, mock_runtime, mock_setup_logger, project_dir, monkeypatch):
    monkeypatch.setenv("BOT_APP_TOKEN", "ghp_fallback")
    mock_engine.return_value.execute.return_value = _state(True, issue_number=42)

    result = runner.invoke(app, ["dispatch", "--issue", "42"])

    assert result.exit_code == 0
    mock_github.assert_called_once_with("ghp_fallback")


@patch("constech_worker.cli.cli.ProjectDetector")
def test_init_writes_configuration(mock_detector, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITHUB_BOT_TOKEN", "ghp_test")
    mock_detector.return_value.detect.return_value = DetectedSettings(
        owner="acme",
        name="web",
        default_branch="main",
        working_branch="staging",
        bot_username="worker-bot",
    )

    result = runner.invoke(app, ["init"])

    assert result.exit_code == 0
    assert "Configuration created successfully!" in result.output
    assert "Project: acme/web" in result.output
    mock_detector.return_value.detect.assert_called_once_with("ghp_test")
    document = json.loads((tmp_path / CONFIG_FILENAME).read_text())
    assert document["project"]["owner"] == "acme"
    assert document["bot"]["username"] == "worker-bot"


@patch("constech_worker.cli.cli.ProjectDetector")
def test_init_keeps_existing_configuration(mock_detector, project_dir):
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    assert "Configuration already exists" in result.output
    mock_detector.assert_not_called()


@patch("constech_worker.cli.cli.ProjectDetector")
def test_init_detection_failure(mock_detector, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_BOT_TOKEN", raising=False)
    monkeypatch.delenv("BOT_APP_TOKEN", raising=False)
    mock_detector.return_value.detect.side_effect = ConfigError("Could not detect repository")

    result = runner.invoke(app, ["init"])

    assert result.exit_code == 1
    assert "Could not detect repository" in result.output
    assert "No GITHUB_BOT_TOKEN found" in result.output
    assert not (tmp_path / CONFIG_FILENAME).exists()


def test_configure_get(project_dir):
    result = runner.invoke(app, ["configure", "project.owner"])
    assert result.exit_code == 0
    assert 'project.owner: "acme"' in result.output


def test_configure_get_unknown_key(project_dir):
    result = runner.invoke(app, ["configure", "project.nope"])
    assert result.exit_code == 1
    assert "Configuration key 'project.nope' not found" in result.output


def test_configure_set_values(project_dir):
    """Test values are parsed before being stored."""
    result = runner.invoke(app, ["configure", "workflow.qualityChecks", '["npm test"]'])
    assert result.exit_code == 0
    assert 'Set workflow.qualityChecks = ["npm test"]' in result.output

    result = runner.invoke(app, ["configure", "docker.mcpServers.semgrep", "true"])
    assert result.exit_code == 0

    result = runner.invoke(app, ["configure", "github.projectId", "null"])
    assert result.exit_code == 0

    document = json.loads((project_dir / CONFIG_FILENAME).read_text())
    assert document["workflow"]["qualityChecks"] == ["npm test"]
    assert document["docker"]["mcpServers"]["semgrep"] is True
    assert document["github"]["projectId"] is None


def test_configure_set_invalid_value(project_dir):
    result = runner.invoke(app, ["configure", "workflow.executionTimeoutSeconds", "0"])
    assert result.exit_code == 1
    assert "Invalid value for workflow.executionTimeoutSeconds" in result.output


def test_configure_set_unknown_key(project_dir):
    before = (project_dir / CONFIG_FILENAME).read_text()
    result = runner.invoke(app, ["configure", "project.ownr", "other"])
    assert result.exit_code == 1
    assert "Unknown configuration key: project.ownr" in result.output
    assert (project_dir / CONFIG_FILENAME).read_text() == before


def test_configure_list(project_dir):
    result = runner.invoke(app, ["configure", "--list"])
    assert result.exit_code == 0
    assert "project:" in result.output
    assert 'owner: "acme"' in result.output
    assert "mcpServers:" in result.output


def test_configure_validate(project_dir):
    result = runner.invoke(app, ["configure", "--validate"])
    assert result.exit_code == 0
    assert "Configuration is valid" in result.output

    (project_dir / CONFIG_FILENAME).write_text(json.dumps({"project": {"owner": "acme"}}))
    result = runner.invoke(app, ["configure", "--validate"])
    assert result.exit_code == 1
    assert "project.name" in result.output


def test_configure_reset(project_dir):
    result = runner.invoke(app, ["configure", "--reset"])
    assert result.exit_code == 0
    document = json.loads((project_dir / CONFIG_FILENAME).read_text())
    assert document["project"]["owner"] is None


def test_configure_usage(project_dir):
    result = runner.invoke(app, ["configure"])
    assert result.exit_code == 0
    assert "Configuration Management" in result.output


def _summary(container_id: str, state: str) -> ContainerSummary:
    return ContainerSummary(
        id=container_id,
        name=f"constech-worker-web-{container_id}",
        image="node:20",
        state=state,
        status="Up 2 minutes" if state == "running" else "Exited (0)",
        created="2026-10-18 10:00:00",
    )


@patch("constech_worker.cli.commands.containers.DockerCliRuntime")
def test_containers_list_empty(mock_runtime):
    mock_runtime.return_value.list_managed.return_value = []
    result = runner.invoke(app, ["containers"])
    assert result.exit_code == 0
    assert "No constech-worker containers found" in result.output
    mock_runtime.return_value.list_managed.assert_called_once_with(include_stopped=False)


@patch("constech_worker.cli.commands.containers.DockerCliRuntime")
def test_containers_list_all(mock_runtime):
    mock_runtime.return_value.list_managed.return_value = [
        _summary("aaaaaaaaaaaaaaaa", "running"),
        _summary("bbbbbbbbbbbbbbbb", "exited"),
    ]
    result = runner.invoke(app, ["containers", "--all"])
    assert result.exit_code == 0
    assert "Found 2 container(s)" in result.output
    assert "Container: aaaaaaaaaaaa" in result.output
    assert "constech-worker containers --clean" in result.output


@patch("constech_worker.cli.commands.containers.DockerCliRuntime")
def test_containers_clean_skips_running(mock_runtime):
    runtime = mock_runtime.return_value
    runtime.list_managed.return_value = [
        _summary("aaaaaaaaaaaaaaaa", "running"),
        _summary("bbbbbbbbbbbbbbbb", "exited"),
    ]

    result = runner.invoke(app, ["containers", "--clean"])

    assert result.exit_code == 0
    assert "Skipping running container" in result.output
    assert "Cleaned: 1" in result.output
    assert "Skipped: 1" in result.output
    runtime.remove.assert_called_once_with("bbbbbbbbbbbbbbbb", force=True)
    runtime.stop.assert_not_called()


@patch("constech_worker.cli.commands.containers.DockerCliRuntime")
def test_containers_clean_force(mock_runtime):
    runtime = mock_runtime.return_value
    runtime.list_managed.return_value = [_summary("aaaaaaaaaaaaaaaa", "running")]

    result = runner.invoke(app, ["containers", "--clean", "--force"])

    assert result.exit_code == 0
    runtime.stop.assert_called_once_with("aaaaaaaaaaaaaaaa", timeout=5)
    runtime.remove.assert_called_once_with("aaaaaaaaaaaaaaaa", force=True)


@patch("constech_worker.cli.commands.containers.DockerCliRuntime")
def test_containers_clean_failure(mock_runtime):
    runtime = mock_runtime.return_value
    runtime.list_managed.return_value = [_summary("bbbbbbbbbbbbbbbb", "exited")]
    runtime.remove.side_effect = ContainerRuntimeError("permission denied")

    result = runner.invoke(app, ["containers", "--clean"])

    assert result.exit_code == 1
    assert "Failed: 1" in result.output


@patch("constech_worker.cli.commands.containers.DockerCliRuntime")
def test_containers_docker_unavailable(mock_runtime):
    mock_runtime.return_value.list_managed.side_effect = ContainerRuntimeError(
        "Docker CLI not found: docker"
    )
    result = runner.invoke(app, ["containers"])
    assert result.exit_code == 1
    assert "Failed to manage containers" in result.output


@patch("constech_worker.cli.commands.doctor.run_checks")
def test_doctor_all_pass(mock_run_checks, tmp_path, monkeypatch):
    from constech_worker.core.doctor import HealthCheck

    monkeypatch.chdir(tmp_path)
    mock_run_checks.return_value = [
        HealthCheck("Docker", "pass", "Running"),
        HealthCheck("Bot Token", "pass", "Valid token for worker-bot"),
    ]
    result = runner.invoke(app, ["doctor"])
    assert result.exit_code == 0
    assert "Summary: 2 passed, 0 warnings, 0 failed" in result.output
    assert "System ready for autonomous development!" in result.output


@patch("constech_worker.cli.commands.doctor.run_checks")
def test_doctor_failure_exit_code(mock_run_checks, tmp_path, monkeypatch):
    from constech_worker.core.doctor import HealthCheck

    monkeypatch.chdir(tmp_path)
    mock_run_checks.return_value = [
        HealthCheck("Docker", "fail", "Not running or not installed", recommendation="Install Docker"),
        HealthCheck("Reviewer", "warn", "REVIEWER_USER not set"),
    ]
    result = runner.invoke(app, ["doctor"])
    assert result.exit_code == 1
    assert "Summary: 0 passed, 1 warnings, 1 failed" in result.output
    assert "Install Docker" in result.output
    assert "System not ready for autonomous development" in result.output


@patch("constech_worker.cli.commands.doctor.run_checks")
def test_doctor_fix_runs_fixes(mock_run_checks, tmp_path, monkeypatch):
    from constech_worker.core.doctor import HealthCheck

    monkeypatch.chdir(tmp_path)
    fix = Mock()
    mock_run_checks.return_value = [
        HealthCheck("Configuration", "warn", "No configuration found", fix=fix),
    ]
    result = runner.invoke(app, ["doctor", "--fix"])
    assert result.exit_code == 0
    fix.assert_called_once_with()
    assert "System ready with warnings" in result.output
