"""Tests for the workspace bootstrap protocol."""

import shutil
import subprocess

import pytest

from constech_worker.core.workflow.bootstrap import (
    EXIT_CODES,
    MARKER,
    BootstrapContext,
    BootstrapStep,
    build_bootstrap_steps,
    find_failed_step,
    last_started_step,
    render_script,
    verify_workspace_step,
)

requires_shell = pytest.mark.skipif(
    shutil.which("bash") is None or shutil.which("git") is None,
    reason="bash and git are required",
)


def _context(**overrides) -> BootstrapContext:
    values = dict(
        owner="acme",
        repo="web",
        working_branch="staging",
        author_name="Worker Bot",
        author_email="bot@example.com",
        prompt="Do the work.",
    )
    values.update(overrides)
    return BootstrapContext(**values)


def test_step_order() -> None:
    """Test steps run in the bootstrap order."""
    names = [step.name for step in build_bootstrap_steps(_context())]
    assert names == [
        "verify-credentials",
        "create-workspace",
        "init-repository",
        "configure-credentials",
        "add-remote",
        "fetch-branch",
        "checkout-branch",
        "verify-workspace",
        "write-prompt",
        "run-agent",
    ]


def test_aux_tool_step_only_with_commands() -> None:
    steps = build_bootstrap_steps(_context(aux_init_commands=["echo hi"]))
    names = [step.name for step in steps]
    assert names.index("init-aux-tools") == names.index("verify-workspace") + 1
    assert steps[names.index("init-aux-tools")].commands == ["echo hi"]


def test_exit_codes_are_distinct() -> None:
    steps = build_bootstrap_steps(_context(aux_init_commands=["true"]))
    codes = [step.exit_code for step in steps if step.exit_code is not None]
    assert len(codes) == len(set(codes))
    assert steps[-1].exit_code is None


def test_fetches_only_working_branch() -> None:
    steps = {step.name: step for step in build_bootstrap_steps(_context(working_branch="develop"))}
    assert steps["fetch-branch"].commands == ["git fetch --quiet --depth 1 origin develop"]
    assert "origin/develop" in steps["checkout-branch"].commands[0]
    assert steps["add-remote"].commands == [
        "git remote add origin https://github.com/acme/web.git"
    ]


def test_values_are_quoted() -> None:
    """Test configured values cannot break out of their shell words."""
    steps = {
        step.name: step
        for step in build_bootstrap_steps(_context(author_name="Bot; rm -rf /"))
    }
    assert "git config user.name 'Bot; rm -rf /'" in steps["init-repository"].commands


def test_script_contains_no_token() -> None:
    script = render_script(build_bootstrap_steps(_context()))
    assert '"$BOT_APP_TOKEN"' in script
    assert "ghp_" not in script


def test_prompt_written_through_quoted_heredoc() -> None:
    prompt = "Use `backticks` and $VARS and 'quotes'"
    script = render_script(build_bootstrap_steps(_context(prompt=prompt)))
    assert prompt in script
    assert "<<'CONSTECH_PROMPT_" in script


def test_render_guarded_step() -> None:
    script = render_script([BootstrapStep("demo", ["true", "false"], 42)])
    assert script.startswith("#!/bin/bash\n\nset -o pipefail\n")
    assert f'echo "{MARKER} start demo" >&2' in script
    assert "true &&\nfalse" in script
    assert "exit 42" in script


def test_render_agent_step_propagates_status() -> None:
    script = render_script([BootstrapStep("run-agent", ["claude"])])
    assert 'exit "$STEP_STATUS"' in script


def test_find_failed_step() -> None:
    output = f"{MARKER} start fetch-branch\nfatal: couldn't find remote ref\n{MARKER} failed fetch-branch\n"
    assert find_failed_step(output) == "fetch-branch"
    assert last_started_step(output) == "fetch-branch"
    assert find_failed_step("all good") is None


@requires_shell
def test_rendered_script_exits_with_step_code(tmp_path) -> None:
    script = tmp_path / "script.sh"
    script.write_text(
        render_script(
            [
                BootstrapStep("first", ["true"], 30),
                BootstrapStep("second", ["echo partial", "false"], 31),
                BootstrapStep("third", ["true"], 32),
            ]
        )
    )
    result = subprocess.run(["bash", str(script)], capture_output=True, text=True)
    assert result.returncode == 31
    assert find_failed_step(result.stderr) == "second"
    assert f"{MARKER} start third" not in result.stderr


def _git_repo(path, branch: str) -> None:
    subprocess.run(["git", "init", "-q"], cwd=path, check=True)
    subprocess.run(["git", "symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=path, check=True)


def _run_verify(path, expected: str) -> subprocess.CompletedProcess:
    script = path / ".." / "verify.sh"
    script.write_text(render_script([verify_workspace_step(expected)]))
    return subprocess.run(["bash", str(script)], cwd=path, capture_output=True, text=True)


@requires_shell
def test_verify_workspace_passes_on_clean_expected_branch(tmp_path) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    _git_repo(repo, "staging")
    assert _run_verify(repo, "staging").returncode == 0


@requires_shell
def test_verify_workspace_rejects_wrong_branch(tmp_path) -> None:
    """Test the run aborts before the agent when the branch is wrong."""
    repo = tmp_path / "repo"
    repo.mkdir()
    _git_repo(repo, "main")
    result = _run_verify(repo, "staging")
    assert result.returncode == EXIT_CODES["verify-workspace"]
    assert "Expected branch staging, found main" in result.stderr


@requires_shell
def test_verify_workspace_rejects_pending_changes(tmp_path) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    _git_repo(repo, "staging")
    (repo / "stray.txt").write_text("x")
    result = _run_verify(repo, "staging")
    assert result.returncode == EXIT_CODES["verify-workspace"]
    assert find_failed_step(result.stderr) == "verify-workspace"
