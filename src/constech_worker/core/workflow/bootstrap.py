"""Workspace bootstrap protocol.

The isolated git workspace is built inside the execution environment by a
sequence of named steps. Each step is a short list of shell commands that
either all succeed or abort the whole bootstrap with the step's own exit
code. Steps announce themselves on stderr with ``::bootstrap::`` markers so
the caller can tell which one failed from the streamed output alone.

Secrets never appear in the rendered text: the bot credentials are read from
environment variables injected into the exec.
"""

import re
import secrets
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

MARKER = "::bootstrap::"

CREDENTIAL_FILE = "/home/worker/.claude/.claude.json"
CLAUDE_CONFIG_DIR = "/home/worker/.claude"
WORKSPACE_ROOT = "/tmp/worker-shared"
PROMPT_FILE = "/tmp/claude-prompt.txt"
GIT_CREDENTIALS_DIR = "/tmp/git-credentials"
GIT_GLOBAL_CONFIG = "/tmp/gitconfig"
AGENT_COMMAND = [
    "claude",
    "--print",
    "--permission-mode",
    "bypassPermissions",
    "--dangerously-skip-permissions",
]

EXIT_CODES = {
    "verify-credentials": 10,
    "create-workspace": 11,
    "init-repository": 12,
    "configure-credentials": 13,
    "add-remote": 14,
    "fetch-branch": 15,
    "checkout-branch": 16,
    "verify-workspace": 17,
    "init-aux-tools": 18,
    "write-prompt": 19,
}

_FAILED_PATTERN = re.compile(rf"{re.escape(MARKER)} failed (\S+)")
_STARTED_PATTERN = re.compile(rf"{re.escape(MARKER)} start (\S+)")


@dataclass(frozen=True)
class BootstrapStep:
    """One guarded step of the bootstrap.

    Attributes:
        name: Step name used in the progress markers
        commands: Shell commands chained with ``&&``
        exit_code: Exit status on failure; None propagates the last command's status
    """

    name: str
    commands: List[str]
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class BootstrapContext:
    owner: str
    repo: str
    working_branch: str
    author_name: str
    author_email: str
    prompt: str
    aux_init_commands: List[str] = field(default_factory=list)
    github_host: str = "github.com"
    credential_file: str = CREDENTIAL_FILE
    workspace_root: str = WORKSPACE_ROOT
    prompt_file: str = PROMPT_FILE


def _q(value: str) -> str:
    return shlex.quote(value)


def _heredoc(path: str, content: str) -> str:
    delimiter = f"CONSTECH_PROMPT_{secrets.token_hex(8)}"
    while delimiter in content:
        delimiter = f"CONSTECH_PROMPT_{secrets.token_hex(8)}"
    body = content if content.endswith("\n") else content + "\n"
    return f"cat > {_q(path)} <<'{delimiter}'\n{body}{delimiter}"


def build_bootstrap_steps(context: BootstrapContext) -> List[BootstrapStep]:
    """Return the ordered bootstrap steps for a run."""
    branch = _q(context.working_branch)
    remote_url = f"https://{context.github_host}/{context.owner}/{context.repo}.git"
    credentials_file = f"{GIT_CREDENTIALS_DIR}/.git-credentials"
    expected = context.working_branch

    steps = [
        BootstrapStep(
            "verify-credentials",
            [
                f"test -f {_q(context.credential_file)} "
                f"|| {{ echo 'Agent credentials not found at {context.credential_file}' >&2; false; }}"
            ],
            EXIT_CODES["verify-credentials"],
        ),
        BootstrapStep(
            "create-workspace",
            [
                f"mkdir -p {_q(context.workspace_root)}",
                f'WORK_DIR="$(mktemp -d {_q(context.workspace_root + "/workspace-XXXXXXXX")})"',
                'cd "$WORK_DIR"',
                'test -z "$(ls -A)"',
            ],
            EXIT_CODES["create-workspace"],
        ),
        BootstrapStep(
            "init-repository",
            [
                "git init -q",
                f"git config user.name {_q(context.author_name)}",
                f"git config user.email {_q(context.author_email)}",
            ],
            EXIT_CODES["init-repository"],
        ),
        BootstrapStep(
            "configure-credentials",
            [
                f"mkdir -p {GIT_CREDENTIALS_DIR}",
                f"chmod 700 {GIT_CREDENTIALS_DIR}",
                f"export GIT_CONFIG_GLOBAL={GIT_GLOBAL_CONFIG}",
                f"git config --global credential.helper 'store --file={credentials_file}'",
                f"printf 'https://%s:%s@%s\\n' \"${{BOT_USER:-x-access-token}}\" "
                f'"$BOT_APP_TOKEN" {_q(context.github_host)} > {credentials_file}',
                f"chmod 600 {credentials_file}",
            ],
            EXIT_CODES["configure-credentials"],
        ),
        BootstrapStep(
            "add-remote",
            [f"git remote add origin {_q(remote_url)}"],
            EXIT_CODES["add-remote"],
        ),
        BootstrapStep(
            "fetch-branch",
            [f"git fetch --quiet --depth 1 origin {branch}"],
            EXIT_CODES["fetch-branch"],
        ),
        BootstrapStep(
            "checkout-branch",
            [f"git checkout --quiet -B {branch} --track {_q('origin/' + expected)}"],
            EXIT_CODES["checkout-branch"],
        ),
        verify_workspace_step(expected),
    ]

    if context.aux_init_commands:
        steps.append(
            BootstrapStep(
                "init-aux-tools", list(context.aux_init_commands), EXIT_CODES["init-aux-tools"]
            )
        )

    agent = " ".join(_q(part) for part in AGENT_COMMAND)
    steps += [
        BootstrapStep(
            "write-prompt",
            [_heredoc(context.prompt_file, context.prompt)],
            EXIT_CODES["write-prompt"],
        ),
        BootstrapStep(
            "run-agent",
            [f"CLAUDE_CONFIG_DIR={CLAUDE_CONFIG_DIR} {agent} < {_q(context.prompt_file)}"],
        ),
    ]
    return steps


def verify_workspace_step(expected_branch: str) -> BootstrapStep:
    """Assert the workspace is on ``expected_branch`` with nothing pending."""
    quoted = _q(expected_branch)
    return BootstrapStep(
        "verify-workspace",
        [
            f'[ "$(git branch --show-current)" = {quoted} ] '
            f"|| {{ printf 'Expected branch %s, found %s\\n' {quoted} "
            '"$(git branch --show-current)" >&2; false; }',
            '[ -z "$(git status --porcelain)" ] '
            '|| { echo "Workspace is not clean:" >&2; git status --porcelain >&2; false; }',
        ],
        EXIT_CODES["verify-workspace"],
    )


def _render_step(step: BootstrapStep) -> str:
    body = " &&\n".join(step.commands)
    start = f'echo "{MARKER} start {step.name}" >&2'
    failed = f'echo "{MARKER} failed {step.name}" >&2'
    if step.exit_code is None:
        return (
            f"{start}\n"
            f"{{\n{body}\n}}\n"
            "STEP_STATUS=$?\n"
            f'if [ "$STEP_STATUS" -ne 0 ]; then\n  {failed}\nfi\n'
            'exit "$STEP_STATUS"'
        )
    return f"{start}\nif ! {{\n{body}\n}}; then\n  {failed}\n  exit {step.exit_code}\nfi"


def render_script(steps: Sequence[BootstrapStep]) -> str:
    """Render steps into a bash script, one guarded block per step."""
    blocks = ["#!/bin/bash", "set -o pipefail"]
    blocks += [_render_step(step) for step in steps]
    return "\n\n".join(blocks) + "\n"


def find_failed_step(output: str) -> Optional[str]:
    """Return the name of the step that reported failure, if any."""
    matches = _FAILED_PATTERN.findall(output)
    return matches[-1] if matches else None


def last_started_step(output: str) -> Optional[str]:
    """Return the name of the most recent step that announced its start."""
    matches = _STARTED_PATTERN.findall(output)
    return matches[-1] if matches else None
