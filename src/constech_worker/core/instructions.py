"""Project instruction handling and agent prompt synthesis.

Projects keep agent guidance in ``CLAUDE.md`` at the repository root. Parts
of that file that only make sense to a human operator are wrapped in
``<!-- CONSTECH-WORKER-START -->`` / ``<!-- CONSTECH-WORKER-END -->`` and are
removed before the text is handed to the agent inside the environment.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from constech_worker.core.errors import WorkerError
from constech_worker.core.models import WorkflowKind

logger = logging.getLogger(__name__)

INSTRUCTIONS_FILENAME = "CLAUDE.md"

START_MARKER = "<!-- CONSTECH-WORKER-START -->"
END_MARKER = "<!-- CONSTECH-WORKER-END -->"

_OPERATOR_SECTION = re.compile(
    r"<!--\s*CONSTECH-WORKER-START\s*-->[\s\S]*?<!--\s*CONSTECH-WORKER-END\s*-->"
)
_START_PATTERN = re.compile(r"<!--\s*CONSTECH-WORKER-START\s*-->")
_BLANK_RUN = re.compile(r"\n\s*\n\s*\n")

TASK_FRAMING = """I am the autonomous development worker. I need to complete the full development workflow as specified above.

Please:
1. Start by reading CLAUDE.md to understand the workflow
2. Follow the exact steps for the workflow type
3. Execute each step completely without asking for confirmation
4. Use the bot authentication patterns for GitHub operations
5. Complete the entire workflow from start to PR creation

Begin now."""


@dataclass(frozen=True)
class ProjectInstructions:
    full: str
    filtered: str
    has_operator_sections: bool


@dataclass(frozen=True)
class PromptContext:
    """Inputs of :func:`build_system_prompt`."""

    kind: WorkflowKind
    working_branch: str
    quality_checks: List[str]
    filtered_instructions: str = ""
    issue_number: Optional[int] = None
    prompt: Optional[str] = None
    reviewer_env_var: Optional[str] = None
    default_reviewer: Optional[str] = None
    project_id: Optional[str] = None
    status_field_id: Optional[str] = None
    in_review_status_id: Optional[str] = None


@dataclass(frozen=True)
class StructureReport:
    recommendations: List[str] = field(default_factory=list)
    has_operator_sections: bool = False


def filter_operator_sections(content: str) -> str:
    """Remove operator-only sections and collapse runs of blank lines.

    Only matched start/end pairs are removed; a lone marker is left in place.
    """
    filtered = _OPERATOR_SECTION.sub("", content)
    return _BLANK_RUN.sub("\n\n", filtered).strip()


def _reviewer_instruction(reviewer_env_var: Optional[str], default_reviewer: Optional[str]) -> str:
    if reviewer_env_var:
        instruction = f"Get reviewer from {reviewer_env_var} env var"
        if default_reviewer:
            instruction += f" or use default: {default_reviewer}"
        return instruction
    if default_reviewer:
        return f"Use configured reviewer: {default_reviewer}"
    return "Get reviewer from configuration"


def build_system_prompt(context: PromptContext) -> str:
    """Render the agent's system instructions followed by the project context.

    The function performs no I/O; identical contexts always produce identical text.
    """
    branch = context.working_branch
    checks = ", ".join(context.quality_checks)
    reviewer = _reviewer_instruction(context.reviewer_env_var, context.default_reviewer)

    lines = [
        "You are an autonomous development worker. Follow the complete workflow autonomously.",
        "",
        f"IMPORTANT: You are starting on a clean, up-to-date {branch} branch. "
        "Verify with `git branch` and `git status`.",
        "",
        "WORKFLOW STEPS:",
        "",
    ]

    if context.kind == "issue":
        lines += [
            f"1. Work on GitHub issue #{context.issue_number}",
            f"2. Create feature branch from {branch} "
            f"(git checkout -b feat/{context.issue_number}-description)",
            "3. Implement the solution following project conventions below",
            f"4. Run quality checks ({checks})",
            "5. Use /review for code review",
            f"6. Create PR using bot authentication with BASE BRANCH: {branch}",
            f"   - {reviewer}",
            "   - Use --assignee and --reviewer flags in gh pr create (--reviewer requests review)",
            "   - Include proper PR body with issue reference",
            "7. Add PR to configured GitHub Project (MANDATORY)",
            '8. Set PR project status to "In review" (MANDATORY)',
            '9. Set issue status to "In review" (MANDATORY)',
        ]
        if context.prompt:
            lines += ["", f"ADDITIONAL CONTEXT: {context.prompt}"]
    else:
        lines += [
            f"1. Task: {context.prompt}",
            f"2. Create feature branch from {branch} "
            "(git checkout -b feat/prompt-based-description)",
            "3. Implement the solution following project conventions below",
            f"4. Run quality checks ({checks})",
            "5. Use /review for code review",
            f"6. Create PR using bot authentication with BASE BRANCH: {branch}",
            f"   - {reviewer}",
            "   - Use --assignee and --reviewer flags in gh pr create (--reviewer requests review)",
            "   - Include proper PR body with task description",
        ]

    lines += [
        "",
        f"CRITICAL: When creating PR, use --base {branch}. All PRs target {branch} branch.",
    ]

    project_context = context.filtered_instructions.strip()
    sections = ["\n".join(lines), ""]
    sections.append(
        "PROJECT CONTEXT & CONVENTIONS:" + (f"\n\n{project_context}" if project_context else "")
    )

    if context.project_id or context.status_field_id or context.in_review_status_id:
        board = ["", "GITHUB PROJECT CONFIGURATION:"]
        if context.project_id:
            board.append(f"- Project ID: {context.project_id}")
        if context.status_field_id:
            board.append(f"- Status Field ID: {context.status_field_id}")
        if context.in_review_status_id:
            board.append(f'- Status: "In review" = {context.in_review_status_id}')
        sections.append("\n".join(board))

    sections += ["", "Complete the entire workflow autonomously without asking for confirmation."]
    return "\n".join(sections)


def compose_agent_prompt(system_prompt: str) -> str:
    """Append the task framing the agent receives after its instructions."""
    return f"{system_prompt}\n\n{TASK_FRAMING}"


def validate_structure(content: str) -> StructureReport:
    """Suggest improvements to a project's instruction file."""
    recommendations = []
    has_sections = bool(_START_PATTERN.search(content))

    has_github_workflow = re.search(
        r"git checkout|gh pr create|GitHub\s+CLI|pull request", content, re.IGNORECASE
    )
    has_branch_steps = re.search(r"git checkout -b|feature branch|branch.*from", content, re.IGNORECASE)
    has_pr_steps = re.search(r"pr create|pull request.*create|create.*pr", content, re.IGNORECASE)

    if has_github_workflow and not has_sections:
        recommendations.append(
            "Consider wrapping GitHub workflow instructions with operator markers "
            "so they are hidden from the worker"
        )
        recommendations.append(f"Add {START_MARKER} and {END_MARKER} around workflow sections")
    if has_branch_steps and not has_sections:
        recommendations.append(
            "Branch creation instructions detected - these are handled automatically by Constech Worker"
        )
    if has_pr_steps and not has_sections:
        recommendations.append(
            "PR creation instructions detected - these are handled automatically by Constech Worker"
        )

    if not re.search(r"code style|convention|pattern|architecture", content, re.IGNORECASE):
        recommendations.append("Consider adding code style and convention guidelines")
    if not re.search(r"framework|library|typescript|react|vue|angular|python", content, re.IGNORECASE):
        recommendations.append("Consider documenting framework and technology stack information")
    if not re.search(r"test|spec|jest|vitest|cypress|pytest", content, re.IGNORECASE):
        recommendations.append("Consider adding testing guidelines and strategies")

    return StructureReport(recommendations=recommendations, has_operator_sections=has_sections)


class InstructionParser:
    """Reads the project's instruction file."""

    def __init__(self, project_root: Optional[Union[str, Path]] = None) -> None:
        self.project_root = Path(project_root) if project_root else Path.cwd()

    @property
    def path(self) -> Path:
        return self.project_root / INSTRUCTIONS_FILENAME

    def read_instructions(self) -> ProjectInstructions:
        """Read the instruction file, returning empty text when it is absent.

        Raises:
            WorkerError: If the file exists but cannot be read
        """
        try:
            full = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No %s found in project", INSTRUCTIONS_FILENAME)
            return ProjectInstructions(full="", filtered="", has_operator_sections=False)
        except (OSError, UnicodeDecodeError) as e:
            raise WorkerError(f"Failed to read {INSTRUCTIONS_FILENAME}: {e}") from e

        filtered = filter_operator_sections(full)
        has_sections = bool(_OPERATOR_SECTION.search(full))
        logger.debug("%s found at: %s", INSTRUCTIONS_FILENAME, self.path)
        if has_sections:
            logger.debug("Operator-only sections will be filtered for the environment")
        return ProjectInstructions(full=full, filtered=filtered, has_operator_sections=has_sections)
