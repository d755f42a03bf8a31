"""End-of-run summary rendering."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule

from constech_worker.core.models import WorkflowRunState

PROMPT_PREVIEW_LENGTH = 100


def _task_line(state: WorkflowRunState) -> Optional[str]:
    if state.issue_number is not None:
        created = " (created)" if state.issue_created else ""
        if state.issue_title:
            return f'Issue #{state.issue_number}: "{state.issue_title}"{created}'
        return f"Issue #{state.issue_number}{created}"
    if state.prompt:
        prompt = state.prompt
        if len(prompt) > PROMPT_PREVIEW_LENGTH:
            prompt = prompt[:PROMPT_PREVIEW_LENGTH] + "..."
        return f'Custom Task: "{prompt}"'
    return None


def render_summary(state: WorkflowRunState, console: Optional[Console] = None) -> None:
    """Print the "Autonomous Development Summary" for a finished run."""
    console = console or Console()
    console.print()
    console.print(Rule("Autonomous Development Summary", style="cyan"))

    if not state.success:
        console.print(f"[red]Workflow failed: {escape(state.error or 'Unknown error')}[/red]")
        if state.failed_step:
            console.print(f"   • Failed step: {escape(state.failed_step)}")
        if state.container_id:
            console.print(f"   • Container: {state.container_id[:12]}")
        console.print(Rule(style="cyan"))
        return

    task = _task_line(state)
    if task:
        console.print("[bold yellow]Task:[/bold yellow]")
        console.print(f"   • {escape(task)}")

    console.print("\n[bold blue]Execution:[/bold blue]")
    console.print(f"   • Duration: {round(state.duration_seconds)}s")
    console.print(f"   • Container: {(state.container_id or 'unknown')[:12]}")
    if state.reviewer:
        console.print(f"   • Reviewer: {escape(state.reviewer)}")

    artifacts = state.artifacts
    console.print("\n[bold green]Results:[/bold green]")
    console.print("   • Status: Completed Successfully")
    if artifacts.branch_name:
        console.print(f"   • Branch: {escape(artifacts.branch_name)}")
    if artifacts.commit_hash:
        console.print(f"   • Commit: {artifacts.commit_hash[:8]}")
    if artifacts.pr_number is not None:
        console.print(f"   • Pull Request: #{artifacts.pr_number}")
    if artifacts.pr_url:
        console.print(f"   • PR URL: {artifacts.pr_url}")

    if artifacts.quality_checks:
        console.print("\n[bold magenta]Quality Checks:[/bold magenta]")
        for command, passed in artifacts.quality_checks.items():
            mark = "[green]passed[/green]" if passed else "[red]failed[/red]"
            console.print(f"   • {escape(command)}: {mark}")

    console.print(
        "\n[dim]Autonomous development workflow completed in an isolated container[/dim]"
    )
    console.print(Rule(style="cyan"))
