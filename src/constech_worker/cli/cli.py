"""Constech Worker CLI - autonomous development from GitHub issues."""

import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console

from constech_worker import __version__
from constech_worker.cli.commands.configure import configure
from constech_worker.cli.commands.containers import containers
from constech_worker.cli.commands.doctor import doctor
from constech_worker.core.cleanup import CleanupRegistry
from constech_worker.core.config import BotSettings, ConfigManager, WorkerConfig
from constech_worker.core.errors import ConfigError, WorkerError, WorkflowRequestError
from constech_worker.core.github_client import GitHubClient
from constech_worker.core.models import WorkflowOptions, WorkflowRequest
from constech_worker.core.project_detector import ProjectDetector
from constech_worker.core.runtime import DockerCliRuntime
from constech_worker.core.utils import make_run_id, setup_logger
from constech_worker.core.workflow import WorkflowEngine

# Load environment variables
load_dotenv()

app = typer.Typer(
    invoke_without_command=True,
    no_args_is_help=True,
    help="Constech Worker - autonomous development in isolated containers",
)

app.command("doctor")(doctor)
app.command("configure")(configure)
app.command("containers")(containers)

TROUBLESHOOTING = (
    "Check system health: constech-worker doctor",
    "Verify GitHub permissions and project access",
    "Ensure Claude Code is authenticated and working",
    "Check Docker is running and accessible",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"Constech Worker version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Constech Worker - autonomous development in isolated containers."""
    pass


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing configuration"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Configuration file to write (default: ./.constech-worker.json)"
    ),
):
    """Detect project settings and write the configuration file.

    Example:
        constech-worker init
        constech-worker init --force
    """
    manager = ConfigManager(config_path)
    if manager.exists() and not force:
        typer.echo("Configuration already exists. Use --force to overwrite.")
        return

    typer.echo("Detecting project settings...")
    bot_token = BotSettings().resolve_token()
    if not bot_token:
        typer.echo("Warning: No GITHUB_BOT_TOKEN found in environment", err=True)
        typer.echo("You can set this later or run again with the token configured")

    try:
        detected = ProjectDetector().detect(bot_token)
        config = manager.merge(detected)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo("\nTroubleshooting:")
        typer.echo("  - Make sure you are in a git repository with a GitHub remote")
        typer.echo("  - Verify GITHUB_BOT_TOKEN is set and valid")
        typer.echo("  - Check network connectivity to GitHub")
        raise typer.Exit(1)

    typer.secho("Configuration created successfully!", fg=typer.colors.GREEN)
    typer.echo(f"\nProject: {config.project.slug}")
    typer.echo(f"Branches: {config.project.default_branch} -> {config.project.working_branch}")
    if config.bot.username:
        typer.echo(f"Bot: {config.bot.username}")
    if config.github.project_id:
        typer.echo("GitHub Project: Detected")
    typer.echo(f"Config file: {manager.path}")

    typer.echo("\nNext steps:")
    typer.echo("  1. Review configuration: constech-worker configure --list")
    if not bot_token:
        typer.echo("  2. Set bot token: export GITHUB_BOT_TOKEN=ghp_...")
    typer.echo("  3. Check system health: constech-worker doctor")
    typer.echo("  4. Start working: constech-worker dispatch --issue 42")


def describe_scenario(request: WorkflowRequest) -> str:
    """Human readable name of the dispatch scenario."""
    if request.issue_number is not None and request.prompt:
        return "Combined (Issue + Custom context)"
    if request.issue_number is not None:
        return "Issue-based development"
    if request.create_issue:
        return "Create issue + Development"
    return "Prompt-only development"


def show_dry_run(
    config: WorkerConfig,
    request: WorkflowRequest,
    reviewer: Optional[str],
    base: Optional[str],
) -> None:
    """Print what a dispatch would do without touching GitHub or Docker."""
    base_branch = base or config.project.working_branch
    token_state = "set" if config.bot.resolve_token() else "missing"
    reviewer = (
        reviewer
        or os.environ.get(config.workflow.reviewer_env_var)
        or config.workflow.default_reviewer
    )

    typer.secho("DRY RUN - NO CHANGES WILL BE MADE", fg=typer.colors.YELLOW, bold=True)
    typer.echo("\nConfiguration:")
    typer.echo(f"  Project: {config.project.slug}")
    typer.echo(f"  Base branch: {base_branch}")
    typer.echo(f"  Bot token: {config.bot.token_env_var} ({token_state})")
    if reviewer:
        typer.echo(f"  Reviewer: {reviewer}")

    steps = []
    if request.create_issue:
        steps.append("Create GitHub issue from prompt")
    if request.issue_number is not None:
        steps.append(f"Fetch issue #{request.issue_number}")
    steps.extend(
        [
            f"Create feature branch from {base_branch}",
            "Execute Claude Code in isolated container",
            f"Run quality checks: {', '.join(config.workflow.quality_checks) or 'none'}",
            "Create pull request with bot authentication",
            'Update project status to "In Review"',
        ]
    )
    typer.echo("\nWorkflow steps:")
    for number, step in enumerate(steps, start=1):
        typer.echo(f"  {number}. {step}")
    typer.echo("\nRun without --dry-run to execute the workflow")


@app.command()
def dispatch(
    issue: Optional[int] = typer.Option(None, "--issue", "-i", help="Existing issue number"),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Task description"),
    create_issue: bool = typer.Option(
        False, "--create-issue", help="Create a GitHub issue from the prompt first"
    ),
    reviewer: Optional[str] = typer.Option(None, "--reviewer", help="Pull request reviewer"),
    base: Optional[str] = typer.Option(None, "--base", help="Base branch (default: working branch)"),
    force: bool = typer.Option(False, "--force", help="Proceed despite configuration errors"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without executing"),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output to the console"),
):
    """Run the autonomous development workflow for an issue or prompt.

    Example:
        constech-worker dispatch --issue 42
        constech-worker dispatch --prompt "Add dark mode toggle" --create-issue
    """
    try:
        request = WorkflowRequest.build(issue, prompt, create_issue)
    except WorkflowRequestError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    run_id = make_run_id()
    logger = setup_logger(run_id, verbose=verbose)

    manager = ConfigManager()
    try:
        config = manager.load()
    except ConfigError as e:
        typer.echo(f"Error: Failed to load configuration: {e}", err=True)
        typer.echo("Run: constech-worker init", err=True)
        raise typer.Exit(1)

    validation = manager.validate()
    if not validation.valid and not force:
        typer.echo("Error: Configuration validation failed:", err=True)
        for error in validation.errors:
            typer.echo(f"  - {error}", err=True)
        typer.echo("Fix configuration or use --force to proceed anyway", err=True)
        raise typer.Exit(1)

    if dry_run:
        show_dry_run(config, request, reviewer, base)
        return

    bot_token = config.bot.resolve_token()
    if not bot_token:
        typer.echo(
            f"Error: Environment variable {config.bot.token_env_var} is required", err=True
        )
        raise typer.Exit(1)

    logger.info(f"Workflow: {describe_scenario(request)}")
    if request.issue_number is not None:
        logger.info(f"Target: Issue #{request.issue_number}")
    if request.prompt:
        logger.info(f'Prompt: "{request.prompt}"')

    registry = CleanupRegistry()
    registry.install_signal_handlers()
    options = WorkflowOptions(bot_token=bot_token, reviewer=reviewer, base_branch=base)

    try:
        with GitHubClient(bot_token) as github:
            engine = WorkflowEngine(
                config,
                options,
                github=github,
                runtime=DockerCliRuntime(),
                registry=registry,
                console=Console(stderr=True),
            )
            state = engine.execute(request)
    except WorkerError as e:
        logger.error(f"Execution failed: {e}")
        state = None

    if state is None or not state.success:
        typer.secho("\nTROUBLESHOOTING", fg=typer.colors.RED, bold=True, err=True)
        for hint in TROUBLESHOOTING:
            typer.echo(f"  - {hint}", err=True)
        raise typer.Exit(1)

    typer.secho("\nSUCCESS", fg=typer.colors.GREEN, bold=True)
    typer.echo("Autonomous development workflow completed")
    typer.echo("Check your GitHub repository for:")
    typer.echo("  - New feature branch")
    typer.echo("  - Pull request with proper reviewers")
    typer.echo("  - Updated project status")
    if state.issue_created:
        typer.echo(f"  - Created GitHub issue #{state.issue_number}")


if __name__ == "__main__":
    app()
