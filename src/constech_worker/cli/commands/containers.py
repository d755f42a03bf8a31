"""CLI command for listing and cleaning up managed containers."""

from typing import List

import typer

from constech_worker.core.errors import ContainerRuntimeError
from constech_worker.core.runtime import ContainerRuntime, ContainerSummary, DockerCliRuntime

STOP_TIMEOUT_SECONDS = 5

STATE_COLORS = {
    "running": typer.colors.GREEN,
    "exited": typer.colors.YELLOW,
}


def list_containers(runtime: ContainerRuntime, show_all: bool) -> None:
    """Print managed containers with cleanup suggestions."""
    typer.echo("Constech Worker Containers\n")
    found: List[ContainerSummary] = runtime.list_managed(include_stopped=show_all)
    if not found:
        typer.secho("No constech-worker containers found", fg=typer.colors.GREEN)
        return

    typer.echo(f"Found {len(found)} container(s):\n")
    for container in found:
        color = STATE_COLORS.get(container.state, typer.colors.RED)
        typer.echo(f"Container: {container.id[:12]}")
        typer.echo(f"  Name: {container.name or 'unnamed'}")
        typer.echo(f"  Status: {typer.style(container.state, fg=color)} ({container.status})")
        typer.echo(f"  Image: {container.image}")
        if container.created:
            typer.echo(f"  Created: {container.created}")
        typer.echo()

    if any(not container.running for container in found):
        typer.echo("Cleanup suggestions:")
        typer.echo("  - Remove stopped containers: constech-worker containers --clean")
        typer.echo(
            "  - Force remove all (including running): constech-worker containers --clean --force"
        )


def clean_containers(runtime: ContainerRuntime, force: bool) -> int:
    """Remove managed containers, skipping running ones unless forced.

    Returns:
        Number of containers that could not be removed
    """
    typer.echo("Cleaning up orphaned constech-worker containers\n")
    found = runtime.list_managed(include_stopped=True)
    if not found:
        typer.secho("No containers to clean up", fg=typer.colors.GREEN)
        return 0

    typer.echo(f"Found {len(found)} container(s) to clean up:\n")
    cleaned = 0
    failed = 0
    skipped = 0
    for container in found:
        short_id = container.id[:12]
        typer.echo(f"Processing: {container.name or 'unnamed'} ({short_id}) - {container.state}")
        if container.running and not force:
            typer.echo("  Skipping running container (use --force to remove)")
            skipped += 1
            continue
        try:
            if container.running:
                typer.echo("  Stopping container...")
                runtime.stop(container.id, timeout=STOP_TIMEOUT_SECONDS)
            typer.echo("  Removing container...")
            runtime.remove(container.id, force=True)
        except ContainerRuntimeError as e:
            typer.echo(f"  Failed to remove: {e}", err=True)
            failed += 1
            continue
        typer.echo("  Removed successfully")
        cleaned += 1

    typer.echo("\nCleanup Summary:")
    typer.echo(f"  Cleaned: {cleaned}")
    if skipped:
        typer.echo(f"  Skipped: {skipped}")
    if failed:
        typer.echo(f"  Failed: {failed}")
    return failed


def containers(
    show_all: bool = typer.Option(False, "--all", help="Include stopped containers"),
    clean: bool = typer.Option(False, "--clean", help="Remove managed containers"),
    force: bool = typer.Option(False, "--force", help="Also stop and remove running containers"),
):
    """List or clean up containers created by dispatch runs.

    Example:
        constech-worker containers --all
        constech-worker containers --clean --force
    """
    runtime = DockerCliRuntime()
    try:
        if clean:
            if clean_containers(runtime, force):
                raise typer.Exit(1)
        else:
            list_containers(runtime, show_all)
    except ContainerRuntimeError as e:
        typer.echo(f"Error: Failed to manage containers: {e}", err=True)
        raise typer.Exit(1)
