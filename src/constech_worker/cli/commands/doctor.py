"""CLI command for system health checks."""

from typing import List

import typer

from constech_worker.core.config import ConfigManager
from constech_worker.core.doctor import HealthCheck, run_checks
from constech_worker.core.runtime import DockerCliRuntime

STATUS_LABELS = {
    "pass": ("PASS", typer.colors.GREEN),
    "warn": ("WARN", typer.colors.YELLOW),
    "fail": ("FAIL", typer.colors.RED),
}


def _print_check(check: HealthCheck, verbose: bool) -> None:
    label, color = STATUS_LABELS[check.status]
    typer.echo(f"  {typer.style(label, fg=color, bold=True)} {check.name}: {check.message}")
    if verbose and check.detail:
        typer.echo(f"       {check.detail}")


def _apply_fixes(checks: List[HealthCheck]) -> int:
    fixed = 0
    for check in checks:
        if check.status == "pass" or check.fix is None:
            continue
        typer.echo(f"  Fixing {check.name}...")
        try:
            check.fix()
        except Exception as e:
            typer.echo(f"  Failed to fix {check.name}: {e}", err=True)
            continue
        fixed += 1
    return fixed


def doctor(
    fix: bool = typer.Option(False, "--fix", help="Attempt to fix problems automatically"),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed diagnostics"),
):
    """Check that the system is ready for autonomous development.

    Example:
        constech-worker doctor
        constech-worker doctor --fix --verbose
    """
    typer.echo("Running system health checks...\n")
    checks = run_checks(ConfigManager(), DockerCliRuntime(), verbose=verbose)

    for check in checks:
        _print_check(check, verbose)

    passed = sum(1 for check in checks if check.status == "pass")
    warnings = sum(1 for check in checks if check.status == "warn")
    failed = sum(1 for check in checks if check.status == "fail")
    typer.echo(f"\nSummary: {passed} passed, {warnings} warnings, {failed} failed")

    if fix:
        fixed = _apply_fixes(checks)
        typer.echo(f"Applied {fixed} fix(es). Run doctor again to verify.")

    recommendations = [check for check in checks if check.status != "pass" and check.recommendation]
    if recommendations:
        typer.echo("\nRecommendations:")
        for check in recommendations:
            typer.echo(f"  - {check.name}: {check.recommendation}")

    if failed:
        typer.secho("\nSystem not ready for autonomous development", fg=typer.colors.RED)
        raise typer.Exit(1)
    if warnings:
        typer.secho("\nSystem ready with warnings", fg=typer.colors.YELLOW)
    else:
        typer.secho("\nSystem ready for autonomous development!", fg=typer.colors.GREEN)
