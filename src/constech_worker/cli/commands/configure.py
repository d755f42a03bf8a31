"""CLI command for reading and editing the configuration file."""

import json
from typing import Any, Dict, Optional

import typer

from constech_worker.core.config import ConfigManager
from constech_worker.core.errors import ConfigError

USAGE = """Configuration Management

Usage:
  constech-worker configure --list                    # List all settings
  constech-worker configure --validate                # Validate configuration
  constech-worker configure --reset                   # Reset to defaults
  constech-worker configure project.owner             # Get value
  constech-worker configure project.owner MyOrg       # Set value
  constech-worker configure github.projectId null     # Clear value"""


def parse_value(raw: str) -> Any:
    """Parse a command-line value into null, bool, number, JSON or string."""
    if raw == "null":
        return None
    if raw == "true":
        return True
    if raw == "false":
        return False
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        pass
    if raw.startswith(("[", "{")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            pass
    return raw


def format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "[" + ", ".join(f'"{item}"' for item in value) + "]"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def _print_section(values: Dict[str, Any], indent: str = "  ") -> None:
    for key, value in values.items():
        if isinstance(value, dict):
            typer.echo(f"{indent}{key}:")
            _print_section(value, indent + "  ")
        else:
            typer.echo(f"{indent}{key}: {format_value(value)}")


def _list(manager: ConfigManager) -> None:
    if not manager.exists():
        typer.echo("No configuration found. Run: constech-worker init")
    document = manager.load().to_document()
    for section, values in document.items():
        typer.secho(f"{section}:", bold=True)
        _print_section(values)
        typer.echo()


def _validate(manager: ConfigManager) -> None:
    validation = manager.validate()
    if validation.valid:
        typer.secho("Configuration is valid", fg=typer.colors.GREEN)
        return
    typer.echo("Error: Configuration validation failed:", err=True)
    for error in validation.errors:
        typer.echo(f"  - {error}", err=True)
    raise typer.Exit(1)


def configure(
    key: Optional[str] = typer.Argument(None, help="Dot-notation key, e.g. project.owner"),
    value: Optional[str] = typer.Argument(None, help="New value (null clears it)"),
    list_all: bool = typer.Option(False, "--list", help="List all settings"),
    reset: bool = typer.Option(False, "--reset", help="Reset configuration to defaults"),
    validate: bool = typer.Option(False, "--validate", help="Validate configuration"),
):
    """Get, set, list, validate or reset configuration values.

    Example:
        constech-worker configure --list
        constech-worker configure project.owner MyOrg
        constech-worker configure workflow.qualityChecks '["npm test"]'
    """
    manager = ConfigManager()
    try:
        if list_all:
            _list(manager)
        elif reset:
            manager.reset()
            typer.echo("Configuration reset to defaults")
            typer.echo("Run: constech-worker init to detect project settings")
        elif validate:
            _validate(manager)
        elif key is not None and value is None:
            try:
                current = manager.get(key)
            except KeyError:
                typer.echo(f"Error: Configuration key '{key}' not found", err=True)
                raise typer.Exit(1)
            typer.echo(f"{key}: {format_value(current)}")
        elif key is not None:
            parsed = parse_value(value)
            manager.set(key, parsed)
            typer.echo(f"Set {key} = {format_value(parsed)}")
        else:
            typer.echo(USAGE)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
