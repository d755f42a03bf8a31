"""Entry point for running Constech Worker as a module.

This allows the CLI to be executed using:
    python -m constech_worker dispatch --issue 42
"""

from constech_worker.cli.cli import app

if __name__ == "__main__":
    app()
