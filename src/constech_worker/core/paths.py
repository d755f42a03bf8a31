"""
Constech Worker directory structure management.

This module provides centralized path management for runtime directories
(logs and per-run scratch space) kept outside the target repository.
"""

import os
from pathlib import Path


class WorkerPaths:
    """Manage the Constech Worker data directory layout."""

    @staticmethod
    def get_base_dir() -> Path:
        """Get base data directory."""
        base = os.getenv("CONSTECH_WORKER_DATA_DIR")
        if base:
            return Path(base)
        return Path.home() / ".constech-worker"

    @staticmethod
    def get_logs_dir() -> Path:
        """Get logs directory for workflow logs."""
        return WorkerPaths.get_base_dir() / "logs"

    @staticmethod
    def get_run_log_dir(run_id: str) -> Path:
        """Get log directory for a specific run.

        Args:
            run_id: The run identifier

        Returns:
            Path to the run's log directory
        """
        return WorkerPaths.get_logs_dir() / run_id

