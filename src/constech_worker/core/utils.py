"""Utility functions for Constech Worker runs."""

import logging
import os
import sys
import uuid
from typing import Optional

from constech_worker.core.paths import WorkerPaths

PACKAGE_LOGGER = "constech_worker"


def make_run_id() -> str:
    """Generate a short 8-character UUID for run tracking."""
    return str(uuid.uuid4())[:8]


def _get_log_level() -> int:
    """Get log level from CONSTECH_LOG_LEVEL environment variable.

    Supports: DEBUG, INFO, WARNING, ERROR (case-insensitive).
    Defaults to INFO if not set or invalid.

    Returns:
        Logging level constant
    """
    level_str = os.environ.get("CONSTECH_LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str, logging.INFO)


def setup_logger(
    run_id: str,
    detached_mode: bool = False,
    verbose: bool = False,
) -> logging.Logger:
    """Set up the package logger to write to both console and a per-run file.

    The file always captures DEBUG, including raw agent output. The console
    level comes from CONSTECH_LOG_LEVEL unless ``verbose`` forces DEBUG.

    Args:
        run_id: The run identifier used for the log directory
        detached_mode: If True, disable console handler (for background processes)
        verbose: If True, log DEBUG messages to the console as well

    Returns:
        Configured package logger
    """
    log_dir = WorkerPaths.get_run_log_dir(run_id)
    try:
        os.makedirs(log_dir, exist_ok=True, mode=0o700)
    except FileExistsError:
        # Race condition - directory was created by another process
        pass

    log_file = os.path.join(log_dir, "execution.log")

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Clear any existing handlers to avoid duplicates
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )
    logger.addHandler(file_handler)

    if not detached_mode:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else _get_log_level())
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(console_handler)

    logger.debug(f"Constech Worker logger initialized - ID: {run_id} (detached={detached_mode})")
    logger.debug(f"Log file: {log_file}")

    return logger


def log_workflow_event(
    logger: logging.Logger, stage: str, status: str, details: Optional[str] = None
) -> None:
    """Log a structured workflow event.

    Args:
        logger: Logger instance to use
        stage: Workflow stage name (e.g., "ENV_PREPARED")
        status: Event status (e.g., "started", "completed", "failed")
        details: Optional additional details
    """
    message = f"[{stage}] {status}"
    if details:
        message += f" - {details}"

    if status == "failed":
        logger.error(message)
    elif status == "skipped":
        logger.warning(message)
    elif status in ("started", "completed"):
        logger.info(message)
    else:
        logger.debug(message)
