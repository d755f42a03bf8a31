"""Best-effort extraction of results from free-form agent output.

Agent output has no stable structure, so every field produced here is
optional. Nothing in this module raises, and nothing it returns may be used
to decide whether a run succeeded; the exit code alone does that.
"""

import logging
import re
from typing import Iterable, List, Optional

from constech_worker.core.models import ExtractedArtifacts

logger = logging.getLogger(__name__)

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|\x1b\][^\x07]*\x07")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufff0-\uffff]")

_BRANCH_PATTERNS = [
    re.compile(r"Switched to (?:a new )?branch ['\"`]([A-Za-z0-9\-_/.]+)['\"`]"),
    re.compile(
        r"(?:Created|Checked out|Switching to) (?:branch )?['\"`]?([A-Za-z0-9\-_/]+)['\"`]?",
        re.IGNORECASE,
    ),
]
_COMMIT_PATTERN = re.compile(r"\bcommit ([a-f0-9]{7,40})\b", re.IGNORECASE)
_PR_NUMBER_PATTERNS = [
    re.compile(r"pull request.*?#(\d+)", re.IGNORECASE),
    re.compile(r"\bPR\b.*?#(\d+)", re.IGNORECASE),
]
_PR_URL_PATTERN = re.compile(r"(https://github\.com/[^/\s]+/[^/\s]+/pull/(\d+))")

_FAILURE_PATTERN = re.compile(r"\bfailed\b|\berrors?\b|ERR!", re.IGNORECASE)
_ZERO_COUNT_PATTERN = re.compile(
    r"\b(?:0|no|zero)\s+(?:errors?|failures?|failed)\b", re.IGNORECASE
)


def clean_output_text(chunk: str) -> str:
    """Strip ANSI escape sequences and control characters."""
    return _CONTROL_CHARS.sub("", _ANSI_ESCAPE.sub("", chunk))


def _first_match(patterns: Iterable[re.Pattern], text: str) -> Optional[re.Match]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match
    return None


def _check_passed(command: str, text: str, lines: List[str]) -> Optional[bool]:
    if command not in text:
        return None

    needle = command.lower()
    label = command.split()[-1].lower()
    for line in lines:
        # "0 errors" and "no failures" report success
        stripped = _ZERO_COUNT_PATTERN.sub("", line)
        lowered = stripped.lower()
        if f"{label} failed" in lowered:
            return False
        if needle in lowered and _FAILURE_PATTERN.search(stripped):
            return False
    return True


def parse_agent_output(text: str, quality_checks: Iterable[str] = ()) -> ExtractedArtifacts:
    """Scrape branch, commit, pull request and quality check results from ``text``.

    Args:
        text: Captured combined output of the environment
        quality_checks: Configured quality check commands

    Returns:
        Artifacts with unmatched fields left as None
    """
    artifacts = ExtractedArtifacts()
    try:
        cleaned = clean_output_text(text)

        branch = _first_match(_BRANCH_PATTERNS, cleaned)
        if branch:
            artifacts.branch_name = branch.group(1)

        commit = _COMMIT_PATTERN.search(cleaned)
        if commit:
            artifacts.commit_hash = commit.group(1)

        url = _PR_URL_PATTERN.search(cleaned)
        if url:
            artifacts.pr_url = url.group(1)

        number = _first_match(_PR_NUMBER_PATTERNS, cleaned)
        if number:
            artifacts.pr_number = int(number.group(1))
        elif url:
            artifacts.pr_number = int(url.group(2))

        lines = cleaned.splitlines()
        for command in quality_checks:
            passed = _check_passed(command, cleaned, lines)
            if passed is not None:
                artifacts.quality_checks[command] = passed
    except Exception as e:
        logger.debug(f"Failed to parse workflow results: {e}")

    logger.debug(f"Parsed workflow results: {artifacts.model_dump()}")
    return artifacts
