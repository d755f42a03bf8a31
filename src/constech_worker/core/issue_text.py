"""Derive issue titles and bodies from free-text prompts."""

import re
from typing import Tuple

TITLE_MAX_LENGTH = 50

_FILLER_PATTERN = re.compile(r"^(we need to |please |can you )", re.IGNORECASE)

ISSUE_BODY_TEMPLATE = """## Description
{description}

## Tasks
- [ ] Analyze requirements
- [ ] Implement solution
- [ ] Test implementation
- [ ] Update documentation if needed

## Acceptance Criteria
- Solution meets the described requirements
- Code follows project conventions
- All quality checks pass (typecheck, lint, build)
- Changes are properly tested

---
*This issue was created automatically by Constech Worker.*"""


def split_prompt(prompt: str) -> Tuple[str, str]:
    """Split a prompt into an issue title and description.

    With a period present, the title is the text before the first period and
    the description is everything after it. Otherwise a leading filler phrase
    ("we need to", "please", "can you") is dropped, the title is capped at 50
    characters, and the description is the untouched prompt.

    Args:
        prompt: Free-text task description

    Returns:
        Tuple of (title, description)
    """
    if "." in prompt:
        head, _, tail = prompt.partition(".")
        return head.strip(), tail.strip()

    cleaned = _FILLER_PATTERN.sub("", prompt, count=1)
    return cleaned[:TITLE_MAX_LENGTH], prompt


def build_issue_body(description: str) -> str:
    """Render the body of an automatically created issue."""
    return ISSUE_BODY_TEMPLATE.format(description=description)
