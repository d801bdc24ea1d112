"""Extraction of task metadata from the model's free-text report.

The system prompt asks the model to finish with::

    ## Changes Made
    <summary>

    ## Decisions
    - <decision>

    ## Completed: <task description>

Nothing enforces that format, so every field is optional: a missing heading
leaves the field empty instead of raising.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List

_COMPLETED_RE = re.compile(r"##\s*Completed:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_CHANGES_RE = re.compile(
    r"##\s*Changes Made\s*\n([\s\S]*?)(?=\n##|\n---|\n\*\*|$)",
    re.IGNORECASE,
)
_DECISIONS_RE = re.compile(
    r"##\s*Decisions\s*\n([\s\S]*?)(?=\n##|\n---|\n\*\*Completed|$)",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^[-*]\s+(.+)$", re.MULTILINE)
_TASK_HINT_RE = re.compile(
    r"(?:working on|implementing|task:|completed:)\s*(.+?)(?:\n|$)",
    re.IGNORECASE,
)


@dataclass
class StructuredOutput:
    """Fields extracted from an iteration's text output."""

    task_description: str = ""
    summary: str = ""
    decisions: List[str] = field(default_factory=list)


def parse_structured_output(output: str) -> StructuredOutput:
    """Extract task description, summary and decisions from model output.

    Args:
        output: Accumulated text of one iteration.

    Returns:
        StructuredOutput; fields whose heading is absent stay empty.
    """
    result = StructuredOutput()

    completed = _COMPLETED_RE.search(output)
    if completed:
        result.task_description = completed.group(1).strip()

    changes = _CHANGES_RE.search(output)
    if changes:
        result.summary = changes.group(1).strip()

    decisions = _DECISIONS_RE.search(output)
    if decisions:
        bullets = (item.strip() for item in _BULLET_RE.findall(decisions.group(1)))
        result.decisions = [item for item in bullets if item and item.lower() != "none"]

    return result


def find_task_hint(text: str) -> str:
    """Loosely find what the model said it was working on.

    Used only when the report has no ``## Completed:`` heading.
    """
    match = _TASK_HINT_RE.search(text)
    return match.group(1).strip() if match else ""
