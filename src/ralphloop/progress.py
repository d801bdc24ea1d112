"""Append-only progress history shared between iterations.

Each attempted iteration (successful or not) appends one JSON line to the
progress file. The history is read back to build the "Progress" section of
the next iteration's system prompt.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ProgressEntry:
    """Record of one attempted iteration."""

    iteration: int
    task_description: str
    success: bool
    decisions: List[str] = field(default_factory=list)
    summary: str = ""
    files_changed: List[str] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProgressEntry:
        """Build an entry from a decoded progress line.

        Raises:
            KeyError: If ``iteration`` is missing.
            TypeError: If a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise TypeError(f"progress entry must be an object, got {type(data).__name__}")
        return cls(
            iteration=int(data["iteration"]),
            task_description=_optional_str(data, "task_description") or "",
            success=bool(data.get("success", False)),
            decisions=_str_list(data, "decisions"),
            summary=_optional_str(data, "summary") or "",
            files_changed=_str_list(data, "files_changed"),
            error=_optional_str(data, "error"),
            timestamp=_optional_str(data, "timestamp") or "",
        )


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _str_list(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise TypeError(f"'{key}' must be a list of strings")
    return list(value)


class ProgressStore:
    """JSON Lines progress file. Entries are only ever appended."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, entry: ProgressEntry) -> None:
        """Append one entry to the progress file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict()) + "\n")
        logger.debug(f"Recorded iteration {entry.iteration} in {self.path}")

    def read_entries(self) -> List[ProgressEntry]:
        """Read all entries in append order, skipping corrupt lines."""
        if not self.path.exists():
            return []

        entries = []
        with open(self.path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(ProgressEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping corrupt progress line {line_no} in {self.path}: {e}")
        return entries

    def next_iteration_index(self) -> int:
        """Index for the next entry, continuing across runs."""
        entries = self.read_entries()
        return (entries[-1].iteration + 1) if entries else 1

    def summarize(self, limit: int = 10) -> str:
        """Render the most recent entries for the system prompt."""
        entries = self.read_entries()
        if not entries:
            return "No previous iterations. This is the first iteration."

        shown = entries[-limit:]
        lines = []
        if len(entries) > len(shown):
            lines.append(f"({len(entries) - len(shown)} earlier iterations omitted)")

        for entry in shown:
            status = "completed" if entry.success else "FAILED"
            lines.append(f"#### Iteration {entry.iteration} ({entry.timestamp}) - {status}")
            lines.append(f"Task: {entry.task_description or 'Unknown'}")
            if entry.summary:
                lines.append(f"Summary: {entry.summary}")
            if entry.decisions:
                lines.append("Decisions:")
                lines.extend(f"- {decision}" for decision in entry.decisions)
            if entry.files_changed:
                lines.append(f"Files changed: {', '.join(entry.files_changed)}")
            if entry.error:
                lines.append(f"Error: {entry.error}")
            lines.append("")

        return "\n".join(lines).rstrip()
