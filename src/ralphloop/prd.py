"""PRD (task list) loading, normalization and serialization.

A PRD is the backlog ralph works through, one item per iteration. Two file
formats are supported:

- JSON: ``{"name", "description", "items": [{"id", "category", ...}]}``
- Markdown: ``### High/Medium/Low Priority`` sections holding checkbox items
  with a bold title and indented acceptance-step bullets.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import TRUTHY

logger = logging.getLogger(__name__)

CATEGORIES = ("setup", "architecture", "functional", "testing", "documentation", "polish")
PRIORITIES = ("high", "medium", "low")

# Auto-detection order, relative to the working directory
PRD_CANDIDATES = ("plans/prd.json", "prd.json", "plans/prd.md", "prd.md")


class PRDParseError(Exception):
    """Exception raised when a PRD file or generated PRD text is malformed."""

    pass


@dataclass
class TaskItem:
    """A single PRD work item."""

    id: str
    description: str
    category: str = "functional"
    steps: List[str] = field(default_factory=list)
    priority: str = "medium"
    passes: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "description": self.description,
            "steps": list(self.steps),
            "priority": self.priority,
            "passes": self.passes,
        }


@dataclass
class TaskList:
    """A PRD: a named, ordered list of task items."""

    name: str = "PRD"
    description: Optional[str] = None
    items: List[TaskItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.description:
            data["description"] = self.description
        data["items"] = [item.to_dict() for item in self.items]
        return data

    @property
    def completed(self) -> List[TaskItem]:
        return [item for item in self.items if item.passes]

    @property
    def pending(self) -> List[TaskItem]:
        return [item for item in self.items if not item.passes]

    def is_complete(self) -> bool:
        """Check if every item passes."""
        return len(self.items) > 0 and all(item.passes for item in self.items)


def _as_passes(value: Any) -> bool:
    """Interpret a ``passes`` value; strings such as ``"false"`` are not truthy."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return value == 1


def normalize_prd(data: Any) -> TaskList:
    """Build a TaskList from a partial PRD dictionary, filling defaults.

    Ids default to the 1-based item index as a string; an existing id is
    never overwritten. Unknown categories/priorities fall back to
    ``functional``/``medium``.

    Args:
        data: Parsed JSON object (possibly missing fields).

    Returns:
        Normalized TaskList.

    Raises:
        PRDParseError: If the data is not a JSON object or items is not a list.
    """
    if not isinstance(data, dict):
        raise PRDParseError(f"PRD must be a JSON object, got {type(data).__name__}")

    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise PRDParseError("PRD 'items' must be a list")

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise PRDParseError(f"PRD item {index + 1} must be an object")

        item_id = raw.get("id")
        category = str(raw.get("category") or "functional").lower()
        priority = str(raw.get("priority") or "medium").lower()
        steps = raw.get("steps") or []
        if isinstance(steps, str):
            steps = [steps]

        items.append(TaskItem(
            id=str(item_id) if item_id not in (None, "") else str(index + 1),
            category=category if category in CATEGORIES else "functional",
            description=str(raw.get("description") or ""),
            steps=[str(step) for step in steps],
            priority=priority if priority in PRIORITIES else "medium",
            passes=_as_passes(raw.get("passes")),
        ))

    description = data.get("description")
    return TaskList(
        name=str(data.get("name") or "PRD"),
        description=str(description) if description else None,
        items=items,
    )


# =============================================================================
# JSON format
# =============================================================================


def parse_prd_json(text: str) -> TaskList:
    """Parse PRD JSON text into a normalized TaskList."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PRDParseError(f"Invalid PRD JSON: {e}") from e
    return normalize_prd(data)


def prd_to_json(task_list: TaskList) -> str:
    """Serialize a TaskList to pretty-printed JSON."""
    return json.dumps(task_list.to_dict(), indent=2) + "\n"


# =============================================================================
# Markdown format
# =============================================================================

_HEADING_RE = re.compile(r"^#\s+(.+?)\s*$")
_SECTION_RE = re.compile(r"^###\s+(high|medium|low)\s+priority\s*$", re.IGNORECASE)
_ITEM_RE = re.compile(r"^[-*]\s+\[([ xX])\]\s+(.*)$")
_TITLE_RE = re.compile(r"^\*\*(.+?)\*\*\s*(.*)$")
_STEP_RE = re.compile(r"^\s+[-*]\s+(.+)$")
_META_RE = re.compile(r"\(([a-z]+)(?:,\s*id:\s*([^)]+))?\)\s*$")


def parse_prd_markdown(text: str) -> TaskList:
    """Parse a Markdown PRD.

    Expected layout::

        # Project Name

        Optional description paragraph.

        ### High Priority
        - [ ] **Set up project structure** (setup, id: 1)
          - Create package layout
          - Add pyproject.toml

    The trailing ``(category, id: N)`` annotation is optional.

    Raises:
        PRDParseError: If no task items are found.
    """
    name = "PRD"
    description_lines: List[str] = []
    raw_items: List[Dict[str, Any]] = []
    priority: Optional[str] = None
    seen_section = False

    for line in text.splitlines():
        stripped = line.strip()

        heading = _HEADING_RE.match(line)
        if heading and not seen_section and not raw_items:
            name = heading.group(1)
            continue

        section = _SECTION_RE.match(stripped)
        if section:
            priority = section.group(1).lower()
            seen_section = True
            continue

        if stripped.startswith("#"):
            # Any other heading ends the current priority section
            priority = None
            seen_section = True
            continue

        item = _ITEM_RE.match(line)
        if item and priority is not None:
            title = item.group(2).strip()
            category = None
            item_id = None
            title_match = _TITLE_RE.match(title)
            if title_match:
                title, rest = title_match.group(1).strip(), title_match.group(2)
                meta = _META_RE.search(rest)
                if meta:
                    category = meta.group(1)
                    item_id = meta.group(2).strip() if meta.group(2) else None
            raw_items.append({
                "id": item_id,
                "category": category,
                "description": title,
                "steps": [],
                "priority": priority,
                "passes": item.group(1).lower() == "x",
            })
            continue

        step = _STEP_RE.match(line)
        if step and raw_items and priority is not None:
            raw_items[-1]["steps"].append(step.group(1).strip())
            continue

        if not seen_section and stripped:
            description_lines.append(stripped)

    if not raw_items:
        raise PRDParseError("No task items found in Markdown PRD")

    return normalize_prd({
        "name": name,
        "description": " ".join(description_lines) or None,
        "items": raw_items,
    })


def prd_to_markdown(task_list: TaskList) -> str:
    """Serialize a TaskList to the Markdown PRD format."""
    lines = [f"# {task_list.name}", ""]
    if task_list.description:
        lines.extend([task_list.description, ""])

    for priority in PRIORITIES:
        section_items = [item for item in task_list.items if item.priority == priority]
        if not section_items:
            continue
        lines.append(f"### {priority.title()} Priority")
        for item in section_items:
            box = "x" if item.passes else " "
            lines.append(f"- [{box}] **{item.description}** ({item.category}, id: {item.id})")
            for step in item.steps:
                lines.append(f"  - {step}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


# =============================================================================
# File helpers
# =============================================================================


def find_prd_file(working_dir: Path) -> Optional[Path]:
    """Find a PRD file in the working directory using the standard order."""
    for candidate in PRD_CANDIDATES:
        path = Path(working_dir) / candidate
        if path.is_file():
            return path
    return None


def load_prd(path: Path) -> TaskList:
    """Load a PRD file, choosing the format from its extension.

    Raises:
        PRDParseError: If the file is missing or malformed.
    """
    path = Path(path)
    if not path.exists():
        raise PRDParseError(f"PRD file not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PRDParseError(f"Failed to read PRD file {path}: {e}") from e

    if path.suffix.lower() in (".md", ".markdown"):
        task_list = parse_prd_markdown(text)
    else:
        task_list = parse_prd_json(text)

    logger.debug(f"Loaded PRD '{task_list.name}' with {len(task_list.items)} items from {path}")
    return task_list


def save_prd(path: Path, task_list: TaskList) -> None:
    """Write a PRD file, choosing the format from its extension."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".md", ".markdown"):
        path.write_text(prd_to_markdown(task_list), encoding="utf-8")
    else:
        path.write_text(prd_to_json(task_list), encoding="utf-8")
    logger.info(f"Saved PRD to {path}")


def summarize_prd(task_list: TaskList) -> str:
    """Render a PRD summary for inclusion in the system prompt."""
    total = len(task_list.items)
    done = len(task_list.completed)

    lines = [f"**{task_list.name}** ({done}/{total} tasks complete)"]
    if task_list.description:
        lines.append(task_list.description)
    lines.append("")

    for item in task_list.items:
        box = "[x]" if item.passes else "[ ]"
        lines.append(f"- {box} {item.id}. [{item.priority}/{item.category}] {item.description}")
        for step in item.steps:
            lines.append(f"    - {step}")

    return "\n".join(lines)
