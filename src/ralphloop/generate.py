"""One-shot generation helpers: PRDs and AGENTS.md guidelines.

These are single prompt-and-parse round trips against the completion
service. No tools are offered and no iteration happens.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from .conversation import CompletionService, TextBlock
from .prd import PRDParseError, TaskList, normalize_prd, save_prd
from .prompts import (
    GENERATE_GUIDELINES_REQUEST,
    GENERATE_PRD_REQUEST,
    GUIDELINES_GENERATION_PROMPT,
    PRD_GENERATION_PROMPT,
    REFINE_PRD_REQUEST,
)

logger = logging.getLogger(__name__)

IGNORED_DIRS = {"node_modules", ".git", "dist", ".build", "coverage", "__pycache__", ".venv", "venv"}
IGNORED_FILES = {".DS_Store", "bun.lockb", "package-lock.json"}
DOC_FILES = ("README.md", "readme.md", "README", "SPEC.md", "REQUIREMENTS.md")

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_FENCED_MD_RE = re.compile(r"^```(?:markdown|md)?\s*\n([\s\S]*?)\n```\s*$")


def _ask(service: CompletionService, system: str, prompt: str) -> str:
    """Send one user message and return the first text block."""
    response = service.create(system, [{"role": "user", "content": prompt}])
    for block in response.content:
        if isinstance(block, TextBlock):
            return block.text.strip()
    raise PRDParseError("No text response from completion service")


def extract_prd(text: str) -> TaskList:
    """Parse PRD JSON from a model response, raw or inside a fenced block.

    Raises:
        PRDParseError: If no valid PRD JSON can be found.
    """
    try:
        return normalize_prd(json.loads(text))
    except json.JSONDecodeError:
        pass

    match = _FENCED_RE.search(text)
    if match:
        try:
            return normalize_prd(json.loads(match.group(1).strip()))
        except json.JSONDecodeError as e:
            raise PRDParseError(f"Invalid PRD JSON in code block: {e}") from e

    raise PRDParseError(f"Failed to parse PRD JSON: {text[:200]}...")


def analyze_codebase(working_dir: Path) -> List[str]:
    """List project files (directories with a trailing slash) for context.

    Dependency, build and hidden entries are skipped, except ``.env.example``.
    """
    root = Path(working_dir)
    files: List[str] = []

    def walk(directory: Path, prefix: str) -> None:
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError:
            return
        for entry in entries:
            name = entry.name
            if name in IGNORED_DIRS or name in IGNORED_FILES:
                continue
            if name.startswith(".") and name != ".env.example":
                continue
            relative = f"{prefix}/{name}" if prefix else name
            if entry.is_dir():
                files.append(f"{relative}/")
                walk(entry, relative)
            else:
                files.append(relative)

    walk(root, "")
    return files


def read_project_docs(working_dir: Path) -> Optional[str]:
    """Return the first readable README/SPEC/REQUIREMENTS document, if any."""
    for name in DOC_FILES:
        path = Path(working_dir) / name
        if not path.is_file():
            continue
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Skipping unreadable doc {path}: {e}")
    return None


def generate_prd(
    description: str,
    service: CompletionService,
    existing_files: Optional[List[str]] = None,
    project_docs: Optional[str] = None,
) -> TaskList:
    """Generate a PRD from a natural-language project description.

    Args:
        description: What needs to be built.
        service: Completion service.
        existing_files: Optional file listing from :func:`analyze_codebase`.
        project_docs: Optional README or spec text.

    Returns:
        Normalized TaskList.

    Raises:
        PRDParseError: If the response holds no valid PRD JSON.
        ServiceError: If the completion request fails.
    """
    logger.info(f"Generating PRD for: {description[:80]}")
    prompt = GENERATE_PRD_REQUEST.render(
        description=description,
        existing_files=existing_files or [],
        project_docs=project_docs or "",
    )
    task_list = extract_prd(_ask(service, PRD_GENERATION_PROMPT, prompt))
    logger.info(f"Generated {len(task_list.items)} tasks")
    return task_list


def refine_prd(task_list: TaskList, feedback: str, service: CompletionService) -> TaskList:
    """Revise an existing PRD according to feedback."""
    prompt = REFINE_PRD_REQUEST.render(
        prd_json=json.dumps(task_list.to_dict(), indent=2),
        feedback=feedback,
    )
    try:
        return extract_prd(_ask(service, PRD_GENERATION_PROMPT, prompt))
    except PRDParseError as e:
        raise PRDParseError(f"Failed to parse refined PRD: {e}") from e


def generate_and_save_prd(
    description: str,
    service: CompletionService,
    output_path: Path,
    working_dir: Optional[Path] = None,
    analyze: bool = False,
) -> TaskList:
    """Generate a PRD, optionally with codebase context, and write it to disk."""
    existing_files = None
    project_docs = None
    if analyze and working_dir is not None:
        existing_files = analyze_codebase(working_dir)
        project_docs = read_project_docs(working_dir)
        logger.info(f"Found {len(existing_files)} files")

    task_list = generate_prd(description, service, existing_files, project_docs)
    save_prd(output_path, task_list)
    return task_list


def generate_guidelines(
    description: str,
    service: CompletionService,
    existing_files: Optional[List[str]] = None,
) -> str:
    """Generate an AGENTS.md guidelines document.

    Returns:
        Markdown text (a surrounding code fence, if any, is removed).
    """
    prompt = GENERATE_GUIDELINES_REQUEST.render(
        description=description,
        existing_files=existing_files or [],
    )
    text = _ask(service, GUIDELINES_GENERATION_PROMPT, prompt)
    match = _FENCED_MD_RE.match(text)
    if match:
        text = match.group(1).strip()
    return text + "\n"
