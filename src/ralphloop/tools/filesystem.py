"""Filesystem tools: read, write, list and search files in the working directory."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List

from .base import ToolExecutionError

logger = logging.getLogger(__name__)

# Build/output directories never listed or searched
IGNORED_DIRS = frozenset({"node_modules", "dist", "build", "__pycache__", "venv", "coverage"})


@dataclass
class SearchMatch:
    """A single line matching a search pattern."""

    file: str
    line: int
    content: str

    def __str__(self) -> str:
        return f"{self.file}:{self.line}: {self.content}"


def resolve_path(path: str, working_dir: Path) -> Path:
    """Resolve a tool-supplied path against the working directory.

    Raises:
        ToolExecutionError: If the path resolves outside the working directory.
    """
    if "\x00" in path:
        raise ToolExecutionError(f"Invalid path (contains a null byte): {path!r}")
    root = Path(working_dir).resolve()
    full_path = (root / path).resolve()
    if full_path != root and root not in full_path.parents:
        raise ToolExecutionError(f"Path escapes working directory: {path}")
    return full_path


def _is_ignored(entry: os.DirEntry) -> bool:
    if entry.name.startswith("."):
        return True
    return entry.name in IGNORED_DIRS and entry.is_dir(follow_symlinks=False)


def _scan(directory: Path) -> List[os.DirEntry]:
    with os.scandir(directory) as it:
        return sorted((e for e in it if not _is_ignored(e)), key=lambda e: e.name)


def _walk(directory: Path) -> Iterator[os.DirEntry]:
    """Yield visible entries depth-first, in sorted order.

    An unreadable ``directory`` raises OSError; unreadable subdirectories
    are skipped.
    """
    yield from _walk_entries(_scan(directory))


def _walk_entries(entries: List[os.DirEntry]) -> Iterator[os.DirEntry]:
    for entry in entries:
        yield entry
        if entry.is_dir(follow_symlinks=False):
            try:
                children = _scan(Path(entry.path))
            except OSError as e:
                logger.debug(f"Skipping unreadable directory {entry.path}: {e}")
                continue
            yield from _walk_entries(children)


def read_file(path: str, working_dir: Path) -> str:
    """Read a file's contents.

    Raises:
        ToolExecutionError: If the file does not exist or cannot be read.
    """
    full_path = resolve_path(path, working_dir)
    if not full_path.is_file():
        raise ToolExecutionError(f"File not found: {path}")

    try:
        return full_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ToolExecutionError(f"Failed to read file: {e}") from e


def write_file(path: str, content: str, working_dir: Path) -> int:
    """Write content to a file, creating parent directories as needed.

    Returns:
        Number of characters written.
    """
    full_path = resolve_path(path, working_dir)
    try:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ToolExecutionError(f"Failed to write file: {e}") from e

    logger.info(f"Wrote {len(content)} characters to {path}")
    return len(content)


def list_files(path: str, working_dir: Path, recursive: bool = False) -> List[str]:
    """List directory entries relative to ``path``.

    Directories carry a trailing ``/``. Hidden entries and build/output
    directories are skipped.
    """
    full_path = resolve_path(path, working_dir)
    if not full_path.is_dir():
        raise ToolExecutionError(f"Directory not found: {path}")

    files = []
    try:
        if recursive:
            entries = _walk(full_path)
        else:
            entries = _scan(full_path)
        for entry in entries:
            relative = Path(entry.path).relative_to(full_path).as_posix()
            files.append(relative + "/" if entry.is_dir(follow_symlinks=False) else relative)
    except OSError as e:
        raise ToolExecutionError(f"Failed to list files: {e}") from e

    return files


def search_files(pattern: str, path: str, working_dir: Path) -> List[SearchMatch]:
    """Search files under ``path`` for a case-insensitive regex.

    Unreadable subdirectories and files that cannot be decoded as text
    are skipped.
    """
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ToolExecutionError(f"Invalid regex pattern '{pattern}': {e}") from e

    full_path = resolve_path(path, working_dir)
    if not full_path.exists():
        raise ToolExecutionError(f"Directory not found: {path}")

    if full_path.is_file():
        candidates = [full_path]
        base = full_path.parent
    else:
        try:
            candidates = [Path(e.path) for e in _walk(full_path) if e.is_file(follow_symlinks=False)]
        except OSError as e:
            raise ToolExecutionError(f"Failed to search files: {e}") from e
        base = full_path

    matches = []
    for file_path in candidates:
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        relative = file_path.relative_to(base).as_posix()
        for line_no, line in enumerate(content.split("\n"), start=1):
            if regex.search(line):
                matches.append(SearchMatch(file=relative, line=line_no, content=line.strip()))

    return matches
