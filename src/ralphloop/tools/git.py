"""Git tools using GitPython: status, commit, diff and log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .base import ToolExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """Result of a git commit operation."""

    success: bool
    commit_hash: Optional[str]
    message: str
    error: Optional[str] = None


def open_repo(working_dir: Path) -> git.Repo:
    """Open the repository containing ``working_dir``.

    Raises:
        ToolExecutionError: If the directory is not inside a git repository.
    """
    try:
        return git.Repo(working_dir, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as exc:
        raise ToolExecutionError(f"Not a git repository: {working_dir}") from exc


def is_git_repo(working_dir: Path) -> bool:
    """Check if the directory is inside a git repository."""
    try:
        open_repo(working_dir)
        return True
    except ToolExecutionError:
        return False


def get_status(working_dir: Path) -> str:
    """Porcelain status of the working tree (empty when clean)."""
    repo = open_repo(working_dir)
    try:
        return repo.git.status("--porcelain")
    except GitCommandError as exc:
        raise ToolExecutionError(f"git status failed: {exc.stderr or exc}") from exc


def has_staged_changes(repo: git.Repo) -> bool:
    """Check whether the index differs from HEAD (or holds anything on an unborn branch)."""
    return bool(repo.git.diff("--cached", "--name-only").strip())


def stage_and_commit(message: str, working_dir: Path) -> CommitResult:
    """Stage all changes and commit them.

    The message is passed to git as a single argument, so quotes and other
    shell metacharacters are preserved verbatim.

    Returns:
        CommitResult; ``commit_hash`` is None when there was nothing to commit.
    """
    repo = open_repo(working_dir)

    try:
        repo.git.add(all=True)
    except GitCommandError as exc:
        return CommitResult(
            success=False,
            commit_hash=None,
            message=message,
            error=f"Failed to stage files: {exc.stderr or exc}",
        )

    if not has_staged_changes(repo):
        logger.info("No changes to commit")
        return CommitResult(success=True, commit_hash=None, message="No changes to commit")

    try:
        repo.git.commit("-m", message)
    except GitCommandError as exc:
        logger.error(f"Commit failed: {exc}")
        return CommitResult(
            success=False,
            commit_hash=None,
            message=message,
            error=str(exc.stderr or exc).strip(),
        )

    commit_hash = repo.head.commit.hexsha[:7]
    logger.info(f"Committed: {commit_hash} - {message[:50]}")
    return CommitResult(success=True, commit_hash=commit_hash, message=message)


def get_diff(working_dir: Path, staged: bool = False) -> str:
    """Diff of staged (``--cached``) or unstaged changes."""
    repo = open_repo(working_dir)
    try:
        return repo.git.diff("--cached") if staged else repo.git.diff()
    except GitCommandError as exc:
        raise ToolExecutionError(f"git diff failed: {exc.stderr or exc}") from exc


def get_recent_commits(working_dir: Path, count: int = 5) -> str:
    """One-line log of the most recent commits."""
    repo = open_repo(working_dir)
    if not repo.head.is_valid():
        return ""
    try:
        return repo.git.log("--oneline", "-n", str(count))
    except GitCommandError as exc:
        raise ToolExecutionError(f"git log failed: {exc.stderr or exc}") from exc
