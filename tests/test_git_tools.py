"""Tests for the git tools (real temporary repositories)."""

from __future__ import annotations

from pathlib import Path

import git
import pytest

from ralphloop.config import Config
from ralphloop.tools import ToolDispatcher, build_default_registry
from ralphloop.tools.base import ToolExecutionError
from ralphloop.tools.git import get_recent_commits, get_status, is_git_repo, open_repo, stage_and_commit


class TestGitHelpers:
    """Tests for the GitPython-backed helpers."""

    def test_is_git_repo(self, tmp_path: Path, git_repo: git.Repo) -> None:
        """Test repository detection."""
        assert is_git_repo(Path(git_repo.working_dir))
        plain = tmp_path / "plain"
        plain.mkdir()
        assert not is_git_repo(plain)
        with pytest.raises(ToolExecutionError, match="Not a git repository"):
            open_repo(plain)

    def test_commit_preserves_quotes(self, workdir: Path, git_repo: git.Repo) -> None:
        """Test commit messages keep embedded quotes."""
        message = 'Add "storage" layer; don\'t break $HOME `ls`'
        result = stage_and_commit(message, workdir)

        assert result.success
        assert result.commit_hash is not None
        assert len(result.commit_hash) == 7
        assert git_repo.head.commit.message.strip() == message

    def test_commit_with_nothing_to_commit(self, workdir: Path, git_repo: git.Repo) -> None:
        """Test committing a clean tree reports no changes."""
        stage_and_commit("Initial commit", workdir)
        result = stage_and_commit("Nothing here", workdir)
        assert result.success
        assert result.commit_hash is None
        assert result.message == "No changes to commit"

    def test_status_and_log(self, workdir: Path, git_repo: git.Repo) -> None:
        """Test status and log output."""
        assert get_recent_commits(workdir) == ""
        assert "prd.json" in get_status(workdir)

        stage_and_commit("Initial commit", workdir)
        assert get_status(workdir) == ""
        assert "Initial commit" in get_recent_commits(workdir)


class TestGitToolsViaDispatcher:
    """Tests for the git tools as the model sees them."""

    def test_git_workflow(self, config: Config, workdir: Path, git_repo: git.Repo) -> None:
        """Test status, diff, commit and log through the dispatcher."""
        dispatcher = ToolDispatcher(build_default_registry(config))

        assert "?? prd.json" in dispatcher.dispatch("git_status", {}, workdir)
        assert dispatcher.dispatch("git_log", {}, workdir) == "No commits"

        output = dispatcher.dispatch("git_commit", {"message": "Initial commit"}, workdir)
        assert output.startswith("Committed: ")

        assert dispatcher.dispatch("git_status", {}, workdir) == "No changes"
        assert dispatcher.dispatch("git_commit", {"message": "again"}, workdir) == "No changes to commit"

        (workdir / "prd.json").write_text("{}")
        diff = dispatcher.dispatch("git_diff", {}, workdir)
        assert "prd.json" in diff
        assert dispatcher.dispatch("git_diff", {"staged": True}, workdir) == "No changes"
        assert "Initial commit" in dispatcher.dispatch("git_log", {"count": 1}, workdir)

    def test_git_outside_repository(self, config: Config, workdir: Path) -> None:
        """Test git tools outside a repository return errors."""
        dispatcher = ToolDispatcher(build_default_registry(config))
        output = dispatcher.dispatch("git_status", {}, workdir)
        # tmp_path is never inside a repository
        assert output.startswith("Error: Not a git repository")
