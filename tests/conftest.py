"""Shared test fixtures for ralph tests."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import git
import pytest

from ralphloop.config import Config
from ralphloop.conversation import CompletionResponse, TextBlock, ToolUseBlock

ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "RALPH_MODEL",
    "RALPH_MAX_TOKENS",
    "RALPH_WORKING_DIR",
    "RALPH_PRD_FILE",
    "RALPH_PROGRESS_FILE",
    "RALPH_VERBOSE",
    "RALPH_MAX_TURNS",
    "RALPH_COMMAND_TIMEOUT",
    "RALPH_LOG_DIR",
)

SAMPLE_PRD = {
    "name": "Todo API",
    "description": "A small todo service",
    "items": [
        {
            "id": "1",
            "category": "architecture",
            "description": "Create the storage layer",
            "steps": ["Add a Store class", "Persist to JSON"],
            "priority": "high",
            "passes": False,
        },
    ],
}


class FakeService:
    """Scripted completion service.

    Responses are returned in order; an Exception in the script is raised
    instead. Every request is recorded with a deep copy of its messages.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def create(self, system, messages, tools=None) -> CompletionResponse:
        self.calls.append({
            "system": system,
            "messages": copy.deepcopy(messages),
            "tools": tools,
        })
        if not self.responses:
            return CompletionResponse(content=[TextBlock("Nothing left to do.")], stop_reason="end_turn")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def reply(*blocks, stop_reason: Optional[str] = None) -> CompletionResponse:
        """Build a response; the stop reason follows from the blocks unless given."""
        if stop_reason is None:
            has_tool = any(isinstance(block, ToolUseBlock) for block in blocks)
            stop_reason = "tool_use" if has_tool else "end_turn"
        return CompletionResponse(
            content=list(blocks),
            stop_reason=stop_reason,
            input_tokens=100,
            output_tokens=20,
        )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of every test."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Working directory holding a one-item PRD."""
    work = tmp_path / "project"
    work.mkdir()
    (work / "prd.json").write_text(json.dumps(SAMPLE_PRD, indent=2))
    return work


@pytest.fixture
def git_repo(workdir: Path) -> git.Repo:
    """Initialize a git repository in the working directory."""
    repo = git.Repo.init(workdir)
    writer = repo.config_writer()
    writer.set_value("user", "name", "Test User")
    writer.set_value("user", "email", "test@example.com")
    writer.release()
    return repo


@pytest.fixture
def config(workdir: Path) -> Config:
    """Config pointing at the temporary working directory."""
    return Config(
        api_key="test-key",
        working_dir=workdir,
        progress_file=workdir / "progress.jsonl",
        max_turns=10,
        command_timeout=10_000,
    )


@pytest.fixture
def fake_service():
    """Factory for scripted completion services."""
    return FakeService
