"""Tests for the progress store."""

from __future__ import annotations

import json
from pathlib import Path

from ralphloop.progress import ProgressEntry, ProgressStore


class TestProgressStore:
    """Tests for ProgressStore."""

    def test_empty_store(self, tmp_path: Path) -> None:
        """Test an empty store."""
        store = ProgressStore(tmp_path / "progress.jsonl")
        assert store.read_entries() == []
        assert store.next_iteration_index() == 1
        assert store.summarize() == "No previous iterations. This is the first iteration."

    def test_append_and_read(self, tmp_path: Path) -> None:
        """Test appended entries read back in order."""
        store = ProgressStore(tmp_path / "nested" / "progress.jsonl")
        store.append(ProgressEntry(iteration=1, task_description="Set up", success=True, decisions=["Use pytest"]))
        store.append(ProgressEntry(iteration=2, task_description="", success=False, error="API down"))

        entries = store.read_entries()
        assert [entry.iteration for entry in entries] == [1, 2]
        assert entries[0].decisions == ["Use pytest"]
        assert entries[1].error == "API down"
        assert store.next_iteration_index() == 3

    def test_corrupt_lines_are_skipped(self, tmp_path: Path) -> None:
        """Test lines that are not JSON are skipped."""
        path = tmp_path / "progress.jsonl"
        store = ProgressStore(path)
        store.append(ProgressEntry(iteration=1, task_description="ok", success=True))
        with open(path, "a") as f:
            f.write("{not json\n")
        store.append(ProgressEntry(iteration=2, task_description="ok again", success=True))

        assert [entry.iteration for entry in store.read_entries()] == [1, 2]

    def test_summary_content(self, tmp_path: Path) -> None:
        """Test the progress summary contents."""
        store = ProgressStore(tmp_path / "progress.jsonl")
        store.append(ProgressEntry(
            iteration=1,
            task_description="Create storage layer",
            success=True,
            summary="Added Store class.",
            decisions=["JSON over SQLite"],
            files_changed=["store.py"],
        ))
        store.append(ProgressEntry(iteration=2, task_description="Add API", success=False, error="timeout"))

        summary = store.summarize()
        assert "#### Iteration 1" in summary
        assert "- completed" in summary
        assert "Task: Create storage layer" in summary
        assert "- JSON over SQLite" in summary
        assert "Files changed: store.py" in summary
        assert "#### Iteration 2" in summary
        assert "FAILED" in summary
        assert "Error: timeout" in summary

    def test_summary_limit(self, tmp_path: Path) -> None:
        """Test the summary keeps only the latest entries."""
        store = ProgressStore(tmp_path / "progress.jsonl")
        for i in range(1, 6):
            store.append(ProgressEntry(iteration=i, task_description=f"task {i}", success=True))

        summary = store.summarize(limit=2)
        assert "(3 earlier iterations omitted)" in summary
        assert "task 1" not in summary
        assert "task 5" in summary

    def test_wrongly_typed_lines_are_skipped(self, tmp_path: Path) -> None:
        """Test lines that decode as JSON but carry wrong field types are skipped."""
        path = tmp_path / "progress.jsonl"
        store = ProgressStore(path)
        store.append(ProgressEntry(iteration=1, task_description="ok", success=True, files_changed=["a.py"]))
        bad_lines = [
            {"iteration": 2, "task_description": "x", "success": True, "files_changed": [1, 2]},
            {"iteration": 3, "task_description": "x", "success": True, "files_changed": "abc"},
            {"iteration": 4, "task_description": "x", "success": True, "decisions": "use sqlite"},
            {"iteration": 5, "task_description": ["x"], "success": True},
            {"iteration": 6, "task_description": "x", "success": False, "error": {"code": 500}},
            [1, 2, 3],
        ]
        with open(path, "a") as f:
            for line in bad_lines:
                f.write(json.dumps(line) + "\n")

        entries = store.read_entries()
        assert [entry.iteration for entry in entries] == [1]
        assert "Files changed: a.py" in store.summarize()
        assert store.next_iteration_index() == 2

    def test_from_dict_accepts_missing_optional_fields(self) -> None:
        """Test optional fields default when absent or null."""
        entry = ProgressEntry.from_dict({"iteration": 3, "summary": None, "decisions": None})
        assert entry.task_description == ""
        assert entry.summary == ""
        assert entry.decisions == []
        assert entry.files_changed == []
        assert entry.error is None
