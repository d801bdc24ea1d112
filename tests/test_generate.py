"""Tests for the PRD and guidelines generation helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ralphloop.conversation import TextBlock
from ralphloop.generate import (
    analyze_codebase,
    extract_prd,
    generate_and_save_prd,
    generate_guidelines,
    generate_prd,
    read_project_docs,
    refine_prd,
)
from ralphloop.prd import PRDParseError, TaskItem, TaskList, load_prd
from ralphloop.prompts import PRD_GENERATION_PROMPT

GENERATED = {
    "name": "CLI Tool",
    "items": [
        {"description": "Set up packaging", "category": "setup", "priority": "high"},
        {"description": "Add the main command"},
    ],
}


class TestExtractPrd:
    """Tests for extract_prd."""

    def test_raw_json(self) -> None:
        """Test a bare JSON response is parsed and normalized."""
        task_list = extract_prd(json.dumps(GENERATED))
        assert task_list.name == "CLI Tool"
        assert [item.id for item in task_list.items] == ["1", "2"]
        assert task_list.items[1].category == "functional"

    def test_fenced_json(self) -> None:
        """Test JSON inside a fenced block is parsed."""
        text = f"Here is your PRD:\n```json\n{json.dumps(GENERATED)}\n```\nEnjoy."
        assert len(extract_prd(text).items) == 2

    def test_garbage(self) -> None:
        """Test a response without JSON raises PRDParseError."""
        with pytest.raises(PRDParseError, match="Failed to parse PRD JSON"):
            extract_prd("I cannot help with that.")


class TestGeneratePrd:
    """Tests for generate_prd and refine_prd."""

    def test_generate_prd(self, fake_service) -> None:
        """Test generate_prd sends the description and file listing."""
        service = fake_service([fake_service.reply(TextBlock(json.dumps(GENERATED)))])

        task_list = generate_prd("A command line tool", service, existing_files=["src/", "src/main.py"])

        assert len(task_list.items) == 2
        call = service.calls[0]
        assert call["system"] == PRD_GENERATION_PROMPT
        assert call["tools"] is None
        prompt = call["messages"][0]["content"]
        assert "## Project Description\nA command line tool" in prompt
        assert "src/main.py" in prompt

    def test_generate_prd_without_text(self, fake_service) -> None:
        """Test a response without text raises PRDParseError."""
        service = fake_service([fake_service.reply()])
        with pytest.raises(PRDParseError, match="No text response"):
            generate_prd("anything", service)

    def test_refine_prd(self, fake_service) -> None:
        """Test refine_prd sends the current PRD and the feedback."""
        original = TaskList(name="CLI Tool", items=[TaskItem(id="1", description="Set up packaging")])
        refined = dict(GENERATED, items=GENERATED["items"] + [{"description": "Write docs", "category": "documentation"}])
        service = fake_service([fake_service.reply(TextBlock(json.dumps(refined)))])

        task_list = refine_prd(original, "Add documentation", service)

        assert len(task_list.items) == 3
        prompt = service.calls[0]["messages"][0]["content"]
        assert '"Set up packaging"' in prompt
        assert "Add documentation" in prompt

    def test_refine_prd_parse_failure(self, fake_service) -> None:
        """Test an unparseable refinement raises PRDParseError."""
        service = fake_service([fake_service.reply(TextBlock("no json"))])
        with pytest.raises(PRDParseError, match="Failed to parse refined PRD"):
            refine_prd(TaskList(), "feedback", service)

    def test_generate_and_save(self, tmp_path: Path, fake_service) -> None:
        """Test the generated PRD is saved with codebase context."""
        (tmp_path / "README.md").write_text("# Existing project")
        service = fake_service([fake_service.reply(TextBlock(json.dumps(GENERATED)))])

        generate_and_save_prd("desc", service, tmp_path / "plans" / "prd.json", working_dir=tmp_path, analyze=True)

        assert len(load_prd(tmp_path / "plans" / "prd.json").items) == 2
        prompt = service.calls[0]["messages"][0]["content"]
        assert "README.md" in prompt
        assert "# Existing project" in prompt


class TestGenerateGuidelines:
    """Tests for generate_guidelines."""

    def test_strips_code_fence(self, fake_service) -> None:
        """Test a surrounding markdown fence is removed."""
        service = fake_service([fake_service.reply(TextBlock("```markdown\n## Project Overview\nA tool.\n```"))])
        assert generate_guidelines("A tool", service) == "## Project Overview\nA tool.\n"

    def test_plain_markdown(self, fake_service) -> None:
        """Test plain markdown is returned with a trailing newline."""
        service = fake_service([fake_service.reply(TextBlock("## Rules\n- Be nice"))])
        assert generate_guidelines("A tool", service) == "## Rules\n- Be nice\n"


class TestCodebaseContext:
    """Tests for analyze_codebase and read_project_docs."""

    def test_analyze_codebase(self, tmp_path: Path) -> None:
        """Test hidden, ignored and lock files are left out of the listing."""
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "main.py").write_text("")
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "lib.js").write_text("")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".env").write_text("SECRET=1")
        (tmp_path / ".env.example").write_text("SECRET=")
        (tmp_path / "package-lock.json").write_text("{}")

        assert analyze_codebase(tmp_path) == [".env.example", "src/", "src/main.py"]

    def test_read_project_docs(self, tmp_path: Path) -> None:
        """Test README takes precedence over other project docs."""
        assert read_project_docs(tmp_path) is None
        (tmp_path / "SPEC.md").write_text("spec text")
        assert read_project_docs(tmp_path) == "spec text"
        (tmp_path / "README.md").write_text("readme text")
        assert read_project_docs(tmp_path) == "readme text"
