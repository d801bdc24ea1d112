"""Tests for prompt rendering and terminal output."""

from __future__ import annotations

from io import StringIO

from rich.console import Console

from ralphloop.controller import LoopState, RunSummary
from ralphloop.conversation import IterationResult
from ralphloop.output import ConsoleReporter, result_style
from ralphloop.prompts import COMPLETION_MARKER, build_system_prompt


def make_reporter(verbose: bool = True):
    buffer = StringIO()
    console = Console(file=buffer, width=100, force_terminal=False, color_system=None)
    return ConsoleReporter(console=console, verbose=verbose), buffer


class TestBuildSystemPrompt:
    """Tests for build_system_prompt."""

    def test_sections(self) -> None:
        """Test the system prompt sections."""
        prompt = build_system_prompt("PRD SUMMARY", "PROGRESS SUMMARY", "GUIDELINES TEXT")
        assert "### PRD Status\nPRD SUMMARY" in prompt
        assert "### Progress\nPROGRESS SUMMARY" in prompt
        assert "GUIDELINES TEXT" in prompt
        assert f"output exactly: {COMPLETION_MARKER}" in prompt
        assert "## Completed: [exact task description from PRD]" in prompt

    def test_guidelines_optional(self) -> None:
        """Test the guidelines section is omitted when empty."""
        prompt = build_system_prompt("prd", "progress")
        assert "Project Guidelines" not in prompt


class TestConsoleReporter:
    """Tests for ConsoleReporter."""

    def test_result_style(self) -> None:
        """Test tool output classification."""
        assert result_style("Error: File not found: x") == "error"
        assert result_style("Unknown tool: x") == "error"
        assert result_style("Tests passed") == "success"
        assert result_style("src/\nREADME.md") == "info"

    def test_quiet_mode_hides_tool_traffic(self) -> None:
        """Test non-verbose mode prints nothing for tool traffic."""
        reporter, buffer = make_reporter(verbose=False)
        reporter.on_text("model text")
        reporter.on_tool_call("read_file", {"path": "a"})
        reporter.on_tool_result("read_file", "contents")
        assert buffer.getvalue() == ""

    def test_verbose_tool_call_hides_file_content(self) -> None:
        """Test file content is summarized in tool call panels."""
        reporter, buffer = make_reporter()
        reporter.on_tool_call("write_file", {"path": "a.py", "content": "x" * 500})
        output = buffer.getvalue()
        assert "Tool: write_file" in output
        assert "<500 chars>" in output

    def test_long_results_are_truncated(self) -> None:
        """Test long tool results are truncated."""
        reporter, buffer = make_reporter()
        reporter.on_tool_result("execute_command", "\n".join(f"line {i}" for i in range(100)))
        output = buffer.getvalue()
        assert "line 0" in output
        assert "line 99" not in output
        assert "(80 more lines)" in output

    def test_file_change_preview(self) -> None:
        """Test file changes show a syntax preview."""
        reporter, buffer = make_reporter()
        reporter.on_file_change("store.py", "class Store:\n    pass\n")
        assert "store.py" in buffer.getvalue()
        assert "class Store" in buffer.getvalue()

    def test_markup_in_names_and_paths_is_literal(self) -> None:
        """Test bracketed paths and tool names are printed as-is."""
        reporter, buffer = make_reporter()
        reporter.on_file_change("app/[id]/page.tsx", "")
        reporter.on_file_change("notes/[/x].md", "# Notes\n")
        reporter.on_file_change("notes/[/y].md", 7)
        reporter.on_tool_call("[/bad]", {"path": "[/x]"})
        reporter.on_tool_result("[/bad]", "Error: [/x]")

        output = buffer.getvalue()
        assert "File written: app/[id]/page.tsx" in output
        assert "notes/[/x].md" in output
        assert "notes/[/y].md" in output
        assert "Tool: [/bad]" in output

    def test_summary(self) -> None:
        """Test the run summary table and panel."""
        reporter, buffer = make_reporter(verbose=False)
        summary = RunSummary(
            final_state=LoopState.COMPLETED,
            iterations_run=2,
            pauses=1,
            stop_reason="All tasks complete",
            results=[
                (1, IterationResult(success=True, task_description="Set up project", files_changed=["a"])),
                (2, IterationResult(success=True, is_complete=True, task_description="Finish")),
            ],
        )
        reporter.print_summary(summary)
        output = buffer.getvalue()
        assert "Set up project" in output
        assert "COMPLETED" in output
        assert "All tasks complete" in output
        assert "HITL pauses: 1" in output
