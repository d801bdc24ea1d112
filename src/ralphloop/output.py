"""Rich terminal rendering for the iteration loop."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from .loop_logger import RunStats

if TYPE_CHECKING:
    from .controller import RunSummary

MAX_RESULT_LINES = 20
MAX_PREVIEW_LINES = 30


def result_style(output: str) -> str:
    """Classify tool output as error, success or info for coloring."""
    if "Error" in output or output.startswith("Unknown tool:"):
        return "error"
    lowered = output.lower()
    if "success" in lowered or "passed" in lowered or "completed" in lowered:
        return "success"
    return "info"


def _truncate(text: str, max_lines: int) -> str:
    lines = text.splitlines()
    if len(lines) <= max_lines:
        return text
    hidden = len(lines) - max_lines
    return "\n".join(lines[:max_lines] + [f"... ({hidden} more lines)"])


class ConsoleReporter:
    """Renders tool calls, results and file changes as they happen.

    Model text and tool traffic are only shown in verbose mode; banners and
    the run summary are always shown.
    """

    STYLES = {"success": "green", "error": "red", "info": "cyan"}

    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose

    def on_text(self, text: str) -> None:
        if self.verbose:
            self.console.print(text, markup=False, highlight=False)

    def on_tool_call(self, name: str, tool_input: Dict[str, Any]) -> None:
        if not self.verbose:
            return
        shown = {
            key: (f"<{len(value)} chars>" if key == "content" and isinstance(value, str) else value)
            for key, value in (tool_input or {}).items()
        }
        body = json.dumps(shown, indent=2, ensure_ascii=False) if shown else "(no input)"
        self.console.print(Panel(Text(body), title=f"[bold magenta]Tool: {escape(name)}[/bold magenta]", border_style="magenta"))

    def on_tool_result(self, name: str, output: str) -> None:
        if not self.verbose:
            return
        kind = result_style(output)
        self.console.print(Panel(
            Text(_truncate(output, MAX_RESULT_LINES)),
            title=f"{escape(name)} result",
            border_style=self.STYLES[kind],
        ))

    def on_file_change(self, path: str, content: Optional[str]) -> None:
        if not self.verbose:
            return
        if not content or not isinstance(content, str):
            self.console.print(f"[yellow]File written:[/yellow] {escape(path)}")
            return
        preview = _truncate(content, MAX_PREVIEW_LINES)
        lexer = Syntax.guess_lexer(Path(path).name, code=preview)
        self.console.print(Panel(
            Syntax(preview, lexer, line_numbers=True),
            title=f"[bold green]{escape(path)}[/bold green]",
            border_style="green",
        ))

    def iteration_header(self, current: int, total: int) -> None:
        self.console.print()
        self.console.rule(f"[bold cyan]Iteration {current}/{total}[/bold cyan]")

    def print_summary(self, summary: RunSummary, stats: Optional[RunStats] = None) -> None:
        """Print the per-iteration table and final state."""
        self.console.print()
        if summary.results:
            table = Table(show_header=True, header_style="bold", box=None)
            table.add_column("#", style="dim", width=4)
            table.add_column("Task", width=50)
            table.add_column("Files", width=6)
            table.add_column("Status", width=10)
            for number, result in summary.results:
                if result.success:
                    status = "[green]Complete[/green]" if result.is_complete else "[green]OK[/green]"
                else:
                    status = "[red]Failed[/red]"
                task = result.task_description or (result.error or "")
                table.add_row(str(number), escape(task[:50]), str(len(result.files_changed)), status)
            self.console.print(table)
            self.console.print()

        state = summary.final_state.value
        color = {"completed": "green", "failed": "red"}.get(state, "yellow")
        lines = [
            f"[bold {color}]{state.upper()}[/bold {color}]",
            f"Iterations run: {summary.iterations_run}",
            f"Stop reason: {escape(summary.stop_reason)}",
        ]
        if summary.pauses:
            lines.append(f"HITL pauses: {summary.pauses}")
        if stats is not None:
            lines.append(
                f"Tokens: {stats.total_tokens:,} "
                f"({stats.total_input_tokens:,} in, {stats.total_output_tokens:,} out)"
            )
            lines.append(f"Tool calls: {sum(stats.tool_calls.values())}")
            lines.append(f"Duration: {stats.duration_seconds:.1f}s")
        self.console.print(Panel("\n".join(lines), border_style=color))
