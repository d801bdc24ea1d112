"""Tool registry and dispatcher.

The registry is an immutable value built once per run and handed to the
conversation loop; the dispatcher executes a named tool against a working
directory and always returns a string.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import Config
from . import filesystem, git, terminal
from .base import Tool, ToolDescriptor, ToolExecutionError

logger = logging.getLogger(__name__)

_JSON_TYPES = {
    "string": (str,),
    "boolean": (bool,),
    "number": (int, float),
    "integer": (int,),
}


class ToolRegistry:
    """Immutable, name-indexed collection of tools."""

    def __init__(self, tools: Iterable[Tool]):
        self._tools: Tuple[Tool, ...] = tuple(tools)
        names = [tool.name for tool in self._tools]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate tool names: {', '.join(duplicates)}")
        self._by_name = {tool.name: tool for tool in self._tools}

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return [tool.name for tool in self._tools]

    def get(self, name: str) -> Optional[Tool]:
        return self._by_name.get(name)

    def descriptors(self) -> List[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools]

    def to_params(self) -> List[Dict[str, Any]]:
        """Tool declarations for the completion service."""
        return [tool.descriptor.to_param() for tool in self._tools]


def _validate_input(descriptor: ToolDescriptor, tool_input: Any) -> Optional[str]:
    """Return an error message if the input does not match the declared schema."""
    if not isinstance(tool_input, dict):
        return f"Tool input for '{descriptor.name}' must be an object"

    for key in descriptor.required:
        if tool_input.get(key) is None:
            return f"Missing required parameter '{key}' for tool '{descriptor.name}'"

    for key, value in tool_input.items():
        prop = descriptor.properties.get(key)
        if prop is None or value is None:
            continue
        expected = _JSON_TYPES.get(prop.get("type", ""))
        if expected is None:
            continue
        if isinstance(value, bool) and bool not in expected:
            return f"Parameter '{key}' must be a {prop['type']}"
        if not isinstance(value, expected):
            return f"Parameter '{key}' must be a {prop['type']}"

    return None


class ToolDispatcher:
    """Executes tools by name. Never raises past :meth:`dispatch`."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def dispatch(self, name: str, tool_input: Any, working_dir: Path) -> str:
        """Execute a tool and return its output text.

        Args:
            name: Tool name as requested by the model.
            tool_input: Tool input as requested by the model.
            working_dir: Directory the tool operates in.

        Returns:
            Tool output. Failures are returned as strings beginning with
            ``Error:``; unknown tools as ``Unknown tool: <name>``.
        """
        tool = self.registry.get(name) if isinstance(name, str) else None
        if tool is None:
            logger.warning(f"Model requested unknown tool: {name}")
            return f"Unknown tool: {name}"

        try:
            problem = _validate_input(tool.descriptor, tool_input)
            if problem:
                return f"Error: {problem}"
            return tool.handler(tool_input, Path(working_dir))
        except ToolExecutionError as e:
            logger.debug(f"Tool {name} failed: {e}")
            return f"Error: {e}"
        except Exception as e:
            logger.warning(f"Tool {name} raised {type(e).__name__}: {e}")
            return f"Error: Tool execution failed: {e}"


# =============================================================================
# Default tool set
# =============================================================================


def _path_prop(description: str) -> Dict[str, str]:
    return {"type": "string", "description": description}


def build_default_registry(config: Optional[Config] = None) -> ToolRegistry:
    """Build the standard tool registry.

    Args:
        config: Supplies command timeouts and feedback-loop overrides.

    Returns:
        ToolRegistry with filesystem, terminal and git tools.
    """
    config = config or Config()

    def read_file(tool_input: Dict[str, Any], working_dir: Path) -> str:
        content = filesystem.read_file(tool_input["path"], working_dir)
        return f"[Read {len(content)} chars successfully]\n{content}"

    def write_file(tool_input: Dict[str, Any], working_dir: Path) -> str:
        path = tool_input["path"]
        written = filesystem.write_file(path, tool_input["content"], working_dir)
        return f"Wrote {written} characters to {path}"

    def list_files(tool_input: Dict[str, Any], working_dir: Path) -> str:
        files = filesystem.list_files(
            tool_input["path"], working_dir, bool(tool_input.get("recursive", False))
        )
        return "\n".join(files) if files else "No files found"

    def search_files(tool_input: Dict[str, Any], working_dir: Path) -> str:
        matches = filesystem.search_files(tool_input["pattern"], tool_input["path"], working_dir)
        if not matches:
            return f"No matches found for \"{tool_input['pattern']}\""
        return "\n".join(str(match) for match in matches)

    def execute_command(tool_input: Dict[str, Any], working_dir: Path) -> str:
        timeout = tool_input.get("timeout")
        if not timeout or timeout <= 0:
            timeout = config.command_timeout
        result = terminal.execute_command(tool_input["command"], working_dir, int(timeout))
        return result.format()

    def run_tests(tool_input: Dict[str, Any], working_dir: Path) -> str:
        return terminal.run_tests(working_dir, config.test_command).format(
            "Tests passed", "Tests failed"
        )

    def run_typecheck(tool_input: Dict[str, Any], working_dir: Path) -> str:
        return terminal.run_typecheck(working_dir, config.typecheck_command).format(
            "Type check passed", "Type check failed"
        )

    def run_lint(tool_input: Dict[str, Any], working_dir: Path) -> str:
        return terminal.run_lint(working_dir, config.lint_command).format(
            "Lint passed", "Lint failed"
        )

    def run_feedback_loops(tool_input: Dict[str, Any], working_dir: Path) -> str:
        return terminal.run_feedback_loops(
            working_dir,
            test_command=config.test_command,
            typecheck_command=config.typecheck_command,
            lint_command=config.lint_command,
        ).format()

    def git_status(tool_input: Dict[str, Any], working_dir: Path) -> str:
        return git.get_status(working_dir) or "No changes"

    def git_commit(tool_input: Dict[str, Any], working_dir: Path) -> str:
        result = git.stage_and_commit(tool_input["message"], working_dir)
        if not result.success:
            return f"Error: {result.error}"
        if result.commit_hash is None:
            return result.message
        return f"Committed: {result.commit_hash}"

    def git_diff(tool_input: Dict[str, Any], working_dir: Path) -> str:
        return git.get_diff(working_dir, bool(tool_input.get("staged", False))) or "No changes"

    def git_log(tool_input: Dict[str, Any], working_dir: Path) -> str:
        count = int(tool_input.get("count") or 5)
        return git.get_recent_commits(working_dir, max(count, 1)) or "No commits"

    no_input: Dict[str, Dict[str, str]] = {}

    return ToolRegistry([
        Tool(ToolDescriptor(
            name="read_file",
            description="Read the contents of a file at the specified path. "
                        "Use this to examine existing files.",
            properties={"path": _path_prop("The path of the file to read (relative to working directory)")},
            required=("path",),
        ), read_file),
        Tool(ToolDescriptor(
            name="write_file",
            description="Write content to a file at the specified path. Creates directories "
                        "if needed. If the file exists, it will be overwritten.",
            properties={
                "path": _path_prop("The path of the file to write (relative to working directory)"),
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            required=("path", "content"),
        ), write_file),
        Tool(ToolDescriptor(
            name="list_files",
            description="List files and directories in the specified directory. "
                        "Use recursive=true to list all files recursively.",
            properties={
                "path": _path_prop("The path of the directory to list (relative to working directory)"),
                "recursive": {"type": "boolean", "description": "Whether to list files recursively (default: false)"},
            },
            required=("path",),
        ), list_files),
        Tool(ToolDescriptor(
            name="search_files",
            description="Search for a pattern in files within a directory. "
                        "Returns matching lines with file paths and line numbers.",
            properties={
                "pattern": {"type": "string", "description": "The regex pattern to search for (case-insensitive)"},
                "path": _path_prop("The directory to search in (relative to working directory)"),
            },
            required=("pattern", "path"),
        ), search_files),
        Tool(ToolDescriptor(
            name="execute_command",
            description="Execute a shell command. Use this for running scripts, "
                        "installing packages, or any CLI operations.",
            properties={
                "command": {"type": "string", "description": "The shell command to execute"},
                "timeout": {"type": "number", "description": "Timeout in milliseconds (default: 60000)"},
            },
            required=("command",),
        ), execute_command),
        Tool(ToolDescriptor(
            name="run_tests",
            description="Run the test suite. Automatically detects and uses the appropriate "
                        "test runner (bun test, npm test, pytest, etc).",
            properties=no_input,
        ), run_tests),
        Tool(ToolDescriptor(
            name="run_typecheck",
            description="Run type checking. Automatically detects and uses the appropriate "
                        "type checker (tsc, mypy, etc).",
            properties=no_input,
        ), run_typecheck),
        Tool(ToolDescriptor(
            name="run_lint",
            description="Run the linter. Automatically detects and uses the appropriate "
                        "linter (eslint, ruff, etc).",
            properties=no_input,
        ), run_lint),
        Tool(ToolDescriptor(
            name="run_feedback_loops",
            description="Run type checking, tests and linting in parallel and report all "
                        "three results. Use before committing.",
            properties=no_input,
        ), run_feedback_loops),
        Tool(ToolDescriptor(
            name="git_status",
            description="Get the current git status showing changed, staged, and untracked files.",
            properties=no_input,
        ), git_status),
        Tool(ToolDescriptor(
            name="git_commit",
            description="Stage all changes and create a git commit with the specified message.",
            properties={"message": {"type": "string", "description": "The commit message"}},
            required=("message",),
        ), git_commit),
        Tool(ToolDescriptor(
            name="git_diff",
            description="Get the diff of current changes (staged or unstaged).",
            properties={
                "staged": {
                    "type": "boolean",
                    "description": "If true, show only staged changes. If false, show unstaged changes.",
                },
            },
        ), git_diff),
        Tool(ToolDescriptor(
            name="git_log",
            description="Get recent git commits.",
            properties={"count": {"type": "number", "description": "Number of commits to show (default: 5)"}},
        ), git_log),
    ])
