"""Terminal tools: shell command execution and feedback loops (tests, types, lint)."""

from __future__ import annotations

import logging
import os
import platform
import signal
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

IS_WINDOWS = platform.system() == "Windows"

DEFAULT_TIMEOUT_MS = 60_000
TEST_TIMEOUT_MS = 300_000
CHECK_TIMEOUT_MS = 120_000

# Shell exit code for "command not found"
COMMAND_NOT_FOUND = 127

# Candidate commands per ecosystem, tried in order
FEEDBACK_COMMANDS: Dict[str, Dict[str, Sequence[str]]] = {
    "node": {
        "tests": ("bun test", "pnpm test", "npm test"),
        "typecheck": ("bun run typecheck", "pnpm typecheck", "npm run typecheck", "npx tsc --noEmit"),
        "lint": ("bun run lint", "pnpm lint", "npm run lint", "npx eslint ."),
    },
    "python": {
        "tests": ("pytest -q",),
        "typecheck": ("mypy .", "pyright"),
        "lint": ("ruff check .", "flake8"),
    },
}

ECOSYSTEM_MARKERS = {
    "node": ("package.json",),
    "python": ("pyproject.toml", "setup.py", "setup.cfg", "requirements.txt"),
}


@dataclass
class CommandResult:
    """Result of running a shell command."""

    success: bool
    exit_code: int
    command: str = ""
    stdout: str = ""
    stderr: str = ""
    output: str = ""  # status line for successful runs
    error: Optional[str] = None
    duration_ms: int = 0

    def format(self, success_default: str = "Command completed", failure_prefix: str = "Error") -> str:
        """Render the result as tool output text."""
        if self.success:
            return self.stdout or self.output or success_default

        parts = [f"{failure_prefix} (exit code {self.exit_code}): {self.error or 'Command failed'}"]
        if self.stdout:
            parts.append(f"STDOUT:\n{self.stdout}")
        if self.stderr:
            parts.append(f"STDERR:\n{self.stderr}")
        return "\n".join(parts)


def _terminate(proc: subprocess.Popen, sig: int = signal.SIGTERM) -> None:
    """Signal the command's whole process group (the shell and its children)."""
    if IS_WINDOWS:
        if sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
        return
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


def execute_command(
    command: str,
    working_dir: Path,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> CommandResult:
    """Execute a shell command.

    On timeout the process group receives SIGTERM and the result carries exit
    code -1 and a "timed out" error; a timeout is never raised to the caller.

    Args:
        command: Shell command line.
        working_dir: Directory to run in.
        timeout_ms: Timeout in milliseconds.

    Returns:
        CommandResult with trimmed stdout/stderr.
    """
    logger.debug(f"Executing: {command} (timeout {timeout_ms}ms)")
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(working_dir),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=not IS_WINDOWS,
        )
    except OSError as e:
        return CommandResult(
            success=False,
            exit_code=-1,
            command=command,
            error=f"Failed to execute command: {e}",
        )

    try:
        stdout, stderr = proc.communicate(timeout=timeout_ms / 1000)
    except subprocess.TimeoutExpired:
        _terminate(proc)
        try:
            stdout, stderr = proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            _terminate(proc, signal.SIGKILL if not IS_WINDOWS else signal.SIGTERM)
            stdout, stderr = proc.communicate()
        logger.warning(f"Command timed out after {timeout_ms}ms: {command}")
        return CommandResult(
            success=False,
            exit_code=-1,
            command=command,
            stdout=(stdout or "").strip(),
            stderr=(stderr or "").strip(),
            error=f"Command timed out after {timeout_ms}ms",
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    duration_ms = int((time.monotonic() - start) * 1000)
    exit_code = proc.returncode

    if exit_code == 0:
        return CommandResult(
            success=True,
            exit_code=0,
            command=command,
            stdout=stdout.strip(),
            stderr=stderr.strip(),
            output=f"Command completed in {duration_ms}ms",
            duration_ms=duration_ms,
        )

    return CommandResult(
        success=False,
        exit_code=exit_code,
        command=command,
        stdout=stdout.strip(),
        stderr=stderr.strip(),
        error=f"Command exited with code {exit_code}",
        duration_ms=duration_ms,
    )


def detect_ecosystems(working_dir: Path) -> List[str]:
    """Detect project ecosystems from marker files; all of them if none match."""
    found = [
        name
        for name, markers in ECOSYSTEM_MARKERS.items()
        if any((Path(working_dir) / marker).exists() for marker in markers)
    ]
    return found or list(FEEDBACK_COMMANDS)


def candidate_commands(kind: str, working_dir: Path, override: Optional[str] = None) -> List[str]:
    """Ordered candidate commands for a feedback loop kind."""
    if override:
        return [override]
    commands: List[str] = []
    for ecosystem in detect_ecosystems(working_dir):
        commands.extend(FEEDBACK_COMMANDS[ecosystem][kind])
    return commands


def run_first_available(
    commands: Sequence[str],
    working_dir: Path,
    timeout_ms: int,
    not_configured: str,
) -> CommandResult:
    """Run the first candidate that exists (exit code other than 127).

    If every candidate is missing the result is a success carrying the
    ``not_configured`` message.
    """
    for command in commands:
        result = execute_command(command, working_dir, timeout_ms)
        if result.success or result.exit_code != COMMAND_NOT_FOUND:
            return result
        logger.debug(f"Command not available: {command}")

    return CommandResult(success=True, exit_code=0, output=not_configured)


def run_tests(working_dir: Path, command: Optional[str] = None) -> CommandResult:
    """Run the test suite."""
    return run_first_available(
        candidate_commands("tests", working_dir, command),
        working_dir,
        TEST_TIMEOUT_MS,
        "No tests configured",
    )


def run_typecheck(working_dir: Path, command: Optional[str] = None) -> CommandResult:
    """Run type checking."""
    return run_first_available(
        candidate_commands("typecheck", working_dir, command),
        working_dir,
        CHECK_TIMEOUT_MS,
        "No type checking configured",
    )


def run_lint(working_dir: Path, command: Optional[str] = None) -> CommandResult:
    """Run the linter."""
    return run_first_available(
        candidate_commands("lint", working_dir, command),
        working_dir,
        CHECK_TIMEOUT_MS,
        "No linting configured",
    )


@dataclass
class FeedbackReport:
    """Results of the three feedback loops."""

    typecheck: CommandResult
    tests: CommandResult
    lint: CommandResult

    @property
    def passed(self) -> bool:
        return self.typecheck.success and self.tests.success and self.lint.success

    def format(self) -> str:
        sections = [
            ("Type check", self.typecheck.format("Type check passed", "Type check failed")),
            ("Tests", self.tests.format("Tests passed", "Tests failed")),
            ("Lint", self.lint.format("Lint passed", "Lint failed")),
        ]
        lines = [f"Feedback loops: {'all passed' if self.passed else 'FAILURES'}"]
        for title, body in sections:
            lines.append(f"\n## {title}\n{body}")
        return "\n".join(lines)


def run_feedback_loops(
    working_dir: Path,
    test_command: Optional[str] = None,
    typecheck_command: Optional[str] = None,
    lint_command: Optional[str] = None,
) -> FeedbackReport:
    """Run type check, tests and lint concurrently and wait for all three.

    Each check runs under its own timeout.
    """
    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="feedback") as pool:
        typecheck = pool.submit(run_typecheck, working_dir, typecheck_command)
        tests = pool.submit(run_tests, working_dir, test_command)
        lint = pool.submit(run_lint, working_dir, lint_command)
        return FeedbackReport(
            typecheck=typecheck.result(),
            tests=tests.result(),
            lint=lint.result(),
        )
