"""Iteration controller: runs the conversation loop once per iteration.

State machine::

    IDLE -> RUNNING -> COMPLETED | FAILED
                    -> PAUSED -> RUNNING   (confirmed)
                              -> COMPLETED (aborted)

Every attempted iteration appends exactly one ProgressEntry, so the next
iteration (and the next run) sees what happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import Config
from .conversation import ConversationLoop, IterationResult
from .loop_logger import LoopLogger
from .prd import PRDParseError, TaskList, find_prd_file, load_prd, summarize_prd
from .progress import ProgressEntry, ProgressStore
from .prompts import INITIAL_INSTRUCTION, build_system_prompt

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed transitions; anything else is a programming error
TRANSITIONS = {
    LoopState.IDLE: {LoopState.RUNNING},
    LoopState.RUNNING: {LoopState.PAUSED, LoopState.COMPLETED, LoopState.FAILED},
    LoopState.PAUSED: {LoopState.RUNNING, LoopState.COMPLETED},
    LoopState.COMPLETED: set(),
    LoopState.FAILED: set(),
}


@dataclass
class RunSummary:
    """Outcome of a controller run."""

    final_state: LoopState
    iterations_run: int = 0
    pauses: int = 0
    stop_reason: str = ""
    results: List[Tuple[int, IterationResult]] = field(default_factory=list)
    state_history: List[LoopState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.final_state == LoopState.COMPLETED


ConfirmCallback = Callable[[int, IterationResult], bool]


def _always_continue(iteration: int, result: IterationResult) -> bool:
    return True


class IterationController:
    """Drives up to N iterations of the conversation loop."""

    def __init__(
        self,
        config: Config,
        loop: ConversationLoop,
        progress_store: Optional[ProgressStore] = None,
        confirm: Optional[ConfirmCallback] = None,
        run_log: Optional[LoopLogger] = None,
        on_iteration_start: Optional[Callable[[int, int], None]] = None,
    ):
        """Initialize the controller.

        Args:
            config: Run configuration (read-only).
            loop: Conversation loop used for every iteration.
            progress_store: Progress history. Defaults to ``config.progress_file``.
            confirm: Called while PAUSED with the iteration number and its
                result; return True to continue, False to stop.
            run_log: Optional run statistics collector.
            on_iteration_start: Called with (current, total) before each iteration.
        """
        self.config = config
        self.loop = loop
        self.progress = progress_store or ProgressStore(self._resolve(config.progress_file))
        self.confirm = confirm or _always_continue
        self.run_log = run_log
        self.on_iteration_start = on_iteration_start
        self.state = LoopState.IDLE
        self.history: List[LoopState] = [self.state]

    def _resolve(self, path: Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else Path(self.config.working_dir) / path

    def _transition(self, new_state: LoopState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid state transition: {self.state.value} -> {new_state.value}")
        logger.debug(f"State: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def load_task_list(self) -> TaskList:
        """Load the PRD, re-read on every iteration.

        Raises:
            PRDParseError: If no PRD exists or it cannot be parsed.
        """
        if self.config.prd_file is not None:
            path = self._resolve(self.config.prd_file)
        else:
            path = find_prd_file(Path(self.config.working_dir))
            if path is None:
                raise PRDParseError(
                    "No PRD file found (looked for plans/prd.json, prd.json, plans/prd.md, prd.md)"
                )
        return load_prd(path)

    def load_guidelines(self) -> Optional[str]:
        path = self._resolve(self.config.guidelines_file)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8").strip() or None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read guidelines file {path}: {e}")
            return None

    def build_prompt(self) -> str:
        task_list = self.load_task_list()
        return build_system_prompt(
            prd_summary=summarize_prd(task_list),
            progress_summary=self.progress.summarize(),
            guidelines=self.load_guidelines(),
        )

    def run(self, iterations: int = 1, hitl: bool = False) -> RunSummary:
        """Run up to ``iterations`` iterations.

        Args:
            iterations: Iteration budget (at least 1).
            hitl: Pause for confirmation after each successful, non-final iteration.

        Returns:
            RunSummary with the terminal state.

        Raises:
            ValueError: If ``iterations`` is less than 1.
            PRDParseError: If the PRD is missing or malformed (state becomes FAILED).
        """
        if iterations < 1:
            raise ValueError("iterations must be at least 1")

        summary = RunSummary(final_state=self.state, state_history=self.history)
        self._transition(LoopState.RUNNING)
        logger.info(f"Starting run: {iterations} iteration(s){' with HITL' if hitl else ''}")

        for current in range(1, iterations + 1):
            try:
                system_prompt = self.build_prompt()
            except PRDParseError as e:
                self._transition(LoopState.FAILED)
                summary.final_state = self.state
                summary.stop_reason = f"PRD error: {e}"
                if self.run_log:
                    self.run_log.log_error(str(e), {"iteration": current})
                raise

            index = self.progress.next_iteration_index()
            if self.on_iteration_start:
                self.on_iteration_start(current, iterations)
            if self.run_log:
                self.run_log.log_iteration_start(index, iterations)

            try:
                result = self.loop.run(system_prompt, INITIAL_INSTRUCTION)
            except Exception as e:
                logger.exception(f"Iteration {index} raised {type(e).__name__}")
                result = IterationResult(success=False, error=f"{type(e).__name__}: {e}")
            summary.iterations_run += 1
            summary.results.append((index, result))
            self._record(index, result)

            if not result.success:
                logger.error(f"Iteration {index} failed: {result.error}")
                self._transition(LoopState.FAILED)
                summary.stop_reason = f"Iteration {index} failed: {result.error}"
                break

            if result.is_complete:
                logger.info("Completion marker found: all PRD tasks are complete")
                self._transition(LoopState.COMPLETED)
                summary.stop_reason = "All tasks complete"
                break

            if current == iterations:
                self._transition(LoopState.COMPLETED)
                summary.stop_reason = f"Iteration budget exhausted ({iterations})"
                break

            if hitl:
                self._transition(LoopState.PAUSED)
                summary.pauses += 1
                if not self.confirm(index, result):
                    logger.info("Run stopped by user")
                    self._transition(LoopState.COMPLETED)
                    summary.stop_reason = "Stopped by user"
                    break
                self._transition(LoopState.RUNNING)

        summary.final_state = self.state
        return summary

    def _record(self, index: int, result: IterationResult) -> None:
        """Append the iteration's ProgressEntry; never skipped, even on failure."""
        entry = ProgressEntry(
            iteration=index,
            task_description=result.task_description or ("Iteration failed" if not result.success else ""),
            success=result.success,
            decisions=list(result.decisions),
            summary=result.summary,
            files_changed=list(result.files_changed),
            error=result.error,
        )
        self.progress.append(entry)
        if self.run_log:
            self.run_log.log_iteration_end(
                success=result.success,
                task_description=entry.task_description,
                files_changed=entry.files_changed,
                error=result.error,
            )
