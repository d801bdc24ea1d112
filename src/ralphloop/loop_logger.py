"""Run statistics and the optional JSON run log.

Tracks iterations, service calls, token usage and tool calls for one
``ralph`` invocation. When a log directory is configured the collected data
is written to a timestamped JSON file on :meth:`LoopLogger.finalize`.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class ServiceCallLog:
    """Log entry for one completion-service request."""

    timestamp: str
    iteration: int
    input_tokens: int = 0
    output_tokens: int = 0
    success: bool = True
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RunStats:
    """Statistics for one run of the iteration loop."""

    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    iterations: int = 0
    iterations_succeeded: int = 0
    iterations_failed: int = 0
    files_changed: int = 0
    tool_calls: Counter = field(default_factory=Counter)
    tool_errors: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    service_calls: list[ServiceCallLog] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "iterations": {
                "run": self.iterations,
                "succeeded": self.iterations_succeeded,
                "failed": self.iterations_failed,
            },
            "files_changed": self.files_changed,
            "tools": {
                "calls": dict(self.tool_calls),
                "total": sum(self.tool_calls.values()),
                "errors": self.tool_errors,
            },
            "tokens": {
                "input": self.total_input_tokens,
                "output": self.total_output_tokens,
                "total": self.total_tokens,
            },
            "service_calls": len(self.service_calls),
        }


class LoopLogger:
    """Collects run statistics and writes the JSON run log."""

    def __init__(self, log_dir: Optional[Path] = None, run_name: str = "ralph"):
        """Initialize the run logger.

        Args:
            log_dir: Directory for the JSON log file. Nothing is written when None.
            run_name: Label used in the file name and session header.
        """
        self.log_dir = Path(log_dir) if log_dir else None
        self.run_name = run_name
        self.stats = RunStats()
        self._current_iteration = 0

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file: Optional[Path] = None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            safe_name = "".join(c if c.isalnum() else "_" for c in run_name[:30])
            self.log_file = self.log_dir / f"{timestamp}_{safe_name}.json"
            logger.info(f"Run log: {self.log_file}")

        self.log_data: dict[str, Any] = {
            "session": {
                "id": timestamp,
                "name": run_name,
                "start_time": datetime.now().isoformat(),
            },
            "iterations": [],
            "service_calls": [],
            "errors": [],
        }

    def log_iteration_start(self, iteration: int, total: int) -> None:
        """Log the start of an iteration."""
        self._current_iteration = iteration
        self.stats.iterations += 1
        self.log_data["iterations"].append({
            "number": iteration,
            "of": total,
            "start_time": datetime.now().isoformat(),
            "tool_calls": [],
        })
        logger.info(f"Iteration {iteration} started")

    def log_iteration_end(
        self,
        success: bool,
        task_description: str = "",
        files_changed: Optional[list[str]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Log the end of the current iteration."""
        files_changed = files_changed or []
        if success:
            self.stats.iterations_succeeded += 1
        else:
            self.stats.iterations_failed += 1
        self.stats.files_changed += len(files_changed)

        if self.log_data["iterations"]:
            entry = self.log_data["iterations"][-1]
            entry["end_time"] = datetime.now().isoformat()
            entry["success"] = success
            entry["task"] = task_description
            entry["files_changed"] = list(files_changed)
            if error:
                entry["error"] = error

    def log_tool_call(self, name: str, is_error: bool = False) -> None:
        """Log a dispatched tool call."""
        self.stats.tool_calls[name] += 1
        if is_error:
            self.stats.tool_errors += 1
        if self.log_data["iterations"]:
            self.log_data["iterations"][-1]["tool_calls"].append({
                "tool": name,
                "error": is_error,
                "timestamp": datetime.now().isoformat(),
            })

    def log_service_call(
        self,
        input_tokens: int = 0,
        output_tokens: int = 0,
        success: bool = True,
        error: Optional[str] = None,
        duration_ms: int = 0,
    ) -> None:
        """Log a completion-service request."""
        call = ServiceCallLog(
            timestamp=datetime.now().isoformat(),
            iteration=self._current_iteration,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            success=success,
            error=error,
            duration_ms=duration_ms,
        )
        self.stats.service_calls.append(call)
        self.stats.total_input_tokens += input_tokens
        self.stats.total_output_tokens += output_tokens
        self.log_data["service_calls"].append(call.__dict__.copy())

    def log_error(self, error: str, context: Optional[dict] = None) -> None:
        """Log an error."""
        self.log_data["errors"].append({
            "timestamp": datetime.now().isoformat(),
            "error": error,
            "context": context or {},
        })
        logger.error(f"Run error: {error}")

    def finalize(self, final_state: str) -> None:
        """Close the run and write the JSON log if a log directory is set."""
        self.stats.end_time = datetime.now()
        self.log_data["session"]["end_time"] = self.stats.end_time.isoformat()
        self.log_data["session"]["final_state"] = final_state
        self.log_data["stats"] = self.stats.to_dict()

        if self.log_file is None:
            return
        try:
            with open(self.log_file, "w", encoding="utf-8") as f:
                json.dump(self.log_data, f, indent=2)
            logger.info(f"Run log written to: {self.log_file}")
        except OSError as e:
            logger.error(f"Failed to write run log: {e}")
