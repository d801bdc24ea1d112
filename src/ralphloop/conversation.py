"""Conversation loop: one iteration of model completions and tool calls.

A single :class:`ConversationLoop.run` call sends the system prompt and an
instruction to the completion service, executes every tool the model asks
for (strictly in order) and feeds the results back until the model stops
asking for tools.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import anthropic

from .config import Config
from .loop_logger import LoopLogger
from .prompts import COMPLETION_MARKER, INITIAL_INSTRUCTION
from .structured_output import find_task_hint, parse_structured_output
from .tools.registry import ToolDispatcher, ToolRegistry

logger = logging.getLogger(__name__)

WRITE_TOOL = "write_file"


class ServiceError(Exception):
    """Exception raised when a completion-service request fails."""

    pass


# =============================================================================
# Content blocks
# =============================================================================


@dataclass(frozen=True)
class TextBlock:
    text: str

    def to_param(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: Dict[str, Any]

    def to_param(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False

    def to_param(self) -> Dict[str, Any]:
        param: Dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            param["is_error"] = True
        return param


Block = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Turn:
    role: str  # "user" or "assistant"
    content: List[Block]

    def to_param(self) -> Dict[str, Any]:
        return {"role": self.role, "content": [block.to_param() for block in self.content]}


@dataclass
class ConversationState:
    """Ordered turns of one iteration's conversation."""

    turns: List[Turn] = field(default_factory=list)

    def add(self, role: str, *blocks: Block) -> None:
        self.turns.append(Turn(role=role, content=list(blocks)))

    def unresolved_tool_use_ids(self) -> List[str]:
        """Tool uses that do not have exactly one matching result after them."""
        problems: List[str] = []
        for index, turn in enumerate(self.turns):
            for block in turn.content:
                if not isinstance(block, ToolUseBlock):
                    continue
                results = [
                    later
                    for later_turn in self.turns[index + 1:]
                    for later in later_turn.content
                    if isinstance(later, ToolResultBlock) and later.tool_use_id == block.id
                ]
                if len(results) != 1:
                    problems.append(block.id)
        return problems

    def to_params(self) -> List[Dict[str, Any]]:
        return [turn.to_param() for turn in self.turns]


# =============================================================================
# Completion service
# =============================================================================


@dataclass
class CompletionResponse:
    """Service response converted to content blocks."""

    content: List[Block]
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))


class CompletionService(Protocol):
    """Anything that can answer a completion request."""

    def create(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> CompletionResponse:
        ...


class AnthropicCompletionService:
    """Completion service backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 8192,
        timeout: int = 600,
    ):
        """Initialize the service.

        Args:
            api_key: Anthropic API key. If None, the SDK reads ANTHROPIC_API_KEY.
            model: Model to use.
            max_tokens: Maximum tokens per response.
            timeout: Request timeout in seconds.
        """
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._api_key = api_key
        self._client = None

    @classmethod
    def from_config(cls, config: Config) -> AnthropicCompletionService:
        return cls(
            api_key=config.api_key,
            model=config.model,
            max_tokens=config.max_tokens,
            timeout=config.request_timeout,
        )

    @property
    def client(self):
        """Lazy initialization of Anthropic client."""
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self._api_key, timeout=self.timeout)
        return self._client

    def create(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> CompletionResponse:
        """Request one completion.

        Raises:
            ServiceError: On any API failure or unexpected response shape.
        """
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            raise ServiceError(f"Anthropic API error: {e}") from e

        try:
            return self._convert(response)
        except (AttributeError, TypeError, KeyError) as e:
            raise ServiceError(f"Unexpected response from completion service: {e}") from e

    @staticmethod
    def _convert(response: Any) -> CompletionResponse:
        content: List[Block] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                content.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))
            else:
                logger.debug(f"Ignoring content block of type {block.type}")

        usage = getattr(response, "usage", None)
        return CompletionResponse(
            content=content,
            stop_reason=response.stop_reason,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )


# =============================================================================
# Conversation loop
# =============================================================================


@dataclass
class IterationResult:
    """Result of one iteration of the conversation loop."""

    success: bool
    is_complete: bool = False
    task_description: str = ""
    decisions: List[str] = field(default_factory=list)
    summary: str = ""
    files_changed: List[str] = field(default_factory=list)
    error: Optional[str] = None
    output: str = ""


class LoopReporter(Protocol):
    """Receives live events from the loop (terminal rendering)."""

    def on_text(self, text: str) -> None: ...

    def on_tool_call(self, name: str, tool_input: Dict[str, Any]) -> None: ...

    def on_tool_result(self, name: str, output: str) -> None: ...

    def on_file_change(self, path: str, content: Optional[str]) -> None: ...


class ConversationLoop:
    """Runs one iteration: completions and tool calls until the model stops."""

    def __init__(
        self,
        service: CompletionService,
        registry: ToolRegistry,
        config: Config,
        reporter: Optional[LoopReporter] = None,
        run_log: Optional[LoopLogger] = None,
    ):
        self.service = service
        self.registry = registry
        self.dispatcher = ToolDispatcher(registry)
        self.config = config
        self.reporter = reporter
        self.run_log = run_log
        self.last_state: Optional[ConversationState] = None

    def run(self, system_prompt: str, instruction: str = INITIAL_INSTRUCTION) -> IterationResult:
        """Run one iteration.

        Args:
            system_prompt: System prompt for every request of this iteration.
            instruction: Initial user message.

        Returns:
            IterationResult. Service failures and exhausting ``max_turns``
            produce ``success=False``; they are never raised.
        """
        state = ConversationState()
        state.add("user", TextBlock(instruction))
        self.last_state = state

        tools = self.registry.to_params()
        working_dir = Path(self.config.working_dir)
        output_parts: List[str] = []
        files_changed: List[str] = []
        is_complete = False
        service_calls = 0

        def accumulated() -> str:
            return "".join(output_parts)

        while True:
            if service_calls >= self.config.max_turns:
                error = f"Conversation exceeded {self.config.max_turns} turns without finishing"
                logger.warning(error)
                return IterationResult(
                    success=False,
                    files_changed=files_changed,
                    error=error,
                    output=accumulated(),
                )

            unresolved = state.unresolved_tool_use_ids()
            if unresolved:
                raise RuntimeError(f"Tool uses without exactly one result: {', '.join(unresolved)}")

            service_calls += 1
            started = time.monotonic()
            try:
                response = self.service.create(system_prompt, state.to_params(), tools)
            except ServiceError as e:
                self._log_service_call(started, success=False, error=str(e))
                logger.error(f"Completion request failed: {e}")
                return IterationResult(
                    success=False,
                    files_changed=files_changed,
                    error=str(e),
                    output=accumulated(),
                )
            self._log_service_call(started, response=response)

            pending_text: List[Block] = []
            has_tool_use = False

            for block in response.content:
                if isinstance(block, TextBlock):
                    output_parts.append(block.text + "\n")
                    if COMPLETION_MARKER in block.text:
                        is_complete = True
                    if self.reporter:
                        self.reporter.on_text(block.text)
                    pending_text.append(block)

                elif isinstance(block, ToolUseBlock):
                    has_tool_use = True
                    result = self._execute(block, working_dir, files_changed)
                    state.add("assistant", *pending_text, block)
                    state.add("user", result)
                    pending_text = []

            if not has_tool_use:
                if pending_text:
                    state.add("assistant", *pending_text)
                break

            if response.stop_reason == "end_turn":
                break

        output = accumulated()
        parsed = parse_structured_output(output)
        task_description = parsed.task_description or find_task_hint(output) or "Task completed"

        return IterationResult(
            success=True,
            is_complete=is_complete,
            task_description=task_description,
            decisions=parsed.decisions,
            summary=parsed.summary,
            files_changed=files_changed,
            output=output,
        )

    def _execute(self, block: ToolUseBlock, working_dir: Path, files_changed: List[str]) -> ToolResultBlock:
        """Dispatch one tool use and build its result block."""
        if self.reporter:
            self.reporter.on_tool_call(block.name, block.input)

        logger.debug(f"Tool call: {block.name} ({block.id})")
        output = self.dispatcher.dispatch(block.name, block.input, working_dir)
        is_error = output.startswith("Error") or output.startswith("Unknown tool:")

        if self.run_log:
            self.run_log.log_tool_call(block.name, is_error=is_error)

        if block.name == WRITE_TOOL:
            path = block.input.get("path") if isinstance(block.input, dict) else None
            if path:
                files_changed.append(str(path))
                if self.reporter:
                    self.reporter.on_file_change(str(path), block.input.get("content"))

        if self.reporter:
            self.reporter.on_tool_result(block.name, output)

        return ToolResultBlock(tool_use_id=block.id, content=output, is_error=is_error)

    def _log_service_call(
        self,
        started: float,
        response: Optional[CompletionResponse] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> None:
        if self.run_log is None:
            return
        self.run_log.log_service_call(
            input_tokens=response.input_tokens if response else 0,
            output_tokens=response.output_tokens if response else 0,
            success=success,
            error=error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
