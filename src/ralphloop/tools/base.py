"""Core tool types shared by the tool modules and the registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Tuple


class ToolExecutionError(Exception):
    """Raised inside a tool implementation.

    Never escapes the dispatcher: it is converted into an ``Error: ...``
    string that the model receives as ordinary tool output.
    """

    pass


# (tool_input, working_dir) -> output text
ToolHandler = Callable[[Dict[str, Any], Path], str]


@dataclass(frozen=True)
class ToolDescriptor:
    """The wire contract advertised to the completion service for one tool."""

    name: str
    description: str
    properties: Dict[str, Dict[str, str]] = field(default_factory=dict)
    required: Tuple[str, ...] = ()

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {key: dict(value) for key, value in self.properties.items()},
            "required": list(self.required),
        }

    def to_param(self) -> Dict[str, Any]:
        """Tool declaration in Anthropic Messages API format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True)
class Tool:
    """A descriptor paired with the handler that implements it."""

    descriptor: ToolDescriptor
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.descriptor.name
