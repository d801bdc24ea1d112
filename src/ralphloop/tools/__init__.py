"""Tools the model can invoke during an iteration.

Usage:
    from ralphloop.tools import ToolDispatcher, build_default_registry

    registry = build_default_registry(config)
    output = ToolDispatcher(registry).dispatch("read_file", {"path": "README.md"}, workdir)
"""

from .base import Tool, ToolDescriptor, ToolExecutionError, ToolHandler
from .registry import ToolDispatcher, ToolRegistry, build_default_registry

__all__ = [
    "Tool",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolHandler",
    "ToolRegistry",
    "build_default_registry",
]
