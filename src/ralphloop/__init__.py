"""Ralph: autonomous coding loop driven by a PRD and Claude tool use."""

__version__ = "1.0.0"
