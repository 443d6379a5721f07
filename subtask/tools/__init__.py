"""Per-session tool catalog used by host sessions and the delegation engine."""

from subtask.tools.registry import ToolDefinition, ToolRegistry

__all__ = ["ToolDefinition", "ToolRegistry"]
