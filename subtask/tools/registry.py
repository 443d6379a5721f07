"""
Tool Registry — The Tools a Session Can See.

Every host session owns a ToolRegistry. The delegation engine writes into it
twice: the parent session gets the delegation tool (when the recursion guard
allows it), and each child session gets its own pair of return tools for as
long as that child lives.

The host reads the registry before each model turn (``get_api_tools``) and
routes the model's tool calls back through ``call()``, which accepts plain
functions and coroutines alike.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ToolDefinition:
    """
    One callable tool as advertised to a session's model.

    ``input_schema`` is sent to the model verbatim. ``handler`` receives the
    model's arguments as keywords; whatever it returns is the tool result
    the model reads.
    """
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Optional[Callable] = None
    category: str = "general"     # "delegation" or "subtask" for engine tools
    enabled: bool = True

    def to_api_format(self) -> dict[str, Any]:
        """The ``{name, description, input_schema}`` triple a model call expects."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Name-keyed tool catalog for a single session."""

    def __init__(self):
        self._by_name: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition, *, allow_override: bool = False) -> None:
        """Add *tool*. Replacing a tool of the same name needs ``allow_override``."""
        previous = self._by_name.get(tool.name)
        if previous is not None and not allow_override:
            logger.warning(
                "subtask.registry.collision",
                tool=tool.name,
                registered_category=previous.category,
                incoming_category=tool.category,
            )
            raise ValueError(
                f"A tool named '{tool.name}' is already registered in this session; "
                "pass allow_override=True to replace it"
            )
        self._by_name[tool.name] = tool
        logger.debug(
            "subtask.registry.added",
            tool=tool.name,
            category=tool.category,
            replaced=previous is not None,
        )

    def unregister(self, name: str) -> bool:
        """Drop *name*; False when nothing was registered under it."""
        removed = self._by_name.pop(name, None)
        if removed is None:
            return False
        logger.debug("subtask.registry.removed", tool=name)
        return True

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get_api_tools(self, categories: Optional[list[str]] = None) -> list[dict[str, Any]]:
        """Enabled tools in API format, optionally limited to *categories*."""
        wanted = set(categories) if categories else None
        return [
            definition.to_api_format()
            for definition in self._by_name.values()
            if definition.enabled and (wanted is None or definition.category in wanted)
        ]

    def list_tools(self) -> list[dict[str, Any]]:
        """Name, category and enabled flag of every tool, disabled ones included."""
        return [
            {"name": name, "category": definition.category, "enabled": definition.enabled}
            for name, definition in self._by_name.items()
        ]

    async def call(self, name: str, arguments: Optional[dict[str, Any]] = None) -> Any:
        """Invoke a registered tool's handler with *arguments* as keywords.

        Raises KeyError for unknown or disabled tools and ValueError for a
        tool registered without a handler.
        """
        definition = self._by_name.get(name)
        if definition is None or not definition.enabled:
            raise KeyError(f"Unknown tool: {name}")
        if definition.handler is None:
            raise ValueError(f"Tool '{name}' has no handler")
        outcome = definition.handler(**(arguments or {}))
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    @property
    def count(self) -> int:
        return len(self._by_name)
