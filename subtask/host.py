"""
Host Interface — What the Engine Needs from the Application Around It.

The delegation engine never owns sessions. It borrows them from the host
application through two small abstract classes:

  Host         opens existing sessions, starts child sessions, closes them
  HostSession  one conversation: an id, its parent's id, a tool registry,
               and a way to send it a message

``HostSession.send_message`` is expected to return when the model's turn
for that message is over, including any tool calls it made along the way.
The orchestrator relies on this to notice a child that finished talking
without ever reporting a result.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from subtask.tools.registry import ToolRegistry


class HostSession(ABC):
    """A single conversational session owned by the host application."""

    id: str
    parent_id: Optional[str]
    tools: ToolRegistry

    @abstractmethod
    async def send_message(self, text: str) -> None:
        """Send a user-role message and wait for the model's turn to finish."""


class Host(ABC):
    """Session lifecycle operations provided by the host application."""

    @abstractmethod
    async def open_session(self, session_id: str) -> HostSession:
        """Open an existing session by id. Raise if it cannot be opened."""

    @abstractmethod
    async def start_child_session(self, parent: Optional[HostSession]) -> HostSession:
        """Create a fresh session whose ``parent_id`` points at *parent*."""

    @abstractmethod
    async def close_session(self, session: HostSession) -> Optional[bytes]:
        """Close *session*, optionally returning its serialized state."""
