"""
Message Filters — Last Look Before a Child Hears Anything.

Host applications often run every outgoing message through a stack of
filters (redaction, prompt decoration, policy checks). The same idea applies
to what the orchestrator sends a child: the rendered prompt and the one-time
urging message.

A filter receives the message and a ``next_`` continuation. It may edit
``message.text``, call ``await next_()`` to hand over to the rest of the
chain, or return False without calling it to veto the message.

FilterChain drives the filters with a position index rather than nesting
wrapper objects, so a chain of any length adds one frame per active filter
and cancellation propagates through plain awaits.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Literal, Optional

import structlog

logger = structlog.get_logger(__name__)

Next = Callable[[], Awaitable[bool]]


@dataclass
class OutgoingMessage:
    """A message about to be sent to a child session."""

    text: str
    session_id: str
    phase: Literal["prompt", "urging"] = "prompt"
    item_index: Optional[int] = None


class MessageFilter(ABC):
    """One link in a FilterChain."""

    @abstractmethod
    async def on_message(self, message: OutgoingMessage, next_: Next) -> bool:
        """Handle *message*; return False to veto, else ``await next_()``."""


class FilterChain:
    """Ordered filters run with an explicit continuation."""

    def __init__(self, filters: Optional[Iterable[MessageFilter]] = None):
        self._filters: list[MessageFilter] = list(filters or [])

    def __len__(self) -> int:
        return len(self._filters)

    async def run(self, message: OutgoingMessage) -> bool:
        """Pass *message* through every filter; True when none vetoed it."""
        position = 0

        async def next_() -> bool:
            nonlocal position
            if position >= len(self._filters):
                return True
            current = self._filters[position]
            position += 1
            return await current.on_message(message, next_)

        accepted = await next_()
        if not accepted:
            logger.info(
                "subtask.filters.vetoed",
                session_id=message.session_id,
                phase=message.phase,
                stopped_at=position,
            )
        return accepted
