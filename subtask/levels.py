"""
Recursion Guard — How Deep Is This Session?

A child session can itself be offered the delegation tool, which means a
model could delegate forever. The guard walks the parent chain through the
host to count how far below the root a session sits, and the delegation tool
is only offered while that depth is below the configured maximum.

The level is recomputed on every call; sessions can be re-parented by the
host and nothing here is cached.

If an ancestor cannot be opened the guard fails open: it logs the failure
and allows delegation. A broken session store should degrade delegation
depth control, not take the delegation tool away from every session.
"""

from __future__ import annotations

import structlog

from subtask.errors import HostSessionError
from subtask.host import Host, HostSession

logger = structlog.get_logger(__name__)

# Stop walking here; a longer chain almost certainly means a cycle.
MAX_WALK_DEPTH = 100


class RecursionGuard:
    """Compute a session's nesting level and gate delegation on it."""

    def __init__(self, host: Host, max_level: int):
        self._host = host
        self._max_level = max_level

    @property
    def max_level(self) -> int:
        return self._max_level

    @property
    def enabled(self) -> bool:
        return self._max_level >= 0

    async def current_level(self, session: HostSession) -> int:
        """Number of ancestors above *session* (0 for a root session)."""
        level = 0
        parent_id = session.parent_id
        while parent_id and level < MAX_WALK_DEPTH:
            parent = await self._host.open_session(parent_id)
            if parent is None:
                raise HostSessionError(f"Parent session '{parent_id}' could not be opened")
            level += 1
            parent_id = parent.parent_id
        if parent_id and level >= MAX_WALK_DEPTH:
            logger.warning(
                "subtask.recursion.walk_truncated",
                session_id=session.id,
                max_depth=MAX_WALK_DEPTH,
            )
        return level

    async def allows_delegation(self, session: HostSession) -> bool:
        """True when *session* may be offered the delegation tool."""
        if not self.enabled:
            return True
        try:
            level = await self.current_level(session)
        except Exception as exc:
            logger.error(
                "subtask.recursion.walk_failed",
                session_id=session.id,
                error=str(exc),
                exc_info=True,
            )
            return True
        allowed = level < self._max_level
        if not allowed:
            logger.info(
                "subtask.recursion.limit_reached",
                session_id=session.id,
                level=level,
                max_level=self._max_level,
            )
        return allowed
