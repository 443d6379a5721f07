"""
Orchestration Data Models — The Language of Fan-Out.

WorkItem describes *what* one child session should do. CompletionResult is
what the child reported through its return tools. ChildSessionOutcome
describes *what happened* to one work item, and FanOutResult aggregates the
outcomes of one delegation call.

All of these live for exactly one invocation and are never persisted.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class WorkItem(BaseModel):
    """One unit of delegated work and the template context for its prompt."""

    index: int
    name: Optional[str] = None
    value: Any = None
    context: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        """Human-readable ``name=value`` tag used in messages to the parent."""
        if self.name is None:
            return f"#{self.index}"
        value = self.value if isinstance(self.value, str) else repr(self.value)
        if len(value) > 80:
            value = value[:77] + "..."
        return f"{self.name}={value}"


class CompletionResult(BaseModel):
    """What a child reported through one of its return tools."""

    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    reported_by: str = ""


class ChildSessionOutcome(BaseModel):
    """Outcome of one child session."""

    item: WorkItem
    status: Literal["succeeded", "failed", "timed_out"]
    payload: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    session_id: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class FanOutResult(BaseModel):
    """Aggregated outcome of one delegation call."""

    strategy: Literal["wait_for_all", "first_wins", "stream"] = "wait_for_all"
    status: Literal["completed", "partial", "failed"] = "completed"
    outcomes: list[ChildSessionOutcome] = Field(default_factory=list)
    total_items: int = 0
    elapsed_seconds: float = 0.0
    winner: Optional[ChildSessionOutcome] = None

    @property
    def succeeded_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.succeeded)

    @property
    def errors(self) -> list[ChildSessionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]
