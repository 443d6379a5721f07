"""Child-session orchestration: work items, return tools, orchestrator, scheduler."""

from subtask.orchestration.completion import (
    MAX_VALIDATION_ATTEMPTS,
    ErrorReportTool,
    PendingCompletion,
    ReturnTool,
)
from subtask.orchestration.models import (
    ChildSessionOutcome,
    CompletionResult,
    FanOutResult,
    WorkItem,
)
from subtask.orchestration.runner import ChildSessionOrchestrator
from subtask.orchestration.scheduler import FanOutScheduler
from subtask.orchestration.workitems import resolve

__all__ = [
    "MAX_VALIDATION_ATTEMPTS",
    "ChildSessionOrchestrator",
    "ChildSessionOutcome",
    "CompletionResult",
    "ErrorReportTool",
    "FanOutResult",
    "FanOutScheduler",
    "PendingCompletion",
    "ReturnTool",
    "WorkItem",
    "resolve",
]
