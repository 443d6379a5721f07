"""
subtask — Sub-agent delegation and fan-out for conversational sessions.

A parent session calls a delegation tool; the engine splits the request into
work items, runs each in its own child session with a dynamically generated
return tool, and joins the children's answers back into one result.
"""

from subtask.config import (
    ErrorReportingConfig,
    FanOutConfig,
    SubtaskConfig,
    SubtaskSettings,
)
from subtask.delegation import SubtaskTool, format_result
from subtask.descriptors import ParameterDescriptor, validate, validate_payload
from subtask.errors import (
    ConfigurationError,
    FilterRejectedError,
    HostSessionError,
    ProtocolFault,
    SubtaskError,
    TemplateRenderError,
)
from subtask.filters import FilterChain, MessageFilter, OutgoingMessage
from subtask.host import Host, HostSession
from subtask.levels import RecursionGuard
from subtask.logging_config import configure_logging
from subtask.orchestration import (
    ChildSessionOrchestrator,
    ChildSessionOutcome,
    FanOutResult,
    FanOutScheduler,
    PendingCompletion,
    WorkItem,
    resolve,
)
from subtask.templating import JinjaTemplateRenderer, TemplateRenderer
from subtask.tools import ToolDefinition, ToolRegistry

__version__ = "0.1.0"

__all__ = [
    "ChildSessionOrchestrator",
    "ChildSessionOutcome",
    "ConfigurationError",
    "ErrorReportingConfig",
    "FanOutConfig",
    "FanOutResult",
    "FanOutScheduler",
    "FilterChain",
    "FilterRejectedError",
    "Host",
    "HostSession",
    "HostSessionError",
    "JinjaTemplateRenderer",
    "MessageFilter",
    "OutgoingMessage",
    "ParameterDescriptor",
    "PendingCompletion",
    "ProtocolFault",
    "RecursionGuard",
    "SubtaskConfig",
    "SubtaskError",
    "SubtaskSettings",
    "SubtaskTool",
    "TemplateRenderError",
    "TemplateRenderer",
    "ToolDefinition",
    "ToolRegistry",
    "WorkItem",
    "configure_logging",
    "format_result",
    "resolve",
    "validate",
    "validate_payload",
]
