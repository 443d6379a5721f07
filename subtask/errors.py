"""
Errors — What Can Go Wrong When Work Is Delegated.

Four families, each with a different fate:

  ConfigurationError   raised synchronously before any child session exists
  ProtocolFault        the child broke the completion protocol; aborts the
                       whole fan-out whatever the join strategy
  TemplateRenderError  a prompt could not be rendered; only that item fails
  HostSessionError     the host could not open or talk to a session

Validation problems with a return-tool payload are not exceptions at all:
they are returned to the child as text so it can try again.
"""

from __future__ import annotations

from typing import Optional


class SubtaskError(Exception):
    """Base class for every error raised by the delegation engine."""


class ConfigurationError(SubtaskError):
    """The tool configuration cannot be used as given."""


class ProtocolFault(SubtaskError):
    """A child session failed the completion protocol.

    Raised when the validation retry budget is exhausted or when a child
    never produces a result. Never folded into an aggregate result.
    """

    def __init__(self, message: str, *, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class TemplateRenderError(SubtaskError):
    """An outgoing message template could not be rendered."""


class HostSessionError(SubtaskError):
    """The host application failed to open, message or walk a session."""


class FilterRejectedError(SubtaskError):
    """A message filter vetoed an outgoing message."""


# Errors that fail a single work item instead of the whole run.
RECOVERABLE_ERRORS: tuple[type[SubtaskError], ...] = (
    TemplateRenderError,
    HostSessionError,
    FilterRejectedError,
)
