"""
Return Tools — How a Child Says "Done".

A child session can only hand a result back by calling a tool. For every
child the orchestrator builds a fresh pair of them, both bound to the same
PendingCompletion:

  ReturnTool      success report, validated against the return parameters
  ErrorReportTool failure report, validated against the error parameters

Invalid calls are answered with a validation message so the model can fix
its arguments and try again. After MAX_VALIDATION_ATTEMPTS consecutive
failures the completion is resolved with a ProtocolFault, which aborts the
whole delegation. Once the completion is resolved, further calls change
nothing.

Instances are never shared between children; each one carries its own
failure counter.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Iterable

import structlog

from subtask.descriptors import (
    ParameterDescriptor,
    ensure_unique_names,
    parameters_schema,
    validate_payload,
)
from subtask.errors import ProtocolFault
from subtask.orchestration.models import CompletionResult
from subtask.tools.registry import ToolDefinition

logger = structlog.get_logger(__name__)

MAX_VALIDATION_ATTEMPTS = 5
DEFAULT_REPORTED_ERROR = "An error was reported."
TOOL_CATEGORY = "subtask"


class PendingCompletion:
    """Single-resolution slot holding the answer for one child session.

    Must be created inside a running event loop. The first call to
    ``resolve`` or ``fault`` wins; later calls return False.
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._future: asyncio.Future[CompletionResult] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def future(self) -> asyncio.Future[CompletionResult]:
        return self._future

    def resolve(self, result: CompletionResult) -> bool:
        if self._future.done():
            return False
        self._future.set_result(result)
        return True

    def fault(self, exc: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(exc)
        return True

    def result(self) -> CompletionResult:
        """The recorded result; raises the fault if one was recorded."""
        return self._future.result()

    async def wait(self) -> CompletionResult:
        return await asyncio.shield(self._future)


class _CompletionTool(ABC):
    """Shared validate / retry / resolve behaviour of both return tools."""

    def __init__(
        self,
        completion: PendingCompletion,
        *,
        name: str,
        description: str,
        parameters: Iterable[ParameterDescriptor],
    ):
        self.parameters = list(parameters)
        ensure_unique_names(self.parameters, name)
        self.name = name
        self.description = description
        self.failures = 0
        self._completion = completion

    @property
    def session_id(self) -> str:
        return self._completion.session_id

    @property
    def attempts_left(self) -> int:
        return max(0, MAX_VALIDATION_ATTEMPTS - self.failures)

    def report(self, /, **payload: Any) -> str:
        """Tool handler: validate *payload* and resolve the completion."""
        session_id = self.session_id
        if self._completion.done:
            logger.debug("subtask.return_tool.ignored", tool=self.name, session_id=session_id)
            return (
                f"A result for session {session_id} has already been recorded. "
                "No further calls are needed."
            )

        validation = validate_payload(payload, self.parameters)
        if not validation.ok:
            self.failures += 1
            summary = validation.summary()
            logger.info(
                "subtask.return_tool.validation_failed",
                tool=self.name,
                session_id=session_id,
                attempt=self.failures,
                problems=summary,
            )
            if self.failures >= MAX_VALIDATION_ATTEMPTS:
                self._completion.fault(
                    ProtocolFault(
                        f"Child session {session_id} made {self.failures} invalid "
                        f"'{self.name}' calls: {summary}",
                        session_id=session_id,
                    )
                )
                logger.warning(
                    "subtask.return_tool.retries_exhausted",
                    tool=self.name,
                    session_id=session_id,
                )
                return (
                    f"Validation failed: {summary}. Session {session_id} will now "
                    "close due to exceeded retry attempts."
                )
            return (
                f"Validation failed: {summary}. Correct the parameters and call "
                f"'{self.name}' again ({self.attempts_left} attempts left)."
            )

        self._completion.resolve(self._build_result(validation.values))
        logger.info("subtask.return_tool.resolved", tool=self.name, session_id=session_id)
        return self._confirmation()

    def to_tool_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=parameters_schema(self.parameters),
            handler=self.report,
            category=TOOL_CATEGORY,
        )

    @abstractmethod
    def _build_result(self, values: dict[str, Any]) -> CompletionResult:
        """The completion this tool resolves for a valid payload."""

    @abstractmethod
    def _confirmation(self) -> str:
        """Text returned to the child once its report is recorded."""


class ReturnTool(_CompletionTool):
    """Success report: carries the validated return fields to the parent."""

    def _build_result(self, values: dict[str, Any]) -> CompletionResult:
        return CompletionResult(success=True, payload=values, reported_by=self.name)

    def _confirmation(self) -> str:
        return (
            "Result recorded and returned to the parent session. "
            f"Session {self.session_id} will now close."
        )


class ErrorReportTool(_CompletionTool):
    """Failure report: the child could not finish and says why."""

    def _build_result(self, values: dict[str, Any]) -> CompletionResult:
        message = values.get("error_message")
        return CompletionResult(
            success=False,
            payload=values,
            error_message=str(message) if message else DEFAULT_REPORTED_ERROR,
            reported_by=self.name,
        )

    def _confirmation(self) -> str:
        return (
            "Error recorded and reported to the parent session. "
            f"Session {self.session_id} will now close."
        )


def build_return_tools(
    completion: PendingCompletion,
    *,
    return_name: str,
    return_description: str,
    return_parameters: Iterable[ParameterDescriptor],
    error_name: str,
    error_description: str,
    error_parameters: Iterable[ParameterDescriptor],
) -> tuple[ReturnTool, ErrorReportTool]:
    """Fresh success/error tool pair for one child, sharing *completion*."""
    return (
        ReturnTool(
            completion,
            name=return_name,
            description=return_description,
            parameters=return_parameters,
        ),
        ErrorReportTool(
            completion,
            name=error_name,
            description=error_description,
            parameters=error_parameters,
        ),
    )
