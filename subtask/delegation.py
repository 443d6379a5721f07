"""
Delegation Tool — The Parent's Way In.

SubtaskTool is what a host application wires into a session: a tool (named
``create_subtask`` by default) that, when the parent model calls it, splits
the request into work items, runs each one in its own child session and
hands the joined result back as text.

Registration is gated by the recursion guard. A session already at the
maximum depth simply never sees the tool.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

import structlog

from subtask.config import SubtaskConfig
from subtask.descriptors import parameters_schema, validate_payload
from subtask.errors import ConfigurationError
from subtask.filters import FilterChain, MessageFilter
from subtask.host import Host, HostSession
from subtask.levels import RecursionGuard
from subtask.orchestration.models import ChildSessionOutcome, FanOutResult
from subtask.orchestration.runner import ChildSessionOrchestrator
from subtask.orchestration.scheduler import FanOutScheduler
from subtask.orchestration.workitems import resolve
from subtask.templating import JinjaTemplateRenderer, TemplateRenderer
from subtask.tools.registry import ToolDefinition

logger = structlog.get_logger(__name__)

TOOL_CATEGORY = "delegation"


class SubtaskTool:
    """Expose one SubtaskConfig as a delegation tool on host sessions."""

    def __init__(
        self,
        host: Host,
        config: SubtaskConfig,
        *,
        renderer: Optional[TemplateRenderer] = None,
        filters: Optional[Iterable[MessageFilter]] = None,
    ):
        self._host = host
        self._config = config
        self._renderer = renderer or JinjaTemplateRenderer()
        self._filters = FilterChain(filters)
        self._guard = RecursionGuard(host, config.max_recursion_level)

    @property
    def name(self) -> str:
        return self._config.function_name

    @property
    def config(self) -> SubtaskConfig:
        return self._config

    def tool_definition(self, session: HostSession) -> ToolDefinition:
        """Tool definition whose handler delegates on behalf of *session*."""

        async def handler(**payload: Any) -> str:
            return await self.invoke(session, **payload)

        if self._config.input_parameters:
            schema = parameters_schema(self._config.input_parameters)
        else:
            schema = {"type": "object", "properties": {}, "additionalProperties": True}
        return ToolDefinition(
            name=self._config.function_name,
            description=self._config.function_description,
            input_schema=schema,
            handler=handler,
            category=TOOL_CATEGORY,
        )

    async def register(self, session: HostSession) -> bool:
        """Offer the tool to *session* unless it is already too deep.

        Returns False, and registers nothing, when the recursion guard says
        no. That is not an error.
        """
        if not await self._guard.allows_delegation(session):
            return False
        session.tools.register(self.tool_definition(session), allow_override=True)
        logger.info(
            "subtask.tool.registered",
            tool=self._config.function_name,
            session_id=session.id,
        )
        return True

    async def run(self, session: HostSession, payload: dict[str, Any]) -> FanOutResult:
        """Delegate *payload* from *session* and return the joined result.

        ConfigurationError (including a session that is already too deep)
        and ProtocolFault propagate to the caller.
        """
        config = self._config
        config.check()
        if not await self._guard.allows_delegation(session):
            raise ConfigurationError(
                f"Session {session.id} is at the maximum recursion level "
                f"({config.max_recursion_level}) and cannot delegate"
            )
        items = resolve(config.fan_out, payload, config)

        orchestrator = ChildSessionOrchestrator(
            self._host,
            config,
            parent=session,
            renderer=self._renderer,
            filters=self._filters,
        )
        scheduler = FanOutScheduler(
            orchestrator,
            max_concurrency=config.fan_out.max_concurrency,
            timeout=config.fan_out.child_timeout,
        )
        strategy = config.fan_out.join_strategy
        if config.fan_out.mode == "disabled":
            strategy = "wait_for_all"

        async def notify_parent(outcome: ChildSessionOutcome) -> None:
            try:
                await session.send_message(_stream_message(outcome))
            except Exception as exc:
                logger.warning(
                    "subtask.stream.notify_failed",
                    session_id=session.id,
                    item=outcome.item.index,
                    error=str(exc),
                )

        logger.info(
            "subtask.delegation.started",
            tool=config.function_name,
            session_id=session.id,
            mode=config.fan_out.mode,
            strategy=strategy,
            items=len(items),
        )
        return await scheduler.run(
            items,
            strategy,
            on_outcome=notify_parent if strategy == "stream" else None,
        )

    async def invoke(self, session: HostSession, **payload: Any) -> str:
        """Tool handler: delegate and describe the result for the parent model."""
        if not await self._guard.allows_delegation(session):
            return (
                f"Maximum recursion level ({self._config.max_recursion_level}) reached. "
                "This session cannot delegate further."
            )
        request = dict(payload)
        if self._config.input_parameters:
            validation = validate_payload(payload, self._config.input_parameters)
            if not validation.ok:
                return f"Invalid {self._config.function_name} call: {validation.summary()}"
            request.update(validation.values)

        result = await self.run(session, request)
        return format_result(result, single=self._config.fan_out.mode == "disabled")


def _to_json(payload: Optional[dict[str, Any]]) -> str:
    return json.dumps(payload or {}, ensure_ascii=False)


def _stream_message(outcome: ChildSessionOutcome) -> str:
    if outcome.succeeded:
        return f"Subtask {outcome.item.label} completed successfully: {_to_json(outcome.payload)}"
    return f"Subtask {outcome.item.label} failed: {outcome.error}"


def _outcome_line(outcome: ChildSessionOutcome) -> str:
    if outcome.succeeded:
        return f"- [{outcome.item.label}]: {_to_json(outcome.payload)}"
    return f"- [{outcome.item.label}]: {outcome.status}: {outcome.error}"


def format_result(result: FanOutResult, *, single: bool = False) -> str:
    """Describe *result* as the text the parent model receives."""
    if result.total_items == 0:
        return "No subtasks were started: the request produced no work items."

    if single and result.outcomes:
        outcome = result.outcomes[0]
        if outcome.succeeded:
            return f"Subtask completed successfully:\n{_to_json(outcome.payload)}"
        return f"Subtask failed: {outcome.error}"

    if result.strategy == "first_wins":
        if result.winner is not None:
            return (
                f"First successful subtask [{result.winner.item.label}]:\n"
                f"{_to_json(result.winner.payload)}"
            )
        lines = [f"No subtask succeeded ({len(result.outcomes)} attempted)."]
        lines.extend(_outcome_line(outcome) for outcome in result.outcomes)
        return "\n".join(lines)

    if result.strategy == "stream":
        lines = [
            f"All {result.total_items} subtasks finished: "
            f"{result.succeeded_count} succeeded, {result.failed_count} failed."
        ]
        if result.errors:
            lines.append("Errors:")
            lines.extend(
                f"- [{outcome.item.label}]: {outcome.error}" for outcome in result.errors
            )
        return "\n".join(lines)

    lines = [
        f"Completed {result.total_items} subtasks: "
        f"{result.succeeded_count} succeeded, {result.failed_count} failed."
    ]
    lines.extend(_outcome_line(outcome) for outcome in result.outcomes)
    return "\n".join(lines)
