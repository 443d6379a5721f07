"""
Child Session Orchestrator — One Work Item, One Child, One Answer.

For a single work item the orchestrator:

  1. opens a child session under the parent
  2. registers a fresh pair of return tools in the child's registry
  3. renders the prompt from the item's context and sends it
  4. waits for the child to call a return tool, within one time budget
  5. unregisters the tools and closes the session, whatever happened

If the child's turn ends without a result, what happens next depends on
``dangling_behavior``:

  urge          send the urging message once and keep waiting; a second
                silent turn is a protocol fault
  report_error  resolve as a business failure with ``error_message``
  fail          protocol fault straight away

Running out of budget while the child is still busy is a protocol fault,
except under ``report_error`` where it becomes a ``timed_out`` outcome.
"""

from __future__ import annotations

import asyncio
import datetime
from typing import Literal, Optional

import structlog

from subtask.config import SubtaskConfig
from subtask.descriptors import ensure_unique_names
from subtask.errors import (
    ConfigurationError,
    FilterRejectedError,
    HostSessionError,
    ProtocolFault,
    SubtaskError,
    TemplateRenderError,
)
from subtask.filters import FilterChain, OutgoingMessage
from subtask.host import Host, HostSession
from subtask.orchestration.completion import PendingCompletion, build_return_tools
from subtask.orchestration.models import ChildSessionOutcome, CompletionResult, WorkItem
from subtask.templating import JinjaTemplateRenderer, TemplateRenderer

logger = structlog.get_logger(__name__)

NO_RESULT_MESSAGE = "child session failed to produce a result"


class ChildSessionOrchestrator:
    """Runs work items in child sessions of *parent*."""

    def __init__(
        self,
        host: Host,
        config: SubtaskConfig,
        *,
        parent: Optional[HostSession] = None,
        renderer: Optional[TemplateRenderer] = None,
        filters: Optional[FilterChain] = None,
    ):
        self._host = host
        self._config = config
        self._parent = parent
        self._renderer = renderer or JinjaTemplateRenderer()
        self._filters = filters or FilterChain()

    async def run(self, item: WorkItem, timeout: Optional[float] = None) -> ChildSessionOutcome:
        """Run *item* in a new child session and report what happened.

        Raises ConfigurationError before opening anything when the urging
        template is blank or a return tool declares duplicate parameter
        names, and ProtocolFault when the child breaks the completion
        protocol.
        """
        config = self._config
        if config.dangling_behavior == "urge" and not config.urging_message.strip():
            raise ConfigurationError("urging_message is empty; refusing to start a child session")
        ensure_unique_names(config.return_parameters, config.return_tool_name)
        ensure_unique_names(config.error_reporting.parameters, config.error_tool_name)

        budget = timeout or config.fan_out.child_timeout
        loop = asyncio.get_running_loop()
        started = loop.time()

        session = await self._start_session()
        registered: list[str] = []
        try:
            completion = PendingCompletion(session.id)
            tools = build_return_tools(
                completion,
                return_name=config.return_tool_name,
                return_description=config.return_tool_description,
                return_parameters=config.return_parameters,
                error_name=config.error_tool_name,
                error_description=config.error_reporting.tool_description,
                error_parameters=config.error_reporting.parameters,
            )
            for tool in tools:
                session.tools.register(tool.to_tool_definition(), allow_override=True)
                registered.append(tool.name)

            logger.info(
                "subtask.child.spawned",
                session_id=session.id,
                parent_id=session.parent_id,
                item=item.index,
                timeout=budget,
            )
            prompt = await self._prepare(config.prompt_message, item, session, "prompt")
            result = await self._await_completion(
                session, completion, item, prompt, deadline=started + budget
            )
            elapsed = loop.time() - started
            return self._to_outcome(item, session, result, elapsed, budget)
        finally:
            await self._cleanup(session, registered)

    async def _start_session(self) -> HostSession:
        try:
            return await self._host.start_child_session(self._parent)
        except SubtaskError:
            raise
        except Exception as exc:
            raise HostSessionError(f"Could not start a child session: {exc}") from exc

    async def _prepare(
        self,
        template: str,
        item: WorkItem,
        session: HostSession,
        phase: Literal["prompt", "urging"],
    ) -> str:
        """Render *template* for *item* and run it through the filter chain."""
        message = OutgoingMessage(
            text=self._renderer.render(template, item.context),
            session_id=session.id,
            phase=phase,
            item_index=item.index,
        )
        if not await self._filters.run(message):
            raise FilterRejectedError(
                f"The {phase} message for session {session.id} was rejected by a filter"
            )
        return message.text

    async def _send(self, session: HostSession, text: str) -> None:
        try:
            await session.send_message(text)
        except SubtaskError:
            raise
        except Exception as exc:
            raise HostSessionError(f"Sending to session {session.id} failed: {exc}") from exc

    async def _await_completion(
        self,
        session: HostSession,
        completion: PendingCompletion,
        item: WorkItem,
        prompt: str,
        *,
        deadline: float,
    ) -> Optional[CompletionResult]:
        """Wait for the child's report. None means the budget ran out."""
        config = self._config
        loop = asyncio.get_running_loop()
        turn: Optional[asyncio.Task] = asyncio.create_task(self._send(session, prompt))
        urged = False
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                waiters: set[asyncio.Future] = {completion.future}
                if turn is not None:
                    waiters.add(turn)
                await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

                if completion.done:
                    return completion.result()
                if turn is None or not turn.done():
                    continue

                # The child's turn is over and nothing was reported.
                finished, turn = turn, None
                finished.result()
                logger.info(
                    "subtask.child.dangling",
                    session_id=session.id,
                    behavior=config.dangling_behavior,
                    urged=urged,
                )
                if config.dangling_behavior == "report_error":
                    completion.resolve(
                        CompletionResult(success=False, error_message=config.error_message)
                    )
                    return completion.result()
                if config.dangling_behavior == "fail" or urged:
                    raise ProtocolFault(
                        f"{NO_RESULT_MESSAGE} (session {session.id})", session_id=session.id
                    )
                urged = True
                urging = await self._prepare(config.urging_message, item, session, "urging")
                logger.info("subtask.child.urged", session_id=session.id, item=item.index)
                turn = asyncio.create_task(self._send(session, urging))
        finally:
            if turn is not None:
                if not turn.done():
                    turn.cancel()
                await asyncio.wait({turn})
                if not turn.cancelled():
                    turn.exception()

        if completion.done:
            return completion.result()
        logger.warning("subtask.child.timeout", session_id=session.id, item=item.index)
        if config.dangling_behavior == "report_error":
            completion.resolve(CompletionResult(success=False, error_message=config.error_message))
            return None
        raise ProtocolFault(
            f"{NO_RESULT_MESSAGE} within the time limit (session {session.id})",
            session_id=session.id,
        )

    def _to_outcome(
        self,
        item: WorkItem,
        session: HostSession,
        result: Optional[CompletionResult],
        elapsed: float,
        budget: float,
    ) -> ChildSessionOutcome:
        if result is None:
            outcome = ChildSessionOutcome(
                item=item,
                status="timed_out",
                error=f"{self._config.error_message} (timed out after {budget:g}s)",
                session_id=session.id,
                elapsed_seconds=elapsed,
            )
        elif result.success:
            outcome = ChildSessionOutcome(
                item=item,
                status="succeeded",
                payload=result.payload,
                session_id=session.id,
                elapsed_seconds=elapsed,
            )
        else:
            outcome = ChildSessionOutcome(
                item=item,
                status="failed",
                payload=result.payload or None,
                error=self._failure_text(session, result),
                session_id=session.id,
                elapsed_seconds=elapsed,
            )
        logger.info(
            "subtask.child.finished",
            session_id=session.id,
            item=item.index,
            status=outcome.status,
            elapsed=round(elapsed, 3),
        )
        return outcome

    def _failure_text(self, session: HostSession, result: CompletionResult) -> str:
        message = result.error_message or ""
        template = self._config.error_reporting.parent_message
        if result.reported_by != self._config.error_tool_name or not template.strip():
            return message
        context = dict(result.payload)
        context.update(
            function_name=self._config.function_name,
            session_id=session.id,
            timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            error_message=message,
            error_tool_name=self._config.error_tool_name,
        )
        try:
            return self._renderer.render(template, context)
        except TemplateRenderError as exc:
            logger.warning(
                "subtask.child.error_template_failed",
                session_id=session.id,
                error=str(exc),
            )
            return message

    async def _cleanup(self, session: HostSession, registered: list[str]) -> None:
        for name in registered:
            session.tools.unregister(name)
        try:
            await self._host.close_session(session)
        except Exception as exc:
            logger.warning("subtask.child.close_failed", session_id=session.id, error=str(exc))
            return
        logger.debug("subtask.child.closed", session_id=session.id)
