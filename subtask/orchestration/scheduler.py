"""
Fan-Out Scheduler — Many Children, One Answer.

Runs a ChildSessionOrchestrator over a list of work items, with at most
``max_concurrency`` children active at once, and joins their outcomes with
one of three strategies:

  wait_for_all  every item runs to completion; outcomes in index order
  first_wins    the first success wins; everything else is cancelled
  stream        outcomes are surfaced in completion order as they arrive

Business failures (the child reported an error, a prompt failed to render,
the host could not reach a session) are folded into the outcomes. A
ProtocolFault or ConfigurationError is never folded: all other children are
cancelled, and the error is re-raised to the caller. Cancelled children
still close their sessions because the orchestrator cleans up in
``finally``.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import AsyncGenerator, Awaitable, Callable, Iterable, Optional

import structlog

from subtask.errors import RECOVERABLE_ERRORS
from subtask.orchestration.models import ChildSessionOutcome, FanOutResult, WorkItem
from subtask.orchestration.runner import ChildSessionOrchestrator

logger = structlog.get_logger(__name__)

OutcomeCallback = Callable[[ChildSessionOutcome], Awaitable[None]]
JOIN_STRATEGIES = ("wait_for_all", "first_wins", "stream")


class FanOutScheduler:
    """Bounded-concurrency fan-out over one orchestrator."""

    def __init__(
        self,
        orchestrator: ChildSessionOrchestrator,
        *,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self._orchestrator = orchestrator
        self._max_concurrency = max_concurrency
        self._timeout = timeout

    def pool_size(self, item_count: int) -> int:
        configured = self._max_concurrency or os.cpu_count() or 1
        return max(1, min(configured, item_count))

    async def run(
        self,
        items: Iterable[WorkItem],
        strategy: str = "wait_for_all",
        *,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> FanOutResult:
        """Run every item and join the outcomes according to *strategy*."""
        if strategy not in JOIN_STRATEGIES:
            raise ValueError(f"Unknown join strategy: {strategy}")
        items = list(items)
        start = time.monotonic()
        logger.info("subtask.fanout.started", strategy=strategy, items=len(items))

        if not items:
            result = FanOutResult(strategy=strategy, status="completed", total_items=0)
        elif strategy == "wait_for_all":
            result = await self._wait_for_all(items)
        elif strategy == "first_wins":
            result = await self._first_wins(items)
        else:
            outcomes = []
            stream = self.stream(items)
            try:
                async for outcome in stream:
                    outcomes.append(outcome)
                    if on_outcome is not None:
                        await on_outcome(outcome)
            finally:
                await stream.aclose()
            result = self._aggregate("stream", items, outcomes)

        result.elapsed_seconds = time.monotonic() - start
        logger.info(
            "subtask.fanout.completed",
            strategy=strategy,
            status=result.status,
            items=len(items),
            succeeded=result.succeeded_count,
            failed=result.failed_count,
            elapsed=round(result.elapsed_seconds, 3),
        )
        return result

    async def stream(
        self,
        items: Iterable[WorkItem],
    ) -> AsyncGenerator[ChildSessionOutcome, None]:
        """Yield outcomes in completion order.

        Closing the iterator early cancels the children still running.
        """
        tasks = self._spawn(list(items))
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in _completion_order(tasks, done):
                    yield task.result()
        finally:
            await _cancel_all(pending)

    def _spawn(self, items: list[WorkItem]) -> list[asyncio.Task]:
        semaphore = asyncio.Semaphore(self.pool_size(len(items)))
        return [
            asyncio.create_task(self._run_with_semaphore(semaphore, item))
            for item in items
        ]

    async def _run_with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        item: WorkItem,
    ) -> ChildSessionOutcome:
        async with semaphore:
            start = time.monotonic()
            try:
                return await self._orchestrator.run(item, self._timeout)
            except RECOVERABLE_ERRORS as exc:
                logger.warning(
                    "subtask.fanout.item_failed",
                    item=item.index,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return ChildSessionOutcome(
                    item=item,
                    status="failed",
                    error=str(exc),
                    elapsed_seconds=time.monotonic() - start,
                )

    async def _wait_for_all(self, items: list[WorkItem]) -> FanOutResult:
        tasks = self._spawn(items)
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    if task.exception() is not None:
                        raise task.exception()
        finally:
            await _cancel_all(pending)
        return self._aggregate("wait_for_all", items, [task.result() for task in tasks])

    async def _first_wins(self, items: list[WorkItem]) -> FanOutResult:
        tasks = self._spawn(items)
        pending = set(tasks)
        finished: list[ChildSessionOutcome] = []
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in _completion_order(tasks, done):
                    outcome = task.result()
                    finished.append(outcome)
                    if outcome.succeeded:
                        logger.info(
                            "subtask.fanout.winner",
                            item=outcome.item.index,
                            session_id=outcome.session_id,
                            cancelled=len(pending),
                        )
                        await _cancel_all(pending)
                        pending = set()
                        return FanOutResult(
                            strategy="first_wins",
                            status="completed",
                            outcomes=finished,
                            total_items=len(items),
                            winner=outcome,
                        )
        finally:
            await _cancel_all(pending)
        finished.sort(key=lambda outcome: outcome.item.index)
        return FanOutResult(
            strategy="first_wins",
            status="failed",
            outcomes=finished,
            total_items=len(items),
        )

    @staticmethod
    def _aggregate(
        strategy: str,
        items: list[WorkItem],
        outcomes: list[ChildSessionOutcome],
    ) -> FanOutResult:
        succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
        if succeeded == len(outcomes):
            status = "completed"
        elif succeeded:
            status = "partial"
        else:
            status = "failed"
        return FanOutResult(
            strategy=strategy,
            status=status,
            outcomes=outcomes,
            total_items=len(items),
        )


def _completion_order(tasks: list[asyncio.Task], done: set[asyncio.Task]) -> list[asyncio.Task]:
    """Tasks from *done*, stable by spawn order; faults are raised first."""
    ordered = [task for task in tasks if task in done]
    for task in ordered:
        if task.exception() is not None:
            raise task.exception()
    return ordered


async def _cancel_all(tasks: set[asyncio.Task]) -> None:
    """Cancel *tasks* and wait until every one has finished its cleanup."""
    if not tasks:
        return
    for task in tasks:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.debug("subtask.fanout.cancelled_task_error", error=str(result))
