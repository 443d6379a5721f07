"""Tests for subtask.orchestration.runner — one child session per work item."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeSession, reports, silent
from subtask.config import ErrorReportingConfig, FanOutConfig, SubtaskConfig
from subtask.descriptors import ParameterDescriptor
from subtask.errors import (
    ConfigurationError,
    FilterRejectedError,
    HostSessionError,
    ProtocolFault,
    TemplateRenderError,
)
from subtask.filters import FilterChain, MessageFilter
from subtask.orchestration.runner import ChildSessionOrchestrator
from subtask.orchestration.workitems import resolve


def _item(config: SubtaskConfig, task: str = "sum the numbers"):
    return resolve(config.fan_out, {"task": task}, config)[0]


def _orchestrator(host, root, config, **kwargs) -> ChildSessionOrchestrator:
    return ChildSessionOrchestrator(host, config, parent=root, **kwargs)


class TestSuccess:
    @pytest.mark.asyncio
    async def test_child_reports_result(self, host, root, result_config):
        host.behavior = reports(result="42")

        outcome = await _orchestrator(host, root, result_config).run(_item(result_config))

        child = host.children[0]
        assert outcome.status == "succeeded"
        assert outcome.payload == {"result": "42"}
        assert outcome.session_id == child.id
        assert child.parent_id == "root"
        assert child.messages == ["Task:\nsum the numbers"]

    @pytest.mark.asyncio
    async def test_tools_registered_during_run_and_removed_after(self, host, root, result_config):
        seen: list[set[str]] = []

        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            seen.append({tool["name"] for tool in session.tools.list_tools()})
            await session.call_tool("set_result", result="ok")

        host.behavior = behavior
        await _orchestrator(host, root, result_config).run(_item(result_config))

        child = host.children[0]
        assert seen == [{"set_result", "report_error"}]
        assert child.tools.count == 0
        assert child.closed

    @pytest.mark.asyncio
    async def test_validation_feedback_then_success(self, host, root, result_config):
        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            await session.call_tool("set_result", answer="wrong field")
            await session.call_tool("set_result", result="right")

        host.behavior = behavior
        outcome = await _orchestrator(host, root, result_config).run(_item(result_config))

        child = host.children[0]
        assert child.tool_replies[0].startswith("Validation failed: Missing required parameters: result")
        assert outcome.payload == {"result": "right"}


class TestDangling:
    @pytest.mark.asyncio
    async def test_silent_child_without_urging_faults(self, host, root, result_config):
        config = result_config.model_copy(update={"dangling_behavior": "fail"})
        host.behavior = silent

        with pytest.raises(ProtocolFault, match="child session failed to produce a result"):
            await _orchestrator(host, root, config).run(_item(config))

        child = host.children[0]
        assert len(child.messages) == 1
        assert child.closed
        assert child.tools.count == 0

    @pytest.mark.asyncio
    async def test_one_nudge_then_success(self, host, root, result_config):
        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            if turn == 2:
                await session.call_tool("set_result", result="after reminder")

        host.behavior = behavior
        outcome = await _orchestrator(host, root, result_config).run(_item(result_config))

        child = host.children[0]
        assert outcome.payload == {"result": "after reminder"}
        assert len(child.messages) == 2
        assert "`set_result`" in child.messages[1]

    @pytest.mark.asyncio
    async def test_only_one_nudge(self, host, root, result_config):
        host.behavior = silent

        with pytest.raises(ProtocolFault):
            await _orchestrator(host, root, result_config).run(_item(result_config))

        assert len(host.children[0].messages) == 2
        assert host.children[0].closed

    @pytest.mark.asyncio
    async def test_blank_urging_faults_before_any_session(self, host, root, result_config):
        config = result_config.model_copy(update={"urging_message": ""})

        with pytest.raises(ConfigurationError):
            await _orchestrator(host, root, config).run(_item(config))

        assert host.started == 0

    @pytest.mark.asyncio
    async def test_duplicate_return_parameters_fault_before_any_session(
        self, host, root, result_config
    ):
        result = ParameterDescriptor(name="result")
        config = result_config.model_copy(update={"return_parameters": [result, result]})
        host.behavior = reports(result="x")

        with pytest.raises(ConfigurationError, match="Duplicate parameter names"):
            await _orchestrator(host, root, config).run(_item(config))

        assert host.started == 0

    @pytest.mark.asyncio
    async def test_duplicate_error_parameters_fault_before_any_session(
        self, host, root, result_config
    ):
        message = ParameterDescriptor(name="error_message")
        config = result_config.model_copy(
            update={"error_reporting": ErrorReportingConfig(parameters=[message, message])}
        )

        with pytest.raises(ConfigurationError, match="report_error"):
            await _orchestrator(host, root, config).run(_item(config))

        assert host.started == 0

    @pytest.mark.asyncio
    async def test_report_error_behavior_resolves_as_failure(self, host, root, result_config):
        config = result_config.model_copy(
            update={"dangling_behavior": "report_error", "error_message": "no answer given"}
        )
        host.behavior = silent

        outcome = await _orchestrator(host, root, config).run(_item(config))

        assert outcome.status == "failed"
        assert outcome.error == "no answer given"
        assert len(host.children[0].messages) == 1


class TestTimeout:
    @staticmethod
    async def _busy(session: FakeSession, text: str, turn: int) -> None:
        await asyncio.sleep(10)

    @pytest.mark.asyncio
    async def test_timeout_is_protocol_fault(self, host, root, result_config):
        host.behavior = self._busy
        loop = asyncio.get_running_loop()
        start = loop.time()

        with pytest.raises(ProtocolFault, match="time limit"):
            await _orchestrator(host, root, result_config).run(_item(result_config), timeout=0.05)

        assert loop.time() - start < 2
        assert host.children[0].closed

    @pytest.mark.asyncio
    async def test_timeout_under_report_error_is_timed_out_outcome(self, host, root, result_config):
        config = result_config.model_copy(update={"dangling_behavior": "report_error"})
        host.behavior = self._busy

        outcome = await _orchestrator(host, root, config).run(_item(config), timeout=0.05)

        assert outcome.status == "timed_out"
        assert host.children[0].closed

    @pytest.mark.asyncio
    async def test_configured_timeout_used_by_default(self, host, root, result_config):
        config = result_config.model_copy(update={"fan_out": FanOutConfig(child_timeout=0.05)})
        host.behavior = self._busy

        with pytest.raises(ProtocolFault):
            await _orchestrator(host, root, config).run(_item(config))


class TestErrorReporting:
    @pytest.mark.asyncio
    async def test_error_tool_gives_failed_outcome(self, host, root, result_config):
        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            await session.call_tool("report_error", error_message="no data", error_type="io")

        host.behavior = behavior
        outcome = await _orchestrator(host, root, result_config).run(_item(result_config))

        assert outcome.status == "failed"
        assert outcome.error == "no data"
        assert outcome.payload == {"error_message": "no data", "error_type": "io"}

    @pytest.mark.asyncio
    async def test_parent_message_template(self, host, root, result_config):
        config = result_config.model_copy(
            update={
                "error_reporting": ErrorReportingConfig(
                    parent_message=(
                        "{{ function_name }} failed in {{ session_id }}: "
                        "{{ error_message }} ({{ error_type }}) via {{ error_tool_name }}"
                    )
                )
            }
        )

        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            await session.call_tool("report_error", error_message="no data", error_type="io")

        host.behavior = behavior
        outcome = await _orchestrator(host, root, config).run(_item(config))

        assert outcome.error == "create_subtask failed in child-1: no data (io) via report_error"

    @pytest.mark.asyncio
    async def test_retry_budget_exhaustion_is_fatal(self, host, root, result_config):
        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            for _ in range(5):
                await session.call_tool("set_result", wrong=True)

        host.behavior = behavior

        with pytest.raises(ProtocolFault, match="invalid 'set_result' calls"):
            await _orchestrator(host, root, result_config).run(_item(result_config))

        assert host.children[0].closed


class TestRecoverableErrors:
    @pytest.mark.asyncio
    async def test_bad_template_raises_render_error_and_closes(self, host, root, result_config):
        config = result_config.model_copy(update={"prompt_message": "Task: {{ task"})
        host.behavior = reports(result="x")

        with pytest.raises(TemplateRenderError):
            await _orchestrator(host, root, config).run(_item(config))

        assert host.children[0].closed
        assert host.children[0].messages == []

    @pytest.mark.asyncio
    async def test_host_send_failure(self, host, root, result_config):
        async def behavior(session: FakeSession, text: str, turn: int) -> None:
            raise RuntimeError("connection reset")

        host.behavior = behavior

        with pytest.raises(HostSessionError, match="connection reset"):
            await _orchestrator(host, root, result_config).run(_item(result_config))

        assert host.children[0].closed


class TestFilters:
    @pytest.mark.asyncio
    async def test_filter_can_rewrite_prompt(self, host, root, result_config):
        class Prefix(MessageFilter):
            async def on_message(self, message, next_):
                message.text = f"[{message.phase}] {message.text}"
                return await next_()

        host.behavior = reports(result="x")
        orchestrator = _orchestrator(host, root, result_config, filters=FilterChain([Prefix()]))
        await orchestrator.run(_item(result_config))

        assert host.children[0].messages == ["[prompt] Task:\nsum the numbers"]

    @pytest.mark.asyncio
    async def test_filter_veto_fails_item(self, host, root, result_config):
        class Block(MessageFilter):
            async def on_message(self, message, next_):
                return False

        host.behavior = reports(result="x")
        orchestrator = _orchestrator(host, root, result_config, filters=FilterChain([Block()]))

        with pytest.raises(FilterRejectedError):
            await orchestrator.run(_item(result_config))

        assert host.children[0].closed


@pytest.mark.asyncio
async def test_cancellation_still_closes_session(host, root, result_config):
    started = asyncio.Event()

    async def behavior(session: FakeSession, text: str, turn: int) -> None:
        started.set()
        await asyncio.sleep(10)

    host.behavior = behavior
    task = asyncio.create_task(
        _orchestrator(host, root, result_config).run(_item(result_config))
    )
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert host.children[0].closed
    assert host.children[0].tools.count == 0


@pytest.mark.asyncio
async def test_return_parameters_flow_through_unchanged(host, root):
    config = SubtaskConfig(
        prompt_message="go",
        return_parameters=[
            ParameterDescriptor(name="title"),
            ParameterDescriptor(name="score", kind="number"),
            ParameterDescriptor(
                name="sections",
                kind="array",
                element=ParameterDescriptor(
                    kind="object",
                    fields=[ParameterDescriptor(name="heading"), ParameterDescriptor(name="ok", kind="bool")],
                ),
            ),
        ],
        fan_out=FanOutConfig(child_timeout=2.0),
    )
    payload = {
        "title": "Report",
        "score": 7,
        "sections": [{"heading": "Intro", "ok": True}, {"heading": "End", "ok": False}],
    }
    host.behavior = reports(**payload)

    outcome = await _orchestrator(host, root, config).run(_item(config))

    assert outcome.payload == payload
