"""
Shared fixtures for the subtask test suite.

The host doubles live in fakes.py so test modules can import the scripted
child behaviours directly.
"""

from __future__ import annotations

import pytest

from fakes import FakeHost, FakeSession
from subtask.config import FanOutConfig, SubtaskConfig
from subtask.descriptors import ParameterDescriptor


@pytest.fixture()
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture()
def root(host: FakeHost) -> FakeSession:
    return host.add_session("root")


@pytest.fixture()
def result_config() -> SubtaskConfig:
    """Single-item config whose children report one string ``result``."""
    return SubtaskConfig(
        prompt_message="Task:\n{{ _item.value.task }}",
        return_parameters=[ParameterDescriptor(name="result")],
        fan_out=FanOutConfig(child_timeout=2.0),
    )
