"""Tests for subtask.levels — recursion depth and delegation gating."""

from __future__ import annotations

import pytest

from fakes import FakeHost
from subtask.levels import MAX_WALK_DEPTH, RecursionGuard


def _chain(host: FakeHost, depth: int):
    """root <- s1 <- ... <- s{depth}; returns the deepest session."""
    session = host.add_session("s0")
    for level in range(1, depth + 1):
        session = host.add_session(f"s{level}", parent_id=f"s{level - 1}")
    return session


@pytest.mark.asyncio
async def test_root_is_level_zero(host):
    guard = RecursionGuard(host, max_level=1)
    assert await guard.current_level(_chain(host, 0)) == 0


@pytest.mark.asyncio
async def test_level_counts_ancestors(host):
    guard = RecursionGuard(host, max_level=5)
    assert await guard.current_level(_chain(host, 3)) == 3
    assert host.open_calls == 3


@pytest.mark.asyncio
async def test_level_below_max_allows_delegation(host):
    guard = RecursionGuard(host, max_level=2)
    assert await guard.allows_delegation(_chain(host, 1)) is True


@pytest.mark.asyncio
async def test_level_at_max_blocks_delegation(host):
    guard = RecursionGuard(host, max_level=2)
    assert await guard.allows_delegation(_chain(host, 2)) is False


@pytest.mark.asyncio
async def test_negative_max_disables_check(host):
    guard = RecursionGuard(host, max_level=-1)
    assert await guard.allows_delegation(_chain(host, 50)) is True
    assert host.open_calls == 0


@pytest.mark.asyncio
async def test_unreachable_ancestor_fails_open(host):
    session = _chain(host, 3)
    host.unreachable.add("s1")
    guard = RecursionGuard(host, max_level=1)

    assert await guard.allows_delegation(session) is True


@pytest.mark.asyncio
async def test_unreachable_ancestor_raises_from_current_level(host):
    session = _chain(host, 2)
    host.unreachable.add("s0")
    guard = RecursionGuard(host, max_level=1)

    with pytest.raises(LookupError):
        await guard.current_level(session)


@pytest.mark.asyncio
async def test_cycle_stops_at_walk_limit(host):
    host.add_session("a", parent_id="b")
    host.add_session("b", parent_id="a")
    guard = RecursionGuard(host, max_level=-1)

    assert await guard.current_level(host.sessions["a"]) == MAX_WALK_DEPTH


@pytest.mark.asyncio
async def test_level_recomputed_on_every_call(host):
    session = _chain(host, 3)
    guard = RecursionGuard(host, max_level=2)
    assert await guard.current_level(session) == 3
    assert await guard.allows_delegation(session) is False

    session.parent_id = "s0"

    assert await guard.current_level(session) == 1
    assert await guard.allows_delegation(session) is True
    assert host.open_calls == 3 + 3 + 1 + 1
