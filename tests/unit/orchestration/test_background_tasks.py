"""Tests for BackgroundTasks"""
import asyncio

import pytest

from coderace.orchestration.background import BackgroundTasks


@pytest.mark.asyncio
async def test_spawn_records_success():
    background = BackgroundTasks()

    async def work():
        await asyncio.sleep(0)

    background.spawn(work(), name="work-1")
    await background.drain()

    assert background.pending == 0
    assert background.results["work-1"].ok is True
    assert background.results["work-1"].error is None


@pytest.mark.asyncio
async def test_spawn_records_failure_without_raising():
    background = BackgroundTasks()

    async def explode():
        raise RuntimeError("boom")

    background.spawn(explode(), name="explode")
    await background.drain()

    outcome = background.results["explode"]
    assert outcome.ok is False
    assert outcome.error == "boom"


@pytest.mark.asyncio
async def test_drain_waits_for_work_spawned_by_work():
    background = BackgroundTasks()
    order = []

    async def child():
        await asyncio.sleep(0.01)
        order.append("child")

    async def parent():
        order.append("parent")
        background.spawn(child(), name="child")

    background.spawn(parent(), name="parent")
    await background.drain()

    assert order == ["parent", "child"]
    assert set(background.results) == {"parent", "child"}


@pytest.mark.asyncio
async def test_spawn_does_not_block_caller():
    background = BackgroundTasks()
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(0.05)

    background.spawn(slow(), name="slow")
    assert background.pending == 1
    assert "slow" not in background.results

    await background.drain()
    assert started.is_set()
