"""
Tests for join_all fan-out / fan-in
"""

import asyncio

import pytest

from esupgrade.core.concurrency import join_all


async def test_empty():
    assert await join_all([]) == []


async def test_results_keep_input_order():
    async def after(delay, value):
        await asyncio.sleep(delay)
        return value

    results = await join_all([after(0.03, "a"), after(0.0, "b"), after(0.01, "c")])
    assert results == ["a", "b", "c"]


async def test_accepts_generator():
    async def double(n):
        return n * 2

    assert await join_all(double(n) for n in range(4)) == [0, 2, 4, 6]


async def test_first_failure_cancels_siblings():
    cancelled = []

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append("slow")
            raise

    async def failing():
        await asyncio.sleep(0)
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await join_all([slow(), failing()])

    assert cancelled == ["slow"]


async def test_completed_siblings_keep_their_effects():
    done = []

    async def quick():
        done.append("quick")

    async def failing():
        await asyncio.sleep(0.01)
        raise RuntimeError("late")

    with pytest.raises(RuntimeError):
        await join_all([quick(), failing()])
    assert done == ["quick"]


async def test_cancelled_join_cancels_its_own_tasks():
    finished = []
    cancelled = []

    async def leaf(n):
        try:
            await asyncio.sleep(0.2)
        except asyncio.CancelledError:
            cancelled.append(n)
            raise
        finished.append(n)

    async def nested():
        await join_all(leaf(n) for n in range(3))

    async def failing():
        await asyncio.sleep(0.01)
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await join_all([nested(), failing()])

    # Nothing is left running once the outer join has raised
    assert sorted(cancelled) == [0, 1, 2]
    await asyncio.sleep(0.3)
    assert finished == []
