"""Unit tests for backend_common.scheduler.AsyncioScheduler.

These run on the real event loop with short sleeps; no HTTP involved.
"""
from __future__ import annotations

import asyncio

import pytest

from backend_common.scheduler import AsyncioScheduler


@pytest.mark.asyncio
async def test_call_later_fires_once():
    fired: list[float] = []
    loop = asyncio.get_running_loop()

    async def callback() -> None:
        fired.append(loop.time())

    scheduler = AsyncioScheduler()
    started = loop.time()
    handle = scheduler.call_later(0.05, callback, name="once")

    await asyncio.sleep(0.2)

    assert len(fired) == 1
    assert fired[0] - started >= 0.04
    assert handle.cancelled() is False


@pytest.mark.asyncio
async def test_cancelled_call_later_never_fires():
    fired = False

    async def callback() -> None:
        nonlocal fired
        fired = True

    scheduler = AsyncioScheduler()
    handle = scheduler.call_later(0.05, callback)
    handle.cancel()

    await asyncio.sleep(0.15)

    assert fired is False
    assert handle.cancelled() is True


@pytest.mark.asyncio
async def test_call_later_failure_is_contained():
    async def callback() -> None:
        raise RuntimeError("boom")

    scheduler = AsyncioScheduler()
    handle = scheduler.call_later(0.01, callback)

    await asyncio.sleep(0.1)

    # The exception is logged, not left on the task.
    assert handle.task.done()
    assert handle.task.exception() is None


@pytest.mark.asyncio
async def test_every_repeats_until_cancelled():
    count = 0

    async def callback() -> None:
        nonlocal count
        count += 1

    scheduler = AsyncioScheduler()
    handle = scheduler.every(0.05, callback, name="ticker")

    await asyncio.sleep(0.22)
    handle.cancel()
    await asyncio.sleep(0)
    seen = count
    await asyncio.sleep(0.15)

    assert seen >= 2
    assert count == seen


@pytest.mark.asyncio
async def test_every_survives_callback_failure():
    calls = 0

    async def flaky() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("first sweep fails")

    scheduler = AsyncioScheduler()
    handle = scheduler.every(0.05, flaky)

    await asyncio.sleep(0.2)
    handle.cancel()

    assert calls >= 2


@pytest.mark.asyncio
async def test_every_stops_cleanly_on_cancel():
    async def noop() -> None:
        return None

    scheduler = AsyncioScheduler()
    handle = scheduler.every(0.05, noop)
    await asyncio.sleep(0.01)

    handle.cancel()
    with pytest.raises(asyncio.CancelledError):
        await handle.task

    assert handle.task.cancelled()
