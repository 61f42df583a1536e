"""Injectable timer abstraction for periodic ticks and deferred callbacks.

Usage::

    from backend_common.scheduler import AsyncioScheduler

    scheduler = AsyncioScheduler()
    ticker = scheduler.every(1.0, processor.tick, name="webhook_tick")
    retry = scheduler.call_later(2.0, enqueue_retry, name="webhook_retry")

    # On shutdown:
    ticker.cancel()
    retry.cancel()

Tests substitute a fake implementing the same :class:`Scheduler` protocol and
advance time by hand, so nothing here is ever awaited on wall-clock sleeps in
unit tests.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Protocol

import structlog

logger = structlog.get_logger(__name__)

# A scheduled callback: takes no arguments, returns an awaitable.
AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_later(
        self, delay_seconds: float, callback: AsyncCallback, *, name: str = ""
    ) -> ScheduledHandle: ...

    def every(
        self, interval_seconds: float, callback: AsyncCallback, *, name: str = ""
    ) -> ScheduledHandle: ...


class _TaskHandle:
    """Cancellation handle backed by an asyncio task."""

    def __init__(self, task: asyncio.Task[None]):
        self._task = task
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        self._task.cancel()

    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def task(self) -> asyncio.Task[None]:
        return self._task


class AsyncioScheduler:
    """Runs callbacks as tasks on the current event loop.

    Periodic callbacks are resilient: an exception is logged and the loop
    carries on with the next interval.
    """

    def call_later(
        self, delay_seconds: float, callback: AsyncCallback, *, name: str = ""
    ) -> _TaskHandle:
        async def _deferred() -> None:
            await asyncio.sleep(delay_seconds)
            try:
                await callback()
            except Exception:
                logger.exception("scheduled_callback failed", name=name)

        return _TaskHandle(asyncio.create_task(_deferred(), name=name or None))

    def every(
        self, interval_seconds: float, callback: AsyncCallback, *, name: str = ""
    ) -> _TaskHandle:
        async def _loop() -> None:
            logger.info("periodic_task started", name=name, interval_seconds=interval_seconds)
            while True:
                try:
                    await asyncio.sleep(interval_seconds)
                    await callback()
                except asyncio.CancelledError:
                    logger.info("periodic_task stopped", name=name)
                    raise
                except Exception:
                    logger.exception("periodic_task sweep failed", name=name)

        return _TaskHandle(asyncio.create_task(_loop(), name=name or None))
