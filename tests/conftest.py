from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Awaitable, Callable

import pytest

from webhook_service.main import create_app
from webhook_service.repositories.webhooks import (
    DeliveryLog,
    InMemoryDeliveryQueue,
    InMemoryEndpointRegistry,
)
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import Settings
from webhook_service.webhooks_dispatcher import DeliveryProcessor


class FakeClock:
    """Deterministic UTC clock advanced by :class:`FakeScheduler`."""

    def __init__(self, start: datetime | None = None):
        self.start = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.elapsed = 0.0

    def __call__(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)


@dataclass
class FakeHandle:
    due: float
    callback: Callable[[], Awaitable[None]]
    seq: int
    name: str = ""
    interval: float | None = None
    delay: float = 0.0
    fired: bool = False
    _cancelled: bool = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not self._cancelled and not self.fired


class FakeScheduler:
    """Scheduler whose time only moves when a test calls :meth:`advance`."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles: list[FakeHandle] = []
        self._seq = count()

    def call_later(self, delay_seconds, callback, *, name=""):
        handle = FakeHandle(
            due=self.clock.elapsed + delay_seconds,
            callback=callback,
            seq=next(self._seq),
            name=name,
            delay=delay_seconds,
        )
        self.handles.append(handle)
        return handle

    def every(self, interval_seconds, callback, *, name=""):
        handle = FakeHandle(
            due=self.clock.elapsed + interval_seconds,
            callback=callback,
            seq=next(self._seq),
            name=name,
            interval=interval_seconds,
        )
        self.handles.append(handle)
        return handle

    @property
    def pending_one_shots(self) -> list[FakeHandle]:
        return [h for h in self.handles if h.interval is None and h.active]

    async def advance(self, seconds: float) -> None:
        target = self.clock.elapsed + seconds
        while True:
            due = [h for h in self.handles if h.active and h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            self.clock.elapsed = max(self.clock.elapsed, handle.due)
            if handle.interval is None:
                handle.fired = True
            else:
                handle.due += handle.interval
            await handle.callback()
        self.clock.elapsed = target


@dataclass
class PostedRequest:
    url: str
    body: bytes
    headers: dict[str, str]
    timeout: Any


class FakeResponse:
    def __init__(self, status: int, text: str = ""):
        self.status = status
        self._text = text

    async def text(self, errors: str = "strict") -> str:
        return self._text


class _FakeRequestContext:
    def __init__(self, outcome: Any):
        self._outcome = outcome

    async def __aenter__(self) -> FakeResponse:
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        if isinstance(self._outcome, FakeResponse):
            return self._outcome
        return FakeResponse(self._outcome)

    async def __aexit__(self, *exc_info) -> bool:
        return False


@dataclass
class FakeSession:
    """Stands in for ``aiohttp.ClientSession``; replays scripted outcomes.

    An outcome is a status code, a :class:`FakeResponse` or an exception to
    raise. Once the script runs out every request answers 200.
    """

    outcomes: list[Any] = field(default_factory=list)
    calls: list[PostedRequest] = field(default_factory=list)
    closed: bool = False

    def script(self, *outcomes: Any) -> None:
        self.outcomes.extend(outcomes)

    def post(self, url, *, data=None, headers=None, timeout=None):
        self.calls.append(PostedRequest(url, data, dict(headers or {}), timeout))
        outcome = self.outcomes.pop(0) if self.outcomes else 200
        return _FakeRequestContext(outcome)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def http_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def registry() -> InMemoryEndpointRegistry:
    return InMemoryEndpointRegistry()


@pytest.fixture
def queue() -> InMemoryDeliveryQueue:
    return InMemoryDeliveryQueue()


@pytest.fixture
def delivery_log() -> DeliveryLog:
    return DeliveryLog(max_size=100)


@pytest.fixture
def processor(registry, queue, http_session, scheduler, clock, delivery_log) -> DeliveryProcessor:
    return DeliveryProcessor(
        registry,
        queue,
        session=http_session,  # type: ignore[arg-type]
        scheduler=scheduler,
        clock=clock,
        delivery_log=delivery_log,
    )


@pytest.fixture
def service(registry, queue, processor, delivery_log, clock) -> WebhookService:
    return WebhookService(registry, queue, processor, delivery_log=delivery_log, clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        webhook_dispatch_interval_seconds=0.05,
        webhook_request_timeout_seconds=0.5,
        webhook_retry_base_delay_seconds=0.05,
    )


@pytest.fixture
def app_service(test_settings) -> WebhookService:
    """Service wired with real timers and a real HTTP session."""
    return WebhookService.from_settings(test_settings)


@pytest.fixture
async def service_client(aiohttp_client, test_settings, app_service):
    """Client for calling the management API."""
    app = create_app(test_settings, service=app_service)
    return await aiohttp_client(app)
