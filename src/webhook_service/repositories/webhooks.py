"""Webhook repositories (endpoint registry + delivery queue + delivery log).

Both the registry and the queue are async protocols so a durable backend can
replace the in-memory implementations without touching the engine. The
in-memory variants are single-loop structures: every mutation happens on the
event loop that owns the service, so no locking is needed.
"""
from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Any, Iterable, List, Protocol
from uuid import uuid4

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import DeliveryAttempt, WebhookEndpoint

UPDATABLE_FIELDS = frozenset({"url", "events", "secret", "active"})


def generate_webhook_id() -> str:
    return f"wh_{uuid4().hex}"


def _normalize_events(events: Iterable[EventType | str]) -> list[EventType]:
    return list(dict.fromkeys(EventType(e) for e in events))


class EndpointRegistry(Protocol):
    async def register(
        self,
        *,
        company_id: str,
        url: str,
        events: Iterable[EventType | str],
        secret: str | None,
        created_at: datetime,
    ) -> WebhookEndpoint: ...

    async def get(self, webhook_id: str) -> WebhookEndpoint | None: ...

    async def list_all(self) -> List[WebhookEndpoint]: ...

    async def list_by_company(self, company_id: str) -> List[WebhookEndpoint]: ...

    async def list_active_matching(
        self, company_id: str, event: EventType
    ) -> List[WebhookEndpoint]: ...

    async def update(self, webhook_id: str, **changes: Any) -> WebhookEndpoint | None: ...

    async def remove(self, webhook_id: str) -> bool: ...

    async def record_success(
        self, webhook_id: str, delivered_at: datetime
    ) -> WebhookEndpoint | None: ...

    async def record_failure(
        self, webhook_id: str, *, disable_threshold: int
    ) -> WebhookEndpoint | None: ...


class InMemoryEndpointRegistry:
    """Endpoint table keyed by webhook id. Hands out copies, never its own records."""

    def __init__(self) -> None:
        self._endpoints: dict[str, WebhookEndpoint] = {}

    async def register(
        self,
        *,
        company_id: str,
        url: str,
        events: Iterable[EventType | str],
        secret: str | None,
        created_at: datetime,
    ) -> WebhookEndpoint:
        endpoint = WebhookEndpoint(
            id=generate_webhook_id(),
            company_id=company_id,
            url=url,
            secret=secret,
            events=_normalize_events(events),
            active=True,
            created_at=created_at,
            failure_count=0,
        )
        self._endpoints[endpoint.id] = endpoint
        return endpoint.model_copy()

    async def get(self, webhook_id: str) -> WebhookEndpoint | None:
        endpoint = self._endpoints.get(webhook_id)
        return endpoint.model_copy() if endpoint is not None else None

    async def list_all(self) -> List[WebhookEndpoint]:
        return [e.model_copy() for e in self._endpoints.values()]

    async def list_by_company(self, company_id: str) -> List[WebhookEndpoint]:
        return [e.model_copy() for e in self._endpoints.values() if e.company_id == company_id]

    async def list_active_matching(
        self, company_id: str, event: EventType
    ) -> List[WebhookEndpoint]:
        return [
            e.model_copy()
            for e in self._endpoints.values()
            if e.active and e.company_id == company_id and e.subscribes_to(event)
        ]

    async def update(self, webhook_id: str, **changes: Any) -> WebhookEndpoint | None:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported webhook fields: {', '.join(sorted(unknown))}")
        current = self._endpoints.get(webhook_id)
        if current is None:
            return None
        # None clears the secret; for every other field it means "unchanged".
        changes = {k: v for k, v in changes.items() if v is not None or k == "secret"}
        if changes.get("events") is not None:
            changes["events"] = _normalize_events(changes["events"])
        if changes.get("active") is True and not current.active:
            # Re-activation starts a fresh failure streak.
            changes.setdefault("failure_count", 0)
        updated = current.model_copy(update=changes)
        self._endpoints[webhook_id] = updated
        return updated.model_copy()

    async def remove(self, webhook_id: str) -> bool:
        return self._endpoints.pop(webhook_id, None) is not None

    async def record_success(
        self, webhook_id: str, delivered_at: datetime
    ) -> WebhookEndpoint | None:
        current = self._endpoints.get(webhook_id)
        if current is None:
            return None
        updated = current.model_copy(
            update={"last_delivery_at": delivered_at, "failure_count": 0}
        )
        self._endpoints[webhook_id] = updated
        return updated.model_copy()

    async def record_failure(
        self, webhook_id: str, *, disable_threshold: int
    ) -> WebhookEndpoint | None:
        current = self._endpoints.get(webhook_id)
        if current is None:
            return None
        failure_count = current.failure_count + 1
        update: dict[str, Any] = {"failure_count": failure_count}
        if failure_count >= disable_threshold:
            update["active"] = False
        updated = current.model_copy(update=update)
        self._endpoints[webhook_id] = updated
        return updated.model_copy()


class DeliveryQueue(Protocol):
    async def push(self, attempt: DeliveryAttempt) -> None: ...

    async def pop_batch(self, limit: int) -> List[DeliveryAttempt]: ...

    async def size(self) -> int: ...

    async def clear(self) -> int: ...


class InMemoryDeliveryQueue:
    """FIFO of pending attempts."""

    def __init__(self) -> None:
        self._items: deque[DeliveryAttempt] = deque()

    async def push(self, attempt: DeliveryAttempt) -> None:
        self._items.append(attempt)

    async def pop_batch(self, limit: int) -> List[DeliveryAttempt]:
        batch: List[DeliveryAttempt] = []
        while self._items and len(batch) < limit:
            batch.append(self._items.popleft())
        return batch

    async def size(self) -> int:
        return len(self._items)

    async def clear(self) -> int:
        dropped = len(self._items)
        self._items.clear()
        return dropped

    def snapshot(self) -> List[DeliveryAttempt]:
        return list(self._items)


class DeliveryLog:
    """Bounded history of finalized attempts, newest last."""

    def __init__(self, max_size: int = 500) -> None:
        self._items: deque[DeliveryAttempt] = deque(maxlen=max_size)

    def append(self, attempt: DeliveryAttempt) -> None:
        self._items.append(attempt)

    def for_webhook(self, webhook_id: str, *, limit: int = 50) -> List[DeliveryAttempt]:
        items = [a for a in self._items if a.webhook_id == webhook_id]
        return items[-limit:] if limit > 0 else []

    def all(self) -> List[DeliveryAttempt]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)
