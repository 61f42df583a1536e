"""Webhook domain service (endpoint management + notifications + lifecycle)."""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping

import structlog
from aiohttp import ClientSession

from backend_common.scheduler import Scheduler

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import (
    DeletionSummary,
    DeliveryAttempt,
    WebhookEndpoint,
    WebhookStats,
)
from webhook_service.repositories.webhooks import (
    DeliveryLog,
    DeliveryQueue,
    EndpointRegistry,
    InMemoryDeliveryQueue,
    InMemoryEndpointRegistry,
)
from webhook_service.services.notifier import EventNotifier
from webhook_service.settings import Settings
from webhook_service.webhooks_dispatcher import Clock, DeliveryProcessor, utc_now

logger = structlog.get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        registry: EndpointRegistry,
        queue: DeliveryQueue,
        processor: DeliveryProcessor,
        *,
        delivery_log: DeliveryLog | None = None,
        clock: Clock = utc_now,
    ):
        self._registry = registry
        self._queue = queue
        self._processor = processor
        self._log = delivery_log
        self._clock = clock
        self._notifier = EventNotifier(registry, queue, clock=clock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        registry: EndpointRegistry | None = None,
        queue: DeliveryQueue | None = None,
        session: ClientSession | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = utc_now,
    ) -> "WebhookService":
        registry = registry if registry is not None else InMemoryEndpointRegistry()
        queue = queue if queue is not None else InMemoryDeliveryQueue()
        delivery_log = DeliveryLog(max_size=settings.webhook_history_size)
        processor = DeliveryProcessor(
            registry,
            queue,
            session=session,
            scheduler=scheduler,
            clock=clock,
            delivery_log=delivery_log,
            tick_interval_seconds=settings.webhook_dispatch_interval_seconds,
            batch_size=settings.webhook_batch_size,
            request_timeout_seconds=settings.webhook_request_timeout_seconds,
            max_attempts=settings.webhook_max_attempts,
            retry_base_delay_seconds=settings.webhook_retry_base_delay_seconds,
            failure_threshold=settings.webhook_failure_threshold,
            user_agent=settings.webhook_user_agent,
        )
        return cls(registry, queue, processor, delivery_log=delivery_log, clock=clock)

    @property
    def processor(self) -> DeliveryProcessor:
        return self._processor

    @property
    def notifier(self) -> EventNotifier:
        return self._notifier

    async def start(self) -> None:
        await self._processor.start()

    async def close(self) -> None:
        await self._processor.close()

    # ------------------------------------------------------------------
    # management
    # ------------------------------------------------------------------

    async def register(
        self,
        company_id: str,
        url: str,
        events: Iterable[EventType | str],
        secret: str | None = None,
    ) -> str:
        endpoint = await self._registry.register(
            company_id=company_id,
            url=url,
            events=events,
            secret=secret,
            created_at=self._clock(),
        )
        logger.info(
            "webhook registered",
            webhook_id=endpoint.id,
            company_id=company_id,
            url=url,
        )
        return endpoint.id

    async def get(self, webhook_id: str) -> WebhookEndpoint | None:
        return await self._registry.get(webhook_id)

    async def require(self, webhook_id: str) -> WebhookEndpoint:
        endpoint = await self._registry.get(webhook_id)
        if endpoint is None:
            raise NotFoundError("Webhook not found")
        return endpoint

    async def list(self, company_id: str) -> List[WebhookEndpoint]:
        return await self._registry.list_by_company(company_id)

    async def update(self, webhook_id: str, changes: Mapping[str, Any]) -> bool:
        updated = await self._registry.update(webhook_id, **dict(changes))
        if updated is None:
            logger.warning("webhook not found", webhook_id=webhook_id)
            return False
        logger.info("webhook updated", webhook_id=webhook_id, fields=sorted(changes))
        return True

    async def remove(self, webhook_id: str) -> bool:
        removed = await self._registry.remove(webhook_id)
        if removed:
            logger.info("webhook removed", webhook_id=webhook_id)
        else:
            logger.warning("webhook not found", webhook_id=webhook_id)
        return removed

    async def get_stats(self) -> WebhookStats:
        endpoints = await self._registry.list_all()
        by_company: dict[str, int] = {}
        for endpoint in endpoints:
            by_company[endpoint.company_id] = by_company.get(endpoint.company_id, 0) + 1
        return WebhookStats(
            total_webhooks=len(endpoints),
            active_webhooks=sum(1 for e in endpoints if e.active),
            queued_deliveries=await self._queue.size(),
            pending_retries=len(self._processor.pending_retries),
            webhooks_by_company=by_company,
        )

    def recent_deliveries(self, webhook_id: str, *, limit: int = 50) -> List[DeliveryAttempt]:
        if self._log is None:
            return []
        return self._log.for_webhook(webhook_id, limit=limit)

    # ------------------------------------------------------------------
    # notifications
    # ------------------------------------------------------------------

    def _rejects_notifications(self, event: EventType, company_id: str) -> bool:
        if not self._processor.closed:
            return False
        logger.warning(
            "webhook service closed, notification ignored",
            company_id=company_id,
            event_type=event.value,
        )
        return True

    async def notify_data_registered(
        self,
        user_did: str,
        commitment_hash: str,
        data_type: str,
        company_id: str,
        tx_hash: str,
    ) -> int:
        if self._rejects_notifications(EventType.DATA_REGISTERED, company_id):
            return 0
        return await self._notifier.notify_data_registered(
            user_did, commitment_hash, data_type, company_id, tx_hash
        )

    async def notify_data_deleted(
        self,
        user_did: str,
        commitment_hash: str,
        data_type: str,
        company_id: str,
        tx_hash: str,
    ) -> int:
        if self._rejects_notifications(EventType.DATA_DELETED, company_id):
            return 0
        return await self._notifier.notify_data_deleted(
            user_did, commitment_hash, data_type, company_id, tx_hash
        )

    async def notify_deletion_completed(
        self,
        user_did: str,
        company_id: str,
        summary: DeletionSummary | Mapping[str, Any],
    ) -> int:
        if self._rejects_notifications(EventType.DELETION_COMPLETED, company_id):
            return 0
        return await self._notifier.notify_deletion_completed(user_did, company_id, summary)
