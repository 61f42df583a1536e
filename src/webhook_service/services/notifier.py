"""Event notifier: turns lifecycle events into queued delivery attempts."""
from __future__ import annotations

from typing import Any, Mapping

import structlog

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import (
    DeletionSummary,
    DeliveryAttempt,
    DeliveryPayload,
    PayloadData,
)
from webhook_service.repositories.webhooks import DeliveryQueue, EndpointRegistry
from webhook_service.webhooks_dispatcher import Clock, utc_now

logger = structlog.get_logger(__name__)


class EventNotifier:
    """Producer side of the delivery engine.

    Each ``notify_*`` call returns as soon as the attempts are queued; the
    outcome of the HTTP deliveries is never reported back to the caller.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        queue: DeliveryQueue,
        *,
        clock: Clock = utc_now,
    ):
        self._registry = registry
        self._queue = queue
        self._clock = clock

    def _payload(self, event: EventType, user_did: str, data: PayloadData) -> DeliveryPayload:
        return DeliveryPayload(
            event=event,
            user_did=user_did,
            timestamp=int(self._clock().timestamp() * 1000),
            data=data,
        )

    async def notify_data_registered(
        self,
        user_did: str,
        commitment_hash: str,
        data_type: str,
        company_id: str,
        tx_hash: str,
    ) -> int:
        payload = self._payload(
            EventType.DATA_REGISTERED,
            user_did,
            PayloadData(
                commitment_hash=commitment_hash,
                data_type=data_type,
                service_provider=company_id,
                transaction_hash=tx_hash,
            ),
        )
        return await self.dispatch(payload, company_id)

    async def notify_data_deleted(
        self,
        user_did: str,
        commitment_hash: str,
        data_type: str,
        company_id: str,
        tx_hash: str,
    ) -> int:
        payload = self._payload(
            EventType.DATA_DELETED,
            user_did,
            PayloadData(
                commitment_hash=commitment_hash,
                data_type=data_type,
                service_provider=company_id,
                transaction_hash=tx_hash,
            ),
        )
        return await self.dispatch(payload, company_id)

    async def notify_deletion_completed(
        self,
        user_did: str,
        company_id: str,
        summary: DeletionSummary | Mapping[str, Any],
    ) -> int:
        details = (
            summary
            if isinstance(summary, DeletionSummary)
            else DeletionSummary.model_validate(summary)
        )
        payload = self._payload(
            EventType.DELETION_COMPLETED,
            user_did,
            PayloadData(service_provider=company_id, deletion_details=details),
        )
        return await self.dispatch(payload, company_id)

    async def dispatch(self, payload: DeliveryPayload, company_id: str) -> int:
        """Queue one attempt-1 delivery per matching active endpoint."""
        endpoints = await self._registry.list_active_matching(company_id, payload.event)
        if not endpoints:
            logger.info(
                "no active webhooks for event",
                company_id=company_id,
                event_type=payload.event.value,
            )
            return 0

        scheduled_at = self._clock()
        for endpoint in endpoints:
            await self._queue.push(
                DeliveryAttempt(
                    webhook_id=endpoint.id,
                    payload=payload,
                    attempt=1,
                    scheduled_at=scheduled_at,
                )
            )
        logger.info(
            "webhook notifications queued",
            company_id=company_id,
            event_type=payload.event.value,
            endpoints=len(endpoints),
        )
        return len(endpoints)
