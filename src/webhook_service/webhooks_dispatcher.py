"""Webhook delivery processor (drains the queue and delivers HTTP POSTs).

Every tick pops up to ``batch_size`` attempts and delivers them concurrently.
A failed attempt is retried as a new attempt after ``base * 2 ** (n - 1)``
seconds until ``max_attempts`` is reached. Endpoint bookkeeping (failure
streak, last delivery, suspension) is written back to the registry after
each attempt.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Mapping
from uuid import UUID

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from backend_common.scheduler import AsyncioScheduler, ScheduledHandle, Scheduler

from webhook_service.core.exceptions import (
    DeliveryError,
    HttpStatusDeliveryError,
    NetworkDeliveryError,
    TimeoutDeliveryError,
)
from webhook_service.domain.enums import DeliveryErrorKind, DeliveryState
from webhook_service.domain.webhooks import DeliveryAttempt, DeliveryResult, WebhookEndpoint
from webhook_service.repositories.webhooks import DeliveryLog, DeliveryQueue, EndpointRegistry
from webhook_service.signing import canonical_body, sign_body

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-Oblivion-Event"
DELIVERY_HEADER = "X-Oblivion-Delivery"
TIMESTAMP_HEADER = "X-Oblivion-Timestamp"
SIGNATURE_HEADER = "X-Oblivion-Signature"
DEFAULT_USER_AGENT = "Oblivion-Protocol-Webhook/1.0"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryProcessor:
    def __init__(
        self,
        registry: EndpointRegistry,
        queue: DeliveryQueue,
        *,
        session: ClientSession | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = utc_now,
        delivery_log: DeliveryLog | None = None,
        tick_interval_seconds: float = 1.0,
        batch_size: int = 10,
        request_timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        failure_threshold: int = 10,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._registry = registry
        self._queue = queue
        self._session = session
        self._owns_session = session is None
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._log = delivery_log
        self._tick_interval = tick_interval_seconds
        self._batch_size = batch_size
        self._request_timeout = request_timeout_seconds
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay_seconds
        self._failure_threshold = failure_threshold
        self._user_agent = user_agent

        self._ticker: ScheduledHandle | None = None
        self._processing = False
        self._closed = False
        self._pending_retries: dict[UUID, ScheduledHandle] = {}
        self._in_flight: dict[UUID, DeliveryAttempt] = {}

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def start(self) -> None:
        if self._closed:
            raise RuntimeError("Delivery processor has been closed")
        if self._ticker is not None:
            return
        if self._session is None:
            self._session = ClientSession(timeout=ClientTimeout(total=self._request_timeout))
        self._ticker = self._scheduler.every(
            self._tick_interval, self._tick_safely, name="webhook_delivery_tick"
        )
        logger.info(
            "webhook_processor started",
            tick_interval_seconds=self._tick_interval,
            batch_size=self._batch_size,
        )

    async def close(self) -> None:
        """Stop ticking, cancel deferred retries and discard pending attempts.

        Deliveries already on the wire may still complete, but their outcome
        is not written back once this has run.
        """
        if self._closed:
            return
        self._closed = True
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        cancelled = self.cancel_pending_retries()
        dropped = await self._queue.clear()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        logger.info(
            "webhook_processor stopped",
            cancelled_retries=cancelled,
            dropped_deliveries=dropped,
        )

    # ------------------------------------------------------------------
    # retries
    # ------------------------------------------------------------------

    @property
    def pending_retries(self) -> Mapping[UUID, ScheduledHandle]:
        return dict(self._pending_retries)

    def in_flight(self) -> List[DeliveryAttempt]:
        return list(self._in_flight.values())

    def retry_delay_seconds(self, attempt: int) -> float:
        # attempt is 1-based: 1 -> base, 2 -> 2 * base
        return self._retry_base_delay * 2 ** (attempt - 1)

    def cancel_pending_retries(self) -> int:
        handles = list(self._pending_retries.values())
        self._pending_retries.clear()
        for handle in handles:
            handle.cancel()
        return len(handles)

    def _schedule_retry(self, attempt: DeliveryAttempt) -> DeliveryAttempt:
        delay = self.retry_delay_seconds(attempt.attempt)
        retry = attempt.next_attempt(scheduled_at=self._clock() + timedelta(seconds=delay))

        async def _enqueue() -> None:
            if self._pending_retries.pop(retry.id, None) is None or self._closed:
                return
            await self._queue.push(retry)
            logger.info(
                "webhook_retry enqueued",
                webhook_id=retry.webhook_id,
                attempt=retry.attempt,
            )

        self._pending_retries[retry.id] = self._scheduler.call_later(
            delay, _enqueue, name=f"webhook_retry:{retry.id}"
        )
        logger.info(
            "webhook_retry scheduled",
            webhook_id=attempt.webhook_id,
            attempt=retry.attempt,
            delay_seconds=delay,
        )
        return retry

    # ------------------------------------------------------------------
    # tick
    # ------------------------------------------------------------------

    async def _tick_safely(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("webhook_processor tick failed")

    async def tick(self) -> int:
        """Deliver one batch. Returns the number of attempts taken off the queue."""
        if self._closed or self._processing:
            return 0
        self._processing = True
        try:
            batch = await self._queue.pop_batch(self._batch_size)
            if not batch:
                return 0
            outcomes = await asyncio.gather(
                *(self.deliver(attempt) for attempt in batch), return_exceptions=True
            )
            for attempt, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "webhook_delivery crashed",
                        webhook_id=attempt.webhook_id,
                        attempt=attempt.attempt,
                        exc_info=outcome,
                    )
            return len(batch)
        finally:
            self._processing = False

    # ------------------------------------------------------------------
    # delivery
    # ------------------------------------------------------------------

    def _build_headers(
        self, endpoint: WebhookEndpoint, attempt: DeliveryAttempt, body_bytes: bytes
    ) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            EVENT_HEADER: attempt.payload.event.value,
            DELIVERY_HEADER: str(attempt.id),
            TIMESTAMP_HEADER: str(attempt.payload.timestamp),
        }
        if endpoint.secret:
            headers[SIGNATURE_HEADER] = sign_body(body_bytes, endpoint.secret)
        return headers

    async def _post(self, url: str, body_bytes: bytes, headers: dict[str, str]) -> int:
        if self._session is None:
            raise RuntimeError("Delivery processor has no HTTP session; call start() first")
        try:
            async with self._session.post(
                url,
                data=body_bytes,
                headers=headers,
                timeout=ClientTimeout(total=self._request_timeout),
            ) as resp:
                if 200 <= resp.status < 300:
                    return resp.status
                text = await resp.text(errors="replace")
                raise HttpStatusDeliveryError(
                    f"HTTP {resp.status}: {text[:2000]}", status_code=resp.status
                )
        except asyncio.TimeoutError as exc:
            raise TimeoutDeliveryError(
                f"Request timeout ({self._request_timeout:g} seconds)"
            ) from exc
        except ClientError as exc:
            raise NetworkDeliveryError(str(exc) or type(exc).__name__) from exc

    def _finalize(
        self,
        attempt: DeliveryAttempt,
        state: DeliveryState,
        result: DeliveryResult,
    ) -> DeliveryAttempt:
        finalized = attempt.finalize(state, delivered_at=self._clock(), result=result)
        if self._log is not None:
            self._log.append(finalized)
        return finalized

    async def deliver(self, attempt: DeliveryAttempt) -> DeliveryAttempt:
        """Deliver a single attempt and return it finalized.

        Delivery failures are recorded on the result, never raised. Errors
        outside the aiohttp/timeout classes count as network failures.
        """
        endpoint = await self._registry.get(attempt.webhook_id)
        if endpoint is None or not endpoint.active:
            logger.info(
                "webhook inactive or not found, skipping delivery",
                webhook_id=attempt.webhook_id,
                attempt=attempt.attempt,
            )
            return self._finalize(
                attempt,
                DeliveryState.DROPPED,
                DeliveryResult(
                    success=False,
                    error="Endpoint unavailable",
                    error_kind=DeliveryErrorKind.ENDPOINT_UNAVAILABLE,
                    attempt=attempt.attempt,
                ),
            )

        body_bytes = canonical_body(attempt.payload)
        headers = self._build_headers(endpoint, attempt, body_bytes)
        self._in_flight[attempt.id] = attempt.model_copy(update={"state": DeliveryState.IN_FLIGHT})
        logger.info(
            "webhook delivering",
            webhook_id=endpoint.id,
            attempt=attempt.attempt,
            url=endpoint.url,
        )

        started = time.perf_counter()
        status_code: int | None = None
        error: DeliveryError | None = None
        try:
            status_code = await self._post(endpoint.url, body_bytes, headers)
        except DeliveryError as exc:
            error = exc
            status_code = exc.status_code
        except Exception as exc:
            logger.exception(
                "webhook delivery raised unexpected error",
                webhook_id=endpoint.id,
                attempt=attempt.attempt,
            )
            error = NetworkDeliveryError(str(exc) or type(exc).__name__)
        finally:
            self._in_flight.pop(attempt.id, None)
        response_time_ms = round((time.perf_counter() - started) * 1000, 2)

        if self._closed:
            logger.info(
                "webhook result discarded after shutdown",
                webhook_id=endpoint.id,
                attempt=attempt.attempt,
            )
            return attempt

        if error is None:
            await self._registry.record_success(endpoint.id, self._clock())
            logger.info(
                "webhook delivered",
                webhook_id=endpoint.id,
                attempt=attempt.attempt,
                status_code=status_code,
                response_time_ms=response_time_ms,
            )
            return self._finalize(
                attempt,
                DeliveryState.DELIVERED,
                DeliveryResult(
                    success=True,
                    status_code=status_code,
                    response_time_ms=response_time_ms,
                    attempt=attempt.attempt,
                ),
            )

        result = DeliveryResult(
            success=False,
            status_code=status_code,
            error=str(error),
            error_kind=error.kind,
            response_time_ms=response_time_ms,
            attempt=attempt.attempt,
        )
        updated = await self._registry.record_failure(
            endpoint.id, disable_threshold=self._failure_threshold
        )
        logger.warning(
            "webhook delivery failed",
            webhook_id=endpoint.id,
            attempt=attempt.attempt,
            error_kind=error.kind.value,
            status_code=status_code,
            error=str(error),
        )
        still_active = updated is not None and updated.active
        if updated is not None and not updated.active:
            logger.warning(
                "webhook disabled due to excessive failures",
                webhook_id=endpoint.id,
                failure_count=updated.failure_count,
            )

        if attempt.attempt < self._max_attempts and still_active:
            self._schedule_retry(attempt)
            return self._finalize(attempt, DeliveryState.RETRY_SCHEDULED, result)

        if attempt.attempt >= self._max_attempts:
            logger.error(
                "webhook failed after max attempts, giving up",
                webhook_id=endpoint.id,
                attempts=attempt.attempt,
            )
        return self._finalize(attempt, DeliveryState.PERMANENTLY_FAILED, result)
