"""Middleware binding trace_id / request_id into the structlog context."""
from __future__ import annotations

import time
from typing import Awaitable, Callable
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

logger = structlog.get_logger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _incoming_or_new(request: web.Request, header: str) -> str:
    value = request.headers.get(header)
    if value:
        try:
            UUID(value)
            return value
        except ValueError:
            pass
    return str(uuid4())


def create_trace_middleware(service_name: str):
    """Create trace middleware with specified service name."""

    @web.middleware
    async def trace_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        started = time.perf_counter()
        trace_id = _incoming_or_new(request, TRACE_ID_HEADER)
        request_id = _incoming_or_new(request, REQUEST_ID_HEADER)
        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
        )
        try:
            response = await handler(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            log = logger.warning if response.status >= 400 else logger.info
            log("Request completed", status_code=response.status, duration_ms=duration_ms)
            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except web.HTTPException as exc:
            logger.warning(
                "Request failed with HTTP exception",
                status_code=exc.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=exc.text or exc.reason,
            )
            exc.headers[TRACE_ID_HEADER] = trace_id
            exc.headers[REQUEST_ID_HEADER] = request_id
            raise
        except Exception as exc:
            logger.error(
                "Request failed with exception",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware
