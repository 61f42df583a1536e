"""Shared aiohttp application helpers."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Literal, Protocol

from aiohttp import web

from backend_common.middleware.trace import create_trace_middleware


class SettingsProtocol(Protocol):
    """Protocol for settings objects used by the app helpers."""

    app_name: str
    env: Literal["development", "staging", "production"]


def create_base_app(settings: SettingsProtocol) -> web.Application:
    """Create a base aiohttp app with tracing middleware installed."""
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))
    return app


def add_healthcheck(
    app: web.Application,
    settings: SettingsProtocol,
    extra: Callable[[web.Request], Awaitable[dict[str, Any]]] | None = None,
) -> None:
    """Register ``GET /health``; ``extra`` contributes service-specific fields."""

    async def healthcheck(request: web.Request) -> web.Response:
        payload: dict[str, Any] = {"status": "ok", "service": settings.app_name, "env": settings.env}
        if extra is not None:
            payload.update(await extra(request))
        return web.json_response(payload)

    app.router.add_get("/health", healthcheck)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse JSON body from request, raising HTTPBadRequest on invalid input."""
    try:
        data = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data
