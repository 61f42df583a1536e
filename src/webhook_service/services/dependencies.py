"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from aiohttp import web

from webhook_service.services.webhooks import WebhookService

WEBHOOK_SERVICE_KEY = "webhook_service"


def install_webhook_service(app: web.Application, service: WebhookService) -> None:
    """Attach the service to the app and tie its lifecycle to the app's."""
    app[WEBHOOK_SERVICE_KEY] = service

    async def _start(_app: web.Application) -> None:
        await service.start()

    async def _close(_app: web.Application) -> None:
        await service.close()

    app.on_startup.append(_start)
    app.on_cleanup.append(_close)


def get_webhook_service(request: web.Request) -> WebhookService:
    service = request.app.get(WEBHOOK_SERVICE_KEY)
    if service is None:
        raise web.HTTPServiceUnavailable(text="Webhook service is not configured")
    return service
