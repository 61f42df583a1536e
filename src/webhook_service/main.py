"""aiohttp application entrypoint."""
from __future__ import annotations

from typing import Any

from aiohttp import web

from backend_common.aiohttp_app import add_healthcheck, create_base_app
from backend_common.logging_config import configure_logging

from webhook_service.api.router import setup_routes
from webhook_service.services.dependencies import get_webhook_service, install_webhook_service
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import Settings, settings as default_settings


def create_app(
    settings: Settings | None = None,
    *,
    service: WebhookService | None = None,
) -> web.Application:
    settings = settings or default_settings
    app = create_base_app(settings)

    async def webhook_health(request: web.Request) -> dict[str, Any]:
        stats = await get_webhook_service(request).get_stats()
        return {"webhooks": {"status": "active", **stats.model_dump(mode="json", by_alias=True)}}

    add_healthcheck(app, settings, extra=webhook_health)
    setup_routes(app)
    install_webhook_service(app, service or WebhookService.from_settings(settings))
    return app


def main() -> None:
    configure_logging(default_settings.log_level)
    web.run_app(create_app(), host=default_settings.host, port=default_settings.port)


if __name__ == "__main__":
    main()
