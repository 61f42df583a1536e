"""Webhook endpoint management routes."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from backend_common.aiohttp_app import read_json

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


def _bad_request(exc: ValidationError) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(text=exc.json(), content_type="application/json")


@routes.post("/api/v1/webhooks")
async def register_webhook(request: web.Request):
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise _bad_request(exc) from exc

    service = get_webhook_service(request)
    webhook_id = await service.register(dto.company_id, dto.url, dto.events, dto.secret)
    return web.json_response({"webhookId": webhook_id}, status=201)


@routes.get("/api/v1/companies/{company_id}/webhooks")
async def list_company_webhooks(request: web.Request):
    company_id = request.match_info["company_id"]
    service = get_webhook_service(request)
    webhooks = await service.list(company_id)
    return web.json_response(
        {
            "companyId": company_id,
            "webhooks": [w.model_dump(mode="json", by_alias=True) for w in webhooks],
            "totalWebhooks": len(webhooks),
        }
    )


# Registered before the {webhook_id} routes so "stats" is not taken for an id.
@routes.get("/api/v1/webhooks/stats")
async def webhook_stats(request: web.Request):
    service = get_webhook_service(request)
    stats = await service.get_stats()
    return web.json_response(stats.model_dump(mode="json", by_alias=True))


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    service = get_webhook_service(request)
    try:
        webhook = await service.require(request.match_info["webhook_id"])
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json", by_alias=True))


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    webhook_id = request.match_info["webhook_id"]
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise _bad_request(exc) from exc

    changes = dto.model_dump(exclude_unset=True)
    if not changes:
        raise web.HTTPBadRequest(text="No updatable fields supplied")
    service = get_webhook_service(request)
    if not await service.update(webhook_id, changes):
        raise web.HTTPNotFound(text="Webhook not found")
    webhook = await service.require(webhook_id)
    return web.json_response(webhook.model_dump(mode="json", by_alias=True))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    service = get_webhook_service(request)
    if not await service.remove(request.match_info["webhook_id"]):
        raise web.HTTPNotFound(text="Webhook not found")
    return web.Response(status=204)


@routes.get("/api/v1/webhooks/{webhook_id}/deliveries")
async def list_webhook_deliveries(request: web.Request):
    webhook_id = request.match_info["webhook_id"]
    try:
        limit = int(request.rel_url.query.get("limit", "50"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit must be an integer") from exc
    limit = max(1, min(limit, 500))

    service = get_webhook_service(request)
    try:
        await service.require(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    deliveries = service.recent_deliveries(webhook_id, limit=limit)
    return web.json_response(
        {
            "webhookId": webhook_id,
            "deliveries": [d.model_dump(mode="json", by_alias=True) for d in deliveries],
        }
    )
