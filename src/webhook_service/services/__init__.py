"""Domain services exports."""

from webhook_service.services.notifier import EventNotifier
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "EventNotifier",
    "WebhookService",
]
