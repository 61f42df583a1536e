"""Repository package exports."""

from webhook_service.repositories.webhooks import (
    DeliveryLog,
    DeliveryQueue,
    EndpointRegistry,
    InMemoryDeliveryQueue,
    InMemoryEndpointRegistry,
)

__all__ = [
    "DeliveryLog",
    "DeliveryQueue",
    "EndpointRegistry",
    "InMemoryDeliveryQueue",
    "InMemoryEndpointRegistry",
]
