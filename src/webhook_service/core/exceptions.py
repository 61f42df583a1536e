"""Common exceptions for the registry, delivery and API layers."""
from __future__ import annotations

from webhook_service.domain.enums import DeliveryErrorKind


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when registry or queue operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class DeliveryError(WebhookServiceError):
    """A single HTTP delivery did not reach a 2xx response."""

    kind: DeliveryErrorKind = DeliveryErrorKind.NETWORK

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkDeliveryError(DeliveryError):
    """Connection refused, reset or otherwise broken before a response arrived."""

    kind = DeliveryErrorKind.NETWORK


class TimeoutDeliveryError(DeliveryError):
    """The receiver did not answer within the request timeout."""

    kind = DeliveryErrorKind.TIMEOUT


class HttpStatusDeliveryError(DeliveryError):
    """The receiver answered with a non-2xx status."""

    kind = DeliveryErrorKind.HTTP
