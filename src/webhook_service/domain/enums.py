"""Webhook domain enums."""
from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    """Lifecycle events a company can subscribe to."""

    DATA_REGISTERED = "data_registered"
    DATA_DELETED = "data_deleted"
    DELETION_COMPLETED = "deletion_completed"


class DeliveryState(str, Enum):
    """Where a delivery chain stands after an attempt was processed."""

    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    PERMANENTLY_FAILED = "permanently_failed"
    DROPPED = "dropped"


class DeliveryErrorKind(str, Enum):
    """Failure classes recorded on a delivery result."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP = "http"
    ENDPOINT_UNAVAILABLE = "endpoint_unavailable"
