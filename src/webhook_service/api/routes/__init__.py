"""Route modules."""

from . import webhooks

__all__ = [
    "webhooks",
]
