"""Request DTOs for the management API."""
from __future__ import annotations

from pydantic import Field, field_validator

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import CamelModel


def _dedupe(events: list[EventType]) -> list[EventType]:
    return list(dict.fromkeys(events))


class WebhookCreateDTO(CamelModel):
    company_id: str = Field(min_length=1)
    url: str = Field(min_length=1)
    events: list[EventType] = Field(min_length=1)
    secret: str | None = None

    @field_validator("events")
    @classmethod
    def normalize_events(cls, value: list[EventType]) -> list[EventType]:
        return _dedupe(value)


class WebhookUpdateDTO(CamelModel):
    url: str | None = Field(default=None, min_length=1)
    events: list[EventType] | None = Field(default=None, min_length=1)
    secret: str | None = None
    active: bool | None = None

    @field_validator("events")
    @classmethod
    def normalize_events(cls, value: list[EventType] | None) -> list[EventType] | None:
        return _dedupe(value) if value is not None else None
