"""Webhook domain primitives.

Field names are snake_case in Python and camelCase on the wire; every model
dumps with ``by_alias=True`` wherever it leaves the process.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from webhook_service.domain.enums import DeliveryErrorKind, DeliveryState, EventType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookEndpoint(CamelModel):
    id: str
    company_id: str
    url: str
    secret: str | None = Field(default=None, exclude=True)
    events: list[EventType] = Field(default_factory=list)
    active: bool = True
    created_at: datetime
    last_delivery_at: datetime | None = None
    failure_count: int = Field(default=0, ge=0)

    @computed_field(alias="hasSecret")  # type: ignore[prop-decorator]
    @property
    def has_secret(self) -> bool:
        return bool(self.secret)

    def subscribes_to(self, event: EventType) -> bool:
        return event in self.events


class DeletionProof(CamelModel):
    model_config = ConfigDict(frozen=True)

    commitment_hash: str
    proof_hash: str
    transaction_hash: str


class DeletionSummary(CamelModel):
    """Outcome of a batch deletion for one user at one company."""

    model_config = ConfigDict(frozen=True)

    total_records: int = Field(ge=0)
    deleted_records: int = Field(ge=0)
    deletion_proofs: list[DeletionProof] = Field(default_factory=list)


class PayloadData(CamelModel):
    model_config = ConfigDict(frozen=True)

    commitment_hash: str | None = None
    data_type: str | None = None
    service_provider: str | None = None
    transaction_hash: str | None = None
    deletion_details: DeletionSummary | None = None


class DeliveryPayload(CamelModel):
    """Body POSTed to receivers. Field order here is the signed wire order."""

    model_config = ConfigDict(frozen=True)

    event: EventType
    user_did: str = Field(alias="userDID")
    timestamp: int  # epoch milliseconds
    data: PayloadData

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DeliveryResult(CamelModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    status_code: int | None = None
    error: str | None = None
    error_kind: DeliveryErrorKind | None = None
    response_time_ms: float = 0.0
    attempt: int


class DeliveryAttempt(CamelModel):
    """One try at POSTing a payload to an endpoint.

    Attempts are immutable: the processor finalizes a copy carrying the
    result, and a retry is a brand new attempt with ``attempt + 1``.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    webhook_id: str
    payload: DeliveryPayload
    attempt: int = Field(default=1, ge=1)
    scheduled_at: datetime
    state: DeliveryState = DeliveryState.SCHEDULED
    delivered_at: datetime | None = None
    result: DeliveryResult | None = None

    def next_attempt(self, scheduled_at: datetime) -> "DeliveryAttempt":
        return DeliveryAttempt(
            webhook_id=self.webhook_id,
            payload=self.payload,
            attempt=self.attempt + 1,
            scheduled_at=scheduled_at,
        )

    def finalize(
        self,
        state: DeliveryState,
        *,
        delivered_at: datetime,
        result: DeliveryResult | None = None,
    ) -> "DeliveryAttempt":
        return self.model_copy(
            update={"state": state, "delivered_at": delivered_at, "result": result}
        )


class WebhookStats(CamelModel):
    total_webhooks: int
    active_webhooks: int
    queued_deliveries: int
    pending_retries: int = 0
    webhooks_by_company: dict[str, int] = Field(default_factory=dict)
