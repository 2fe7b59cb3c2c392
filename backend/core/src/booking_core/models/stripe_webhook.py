"""Stripe webhook and payment instrument models."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class WebhookResult(str, Enum):
    """Outcome of processing one webhook delivery."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    ERROR = "error"


class StripeWebhookEvent(BaseModel):
    """Log of a received Stripe webhook event.

    Used for duplicate suppression of at-least-once deliveries and as an
    audit trail for payment investigations.
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Stripe event ID (evt_xxx)",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        description="Stripe event type",
        examples=["payment_intent.succeeded", "charge.refunded"],
    )
    processed_at: datetime
    payload_hash: str = Field(..., description="SHA-256 hash of payload")
    booking_id: str | None = None
    payment_id: str | None = None
    processing_result: WebhookResult = WebhookResult.SUCCESS
    error_message: str | None = None


class WebhookOutcome(BaseModel):
    """What handling one webhook delivery did."""

    event_id: str | None = None
    event_type: str | None = None
    result: WebhookResult
    message: str | None = None
    booking_id: str | None = None
    payment_id: str | None = None


class InlineInstrument(BaseModel):
    """payment_method given as a bare ID string."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    payment_method_id: str


class ExpandedInstrument(BaseModel):
    """payment_method expanded into the full Stripe object."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["expanded"] = "expanded"
    payment_method_id: str
    data: dict[str, Any]


class AbsentInstrument(BaseModel):
    """No payment method could be found on the intent or its charges."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["absent"] = "absent"


PaymentInstrument = InlineInstrument | ExpandedInstrument | AbsentInstrument
