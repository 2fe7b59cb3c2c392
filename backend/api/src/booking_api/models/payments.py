"""Payment and webhook API models."""

from typing import Any

from pydantic import BaseModel, Field

from booking_core.models import WebhookOutcome


class PaymentIntentResponse(BaseModel):
    """PaymentIntent details the client needs to confirm payment."""

    booking_id: str
    payment_intent_id: str = Field(..., examples=["pi_3ABC123"])
    client_secret: str | None = Field(
        default=None, description="Pass to Stripe.js confirmPayment"
    )
    amount_cents: int
    currency: str
    status: str

    @classmethod
    def from_intent(cls, booking_id: str, intent: dict[str, Any]) -> "PaymentIntentResponse":
        return cls(
            booking_id=booking_id,
            payment_intent_id=intent["id"],
            client_secret=intent.get("client_secret"),
            amount_cents=int(intent["amount"]),
            currency=str(intent["currency"]).upper(),
            status=str(intent.get("status", "")),
        )


class WebhookResponse(BaseModel):
    """Standard webhook acknowledgement."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: str  # "success", "duplicate", "skipped", "error"
    message: str | None = None

    @classmethod
    def from_outcome(cls, outcome: WebhookOutcome) -> "WebhookResponse":
        return cls(
            received=True,
            event_id=outcome.event_id,
            event_type=outcome.event_type,
            processing_result=outcome.result.value,
            message=outcome.message,
        )
