"""Webhook endpoints for Stripe.

Handles payment_intent.succeeded and charge.refunded; everything else is
acknowledged as skipped. No user authentication: the payload is verified
with the Stripe-Signature header instead.
"""

from fastapi import APIRouter, Depends, Header, Request

from booking_api.dependencies import get_payment_reconciler
from booking_api.models.payments import WebhookResponse
from booking_core.services import PaymentReconciler

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    response_model=WebhookResponse,
    responses={
        200: {"description": "Event received (processed, duplicate or skipped)"},
        400: {"description": "Missing or invalid signature"},
    },
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> WebhookResponse:
    payload = await request.body()
    outcome = reconciler.handle_webhook(payload, stripe_signature)
    return WebhookResponse.from_outcome(outcome)
