"""Payment endpoints.

Stripe redirects the guest back to the site after 3DS or wallet
confirmation, with the PaymentIntent (or its client secret) and a
redirect_status in the query string. The redirect can arrive before Stripe
has settled the intent, so reconciliation retries within a bounded window.
"""

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from booking_api.dependencies import get_payment_reconciler
from booking_api.models.bookings import BookingResponse
from booking_core.services import PaymentReconciler

router = APIRouter(tags=["payments"])


@router.get(
    "/payments/return",
    summary="Complete a booking after Stripe's redirect",
    response_model=BookingResponse,
    responses={
        402: {"description": "Payment did not succeed"},
        409: {"description": "Hold expired before payment completed"},
        502: {"description": "Payment could not be verified with Stripe"},
        504: {"description": "Payment not visible in time; the webhook will finish it"},
    },
)
async def payment_return(
    payment_intent: str | None = Query(default=None, description="PaymentIntent ID"),
    payment_intent_client_secret: str | None = Query(default=None),
    redirect_status: str = Query(..., description="succeeded, processing or failed"),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> BookingResponse:
    intent_ref = payment_intent or payment_intent_client_secret or ""
    # resolve_redirect sleeps between retries
    booking = await run_in_threadpool(reconciler.resolve_redirect, intent_ref, redirect_status)
    return BookingResponse.from_booking(booking)
