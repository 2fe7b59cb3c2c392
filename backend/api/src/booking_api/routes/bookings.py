"""Booking endpoints.

Provides REST endpoints for:
- Placing a hold on dates or rooms
- Reading a booking and re-checking its hold
- Creating the Stripe PaymentIntent for a hold
- Cancelling, and quoting the refund a cancellation would give

Every endpoint acts on the caller's own bookings (X-User-Id header).
"""

from fastapi import APIRouter, Body, Depends
from starlette.status import HTTP_201_CREATED

from booking_api.dependencies import (
    get_booking_locker,
    get_current_user,
    get_owned_booking,
    get_payment_reconciler,
)
from booking_api.models.bookings import (
    BookingResponse,
    CancellationResponse,
    CancelRequest,
    HoldRequest,
    HoldStatusResponse,
    RefundQuoteResponse,
)
from booking_api.models.payments import PaymentIntentResponse
from booking_core.models import Booking, User
from booking_core.services import BookingLocker, PaymentReconciler
from booking_core.workers import HoldSessionMonitor

router = APIRouter(tags=["bookings"])


@router.post(
    "/bookings/holds",
    summary="Place a hold",
    description="""
Reserve dates (and rooms, for room bookings) for a limited time while the
guest pays. The hold expires automatically unless payment completes first.

**Notes:**
- Amounts are in cents
- `hold_expires_at` is UTC
""",
    status_code=HTTP_201_CREATED,
    response_model=BookingResponse,
    responses={
        201: {"description": "Hold placed"},
        400: {"description": "Invalid request"},
        403: {"description": "Active membership required"},
        409: {"description": "Dates or rooms already held or booked"},
    },
)
async def create_hold(
    request: HoldRequest,
    user: User = Depends(get_current_user),
    locker: BookingLocker = Depends(get_booking_locker),
) -> BookingResponse:
    booking = locker.create_hold(
        user,
        request.property,
        request.check_in,
        request.check_out,
        request.booking_mode,
        room_ids=request.room_ids,
        guests_count=request.guests_count,
        children_count=request.children_count,
    )
    return BookingResponse.from_booking(booking)


@router.get(
    "/bookings/{booking_id}",
    summary="Get a booking",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_booking(booking: Booking = Depends(get_owned_booking)) -> BookingResponse:
    return BookingResponse.from_booking(booking)


@router.get(
    "/bookings/{booking_id}/hold-status",
    summary="Re-check a hold",
    description="Reports whether the hold is still live and how long it has left. Read only.",
    response_model=HoldStatusResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_hold_status(
    booking: Booking = Depends(get_owned_booking),
    locker: BookingLocker = Depends(get_booking_locker),
) -> HoldStatusResponse:
    monitor = HoldSessionMonitor(locker, clock=locker.clock)
    return HoldStatusResponse.from_status(monitor.check(booking.booking_id))


@router.post(
    "/bookings/{booking_id}/payment-intent",
    summary="Create the PaymentIntent for a hold",
    description="""
Create the Stripe PaymentIntent for a live hold. Repeated calls return the
same intent, so the client can safely retry.
""",
    response_model=PaymentIntentResponse,
    responses={
        409: {"description": "Hold expired or booking not in hold"},
        502: {"description": "Stripe API error"},
    },
)
async def create_payment_intent(
    booking: Booking = Depends(get_owned_booking),
    user: User = Depends(get_current_user),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentIntentResponse:
    intent = reconciler.create_payment_intent(booking, user)
    return PaymentIntentResponse.from_intent(booking.booking_id, intent)


@router.post(
    "/bookings/{booking_id}/cancel",
    summary="Cancel a booking",
    description="""
Cancel a booking. A hold is released. A paid booking is refunded per its
refund policy: a full refund is issued at once, a partial refund is queued
for review. Cancelling an already cancelled booking is a no-op.
""",
    response_model=CancellationResponse,
    responses={404: {"description": "Booking not found"}},
)
async def cancel_booking(
    request: CancelRequest | None = Body(default=None),
    booking: Booking = Depends(get_owned_booking),
    locker: BookingLocker = Depends(get_booking_locker),
) -> CancellationResponse:
    reason = request.reason if request else None
    result = locker.cancel_booking(booking, reason=reason)
    return CancellationResponse.from_result(result)


@router.get(
    "/bookings/{booking_id}/refund-quote",
    summary="Quote the refund for cancelling today",
    response_model=RefundQuoteResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_refund_quote(
    booking: Booking = Depends(get_owned_booking),
    locker: BookingLocker = Depends(get_booking_locker),
) -> RefundQuoteResponse:
    calculation = locker.calculate_refund(booking.booking_id)
    return RefundQuoteResponse.from_calculation(booking.booking_id, calculation)
