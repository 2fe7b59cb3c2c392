"""Booking API request/response models."""

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from booking_core.models import Booking, HoldStatus, PendingRefund, RefundCalculation
from booking_core.services.booking_locker import CancellationResult, breakdown_to_item

from .pricing import StayRequest


class HoldRequest(StayRequest):
    """Request body for placing a hold."""


class BookingResponse(BaseModel):
    """A booking as returned to its owner."""

    booking_id: str
    reference: str = Field(..., examples=["BKG-261016-K7QM4"])
    property: str
    booking_mode: str
    room_ids: list[str]
    check_in: dt.date
    check_out: dt.date
    nights: int
    guests_count: int
    children_count: int
    status: str = Field(..., description="hold, complete, canceled or refunded")
    hold_expires_at: dt.datetime | None = None
    total_cents: int
    currency: str
    breakdown: dict[str, Any]
    payment_intent_id: str | None = None
    created_at: dt.datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            booking_id=booking.booking_id,
            reference=booking.reference,
            property=booking.property.value,
            booking_mode=booking.booking_mode.value,
            room_ids=list(booking.room_ids),
            check_in=booking.check_in,
            check_out=booking.check_out,
            nights=booking.nights,
            guests_count=booking.guests_count,
            children_count=booking.children_count,
            status=booking.status.value,
            hold_expires_at=booking.hold_expires_at,
            total_cents=booking.total_price.to_cents(),
            currency=booking.total_price.currency,
            breakdown=breakdown_to_item(booking.pricing_breakdown),
            payment_intent_id=booking.payment_intent_id,
            created_at=booking.created_at,
        )


class HoldStatusResponse(BaseModel):
    """Whether the caller's hold is still live."""

    booking_id: str
    status: str
    expired: bool
    seconds_remaining: int
    hold_expires_at: dt.datetime | None = None

    @classmethod
    def from_status(cls, hold: HoldStatus) -> "HoldStatusResponse":
        return cls(
            booking_id=hold.booking.booking_id,
            status=hold.booking.status.value,
            expired=hold.expired,
            seconds_remaining=hold.seconds_remaining,
            hold_expires_at=hold.booking.hold_expires_at,
        )


class CancelRequest(BaseModel):
    """Optional cancellation details."""

    model_config = ConfigDict(strict=False)

    reason: str | None = Field(default=None, max_length=500)


class CancellationResponse(BaseModel):
    """Cancelled booking and what happens to the money."""

    booking: BookingResponse
    refund_cents: int
    currency: str
    refund_status: Literal["none", "refunded", "pending_review"]
    refund_id: str | None = None
    pending_refund_id: str | None = None

    @classmethod
    def from_result(cls, result: CancellationResult) -> "CancellationResponse":
        record = result.refund_record
        if record is None:
            refund_status = "none"
        elif isinstance(record, PendingRefund):
            refund_status = "pending_review"
        else:
            refund_status = "refunded"

        return cls(
            booking=BookingResponse.from_booking(result.booking),
            refund_cents=result.refund_amount.to_cents(),
            currency=result.refund_amount.currency,
            refund_status=refund_status,
            refund_id=getattr(record, "refund_id", None),
            pending_refund_id=getattr(record, "pending_refund_id", None),
        )


class RefundQuoteResponse(BaseModel):
    """Refund the caller would get by cancelling today."""

    booking_id: str
    refund_cents: int
    payment_cents: int
    currency: str
    refund_percentage: int
    days_before_checkin: int
    policy_found: bool
    description: str

    @classmethod
    def from_calculation(
        cls, booking_id: str, calculation: RefundCalculation
    ) -> "RefundQuoteResponse":
        return cls(
            booking_id=booking_id,
            refund_cents=calculation.refund_amount.to_cents(),
            payment_cents=calculation.payment_amount.to_cents(),
            currency=calculation.refund_amount.currency,
            refund_percentage=calculation.refund_percentage,
            days_before_checkin=calculation.days_before_checkin,
            policy_found=calculation.policy_found,
            description=calculation.description,
        )
