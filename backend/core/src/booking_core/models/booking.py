"""Booking and user models."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .enums import BookingMode, BookingStatus, Property
from .money import Money
from .pricing import PricingBreakdown


class User(BaseModel):
    """The booking owner as seen by the engine.

    Authentication happens elsewhere; the engine only needs identity,
    the Stripe customer and whether membership allows booking.
    """

    model_config = ConfigDict(strict=True)

    user_id: str
    email: str | None = None
    stripe_customer_id: str | None = None
    membership_active: bool = True


class Booking(BaseModel):
    """A reservation of a property, or rooms in it, for a date range.

    While status is HOLD the row carries hold_expires_at; every other status
    clears it. total_price never changes after the booking leaves HOLD.
    """

    model_config = ConfigDict(strict=True)

    booking_id: str = Field(..., description="Unique booking ID")
    reference: str = Field(..., description="Human-readable reference, e.g. BKG-261016-K7QM4")
    user_id: str
    property: Property
    booking_mode: BookingMode
    room_ids: list[str] = Field(default_factory=list)
    check_in: dt.date
    check_out: dt.date
    guests_count: int = Field(..., ge=0)
    children_count: int = Field(default=0, ge=0)
    status: BookingStatus
    hold_expires_at: dt.datetime | None = None
    total_price: Money
    pricing_breakdown: PricingBreakdown
    payment_intent_id: str | None = Field(
        default=None, description="Stripe PaymentIntent ID (pi_xxx)"
    )
    cancellation_reason: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime
    confirmed_at: dt.datetime | None = None
    canceled_at: dt.datetime | None = None

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days


class HoldStatus(BaseModel):
    """Result of re-checking a hold from a client session."""

    model_config = ConfigDict(strict=True)

    booking: Booking
    expired: bool
    seconds_remaining: int = Field(..., ge=0)
