"""Pricing API request/response models."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from booking_core.models import PriceQuote
from booking_core.services.booking_locker import breakdown_to_item


class StayRequest(BaseModel):
    """The stay being priced or held.

    property and booking_mode are plain strings so unknown values surface
    as booking errors rather than schema errors.
    """

    # Allows string-to-date coercion from JSON
    model_config = ConfigDict(strict=False)

    property: str = Field(..., examples=["clear_lake"])
    booking_mode: str = Field(..., description="buyout, day or room", examples=["room"])
    check_in: dt.date = Field(..., examples=["2026-07-01"])
    check_out: dt.date = Field(..., examples=["2026-07-03"])
    room_ids: list[str] = Field(default_factory=list)
    guests_count: int = Field(default=1, description="Adult guests")
    children_count: int = Field(default=0)


class QuoteResponse(BaseModel):
    """Price for a stay."""

    property: str
    booking_mode: str
    check_in: dt.date
    check_out: dt.date
    nights: int
    total_cents: int = Field(..., description="Total in cents", examples=[27000])
    currency: str
    breakdown: dict[str, Any]

    @classmethod
    def from_quote(cls, quote: PriceQuote) -> "QuoteResponse":
        return cls(
            property=quote.property.value,
            booking_mode=quote.booking_mode.value,
            check_in=quote.check_in,
            check_out=quote.check_out,
            nights=quote.nights,
            total_cents=quote.total.to_cents(),
            currency=quote.total.currency,
            breakdown=breakdown_to_item(quote.breakdown),
        )
