"""Pricing configuration and price quote models."""

import datetime as dt
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .enums import BookingMode, Property
from .money import Money


class NightlyRate(BaseModel):
    """A configured nightly rate for a property and booking mode.

    A rate without a date window is the default; a rate with a window
    (inclusive on both ends) overrides the default for nights inside it.
    For buyout the amount is per night, for day mode per guest per night.
    """

    model_config = ConfigDict(strict=True)

    property: Property
    booking_mode: BookingMode
    amount: Money
    season_name: str = Field(default="default")
    start_date: dt.date | None = None
    end_date: dt.date | None = None

    def is_seasonal(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def window_days(self) -> int | None:
        if not self.is_seasonal():
            return None
        assert self.start_date is not None and self.end_date is not None
        return (self.end_date - self.start_date).days + 1

    def covers(self, night: dt.date) -> bool:
        if not self.is_seasonal():
            return True
        assert self.start_date is not None and self.end_date is not None
        return self.start_date <= night <= self.end_date


class Room(BaseModel):
    """A bookable room at a property."""

    model_config = ConfigDict(strict=True)

    room_id: str
    property: Property
    name: str
    capacity: int = Field(..., ge=1)
    nightly_rate: Money = Field(..., description="Base rate for the room per night")
    child_surcharge: Money = Field(..., description="Surcharge per child per night")


class RateCard(BaseModel):
    """All pricing inputs for the calculator, loaded from configuration."""

    model_config = ConfigDict(strict=True)

    currency: str = "USD"
    rates: list[NightlyRate] = Field(default_factory=list)
    rooms: dict[str, Room] = Field(default_factory=dict)


class BuyoutBreakdown(BaseModel):
    model_config = ConfigDict(strict=True)

    type: Literal["buyout"] = "buyout"
    nights: int
    price_per_night: Money


class PerGuestBreakdown(BaseModel):
    model_config = ConfigDict(strict=True)

    type: Literal["per_guest"] = "per_guest"
    nights: int
    guests_count: int
    price_per_guest_per_night: Money


class RoomLine(BaseModel):
    """One room's share of a per-room booking."""

    model_config = ConfigDict(strict=True)

    room_id: str
    room_name: str
    nights: int
    guests_count: int
    children_count: int
    price_per_night: Money
    children_price_per_night: Money
    subtotal: Money


class RoomBreakdown(BaseModel):
    model_config = ConfigDict(strict=True)

    type: Literal["room"] = "room"
    nights: int
    rooms: list[RoomLine]


PricingBreakdown = Annotated[
    Union[BuyoutBreakdown, PerGuestBreakdown, RoomBreakdown],
    Field(discriminator="type"),
]


class PriceQuote(BaseModel):
    """Result of a price calculation."""

    model_config = ConfigDict(strict=True)

    property: Property
    booking_mode: BookingMode
    check_in: dt.date
    check_out: dt.date
    nights: int
    total: Money
    breakdown: PricingBreakdown
