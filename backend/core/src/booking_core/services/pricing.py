"""Price calculation for buyout, per-guest-daily and per-room bookings.

PricingCalculator is a pure function of an injected RateCard; PricingService
loads that RateCard from the pricing and rooms tables.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from booking_core.models import (
    BookingError,
    BookingMode,
    BuyoutBreakdown,
    ErrorCode,
    Money,
    NightlyRate,
    PerGuestBreakdown,
    PriceQuote,
    Property,
    RateCard,
    Room,
    RoomBreakdown,
    RoomLine,
    sum_money,
)
from booking_core.utils.clock import stay_nights
from booking_core.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


def parse_booking_mode(mode: BookingMode | str) -> BookingMode:
    """Coerce a mode string into BookingMode.

    Raises:
        BookingError: INVALID_BOOKING_MODE for unknown values
    """
    if isinstance(mode, BookingMode):
        return mode
    try:
        return BookingMode(mode)
    except ValueError as e:
        raise BookingError(ErrorCode.INVALID_BOOKING_MODE, {"booking_mode": str(mode)}) from e


def parse_property(value: Property | str) -> Property:
    if isinstance(value, Property):
        return value
    try:
        return Property(value)
    except ValueError as e:
        raise BookingError(ErrorCode.PRICING_RULE_NOT_FOUND, {"property": str(value)}) from e


def split_party(count: int, parts: int) -> list[int]:
    """Spread a head count over rooms, earlier rooms taking the remainder.

    >>> split_party(5, 2)
    [3, 2]
    """
    base, remainder = divmod(count, parts)
    return [base + (1 if i < remainder else 0) for i in range(parts)]


class PricingCalculator:
    """Computes totals and breakdowns from a RateCard."""

    def __init__(self, rate_card: RateCard) -> None:
        self.rate_card = rate_card

    def calculate_price(
        self,
        property: Property | str,
        check_in: dt.date,
        check_out: dt.date,
        booking_mode: BookingMode | str,
        room_ids: list[str] | None = None,
        guests_count: int = 1,
        children_count: int = 0,
    ) -> PriceQuote:
        """Calculate the total price and breakdown for a stay.

        Args:
            property: Property being booked
            check_in: Check-in date
            check_out: Check-out date (exclusive)
            booking_mode: buyout, day or room
            room_ids: Rooms to book (room mode only)
            guests_count: Adult guest count
            children_count: Child count

        Returns:
            PriceQuote with total and mode-specific breakdown

        Raises:
            BookingError: INVALID_DATE_RANGE, INVALID_BOOKING_MODE, ROOM_REQUIRED,
                ROOM_NOT_FOUND, MAX_GUESTS_EXCEEDED or PRICING_RULE_NOT_FOUND
        """
        prop = parse_property(property)
        mode = parse_booking_mode(booking_mode)

        nights = (check_out - check_in).days
        if nights <= 0:
            raise BookingError(
                ErrorCode.INVALID_DATE_RANGE,
                {"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
            )

        if mode == BookingMode.BUYOUT:
            total, breakdown = self._price_buyout(prop, check_in, check_out, nights)
        elif mode == BookingMode.DAY:
            total, breakdown = self._price_per_guest(
                prop, check_in, check_out, nights, guests_count
            )
        else:
            total, breakdown = self._price_rooms(
                prop, nights, room_ids or [], guests_count, children_count
            )

        return PriceQuote(
            property=prop,
            booking_mode=mode,
            check_in=check_in,
            check_out=check_out,
            nights=nights,
            total=total,
            breakdown=breakdown,
        )

    def _price_buyout(
        self,
        prop: Property,
        check_in: dt.date,
        check_out: dt.date,
        nights: int,
    ) -> tuple[Money, BuyoutBreakdown]:
        total = self._sum_nightly(prop, BookingMode.BUYOUT, check_in, check_out)
        return total, BuyoutBreakdown(nights=nights, price_per_night=total.divide(nights))

    def _price_per_guest(
        self,
        prop: Property,
        check_in: dt.date,
        check_out: dt.date,
        nights: int,
        guests_count: int,
    ) -> tuple[Money, PerGuestBreakdown]:
        per_guest = self._sum_nightly(prop, BookingMode.DAY, check_in, check_out)
        total = per_guest * guests_count
        return total, PerGuestBreakdown(
            nights=nights,
            guests_count=guests_count,
            price_per_guest_per_night=total.divide(nights * guests_count),
        )

    def _price_rooms(
        self,
        prop: Property,
        nights: int,
        room_ids: list[str],
        guests_count: int,
        children_count: int,
    ) -> tuple[Money, RoomBreakdown]:
        if not room_ids:
            raise BookingError(ErrorCode.ROOM_REQUIRED)

        rooms = [self._get_room(prop, room_id) for room_id in room_ids]
        guest_shares = split_party(guests_count, len(rooms))
        child_shares = split_party(children_count, len(rooms))

        lines: list[RoomLine] = []
        for room, guests, children in zip(rooms, guest_shares, child_shares):
            if guests + children > room.capacity:
                raise BookingError(
                    ErrorCode.MAX_GUESTS_EXCEEDED,
                    {"room_id": room.room_id, "capacity": str(room.capacity)},
                )

            children_per_night = room.child_surcharge * children
            subtotal = (room.nightly_rate + children_per_night) * nights
            lines.append(
                RoomLine(
                    room_id=room.room_id,
                    room_name=room.name,
                    nights=nights,
                    guests_count=guests,
                    children_count=children,
                    price_per_night=room.nightly_rate,
                    children_price_per_night=children_per_night,
                    subtotal=subtotal,
                )
            )

        total = sum_money([line.subtotal for line in lines], self.rate_card.currency)
        return total, RoomBreakdown(nights=nights, rooms=lines)

    def _get_room(self, prop: Property, room_id: str) -> Room:
        room = self.rate_card.rooms.get(room_id)
        if room is None or room.property != prop:
            raise BookingError(
                ErrorCode.ROOM_NOT_FOUND,
                {"room_id": room_id, "property": prop.value},
            )
        return room

    def _sum_nightly(
        self,
        prop: Property,
        mode: BookingMode,
        check_in: dt.date,
        check_out: dt.date,
    ) -> Money:
        return sum_money(
            [self.rate_for_night(prop, mode, night) for night in stay_nights(check_in, check_out)],
            self.rate_card.currency,
        )

    def rate_for_night(self, prop: Property, mode: BookingMode, night: dt.date) -> Money:
        """Find the rate for one night: a covering season wins over the default.

        Overlapping seasons resolve to the narrowest window, then by season_name.
        """
        candidates = [
            r for r in self.rate_card.rates
            if r.property == prop and r.booking_mode == mode and r.covers(night)
        ]
        seasonal = [r for r in candidates if r.is_seasonal()]
        chosen = seasonal or candidates
        if not chosen:
            raise BookingError(
                ErrorCode.PRICING_RULE_NOT_FOUND,
                {"property": prop.value, "booking_mode": mode.value, "night": night.isoformat()},
            )
        return min(chosen, key=lambda r: (r.window_days() or 0, r.season_name)).amount


class PricingService:
    """Loads and stores rates and rooms, producing a RateCard."""

    RATES_TABLE = "pricing"
    ROOMS_TABLE = "rooms"

    def __init__(self, db: "DynamoDBService", currency: str = "USD") -> None:
        """Initialize pricing service.

        Args:
            db: DynamoDB service instance
            currency: Currency of the configured rates
        """
        self.db = db
        self.currency = currency

    def load_rate_card(self) -> RateCard:
        """Read every rate and room into a RateCard."""
        rates = [self._item_to_rate(item) for item in self.db.scan(self.RATES_TABLE)]
        rooms = [self._item_to_room(item) for item in self.db.scan(self.ROOMS_TABLE)]
        logger.info("Loaded rate card: %d rates, %d rooms", len(rates), len(rooms))
        return RateCard(
            currency=self.currency,
            rates=rates,
            rooms={room.room_id: room for room in rooms},
        )

    def calculator(self) -> PricingCalculator:
        return PricingCalculator(self.load_rate_card())

    def put_rate(self, rate: NightlyRate) -> bool:
        return self.db.put_item(self.RATES_TABLE, self._rate_to_item(rate))

    def put_room(self, room: Room) -> bool:
        return self.db.put_item(self.ROOMS_TABLE, self._room_to_item(room))

    def _rate_to_item(self, rate: NightlyRate) -> dict[str, Any]:
        item: dict[str, Any] = {
            "rate_key": f"{rate.property.value}#{rate.booking_mode.value}#{rate.season_name}",
            "property": rate.property.value,
            "booking_mode": rate.booking_mode.value,
            "season_name": rate.season_name,
            "amount_cents": rate.amount.to_cents(),
            "currency": rate.amount.currency,
        }
        if rate.start_date and rate.end_date:
            item["start_date"] = rate.start_date.isoformat()
            item["end_date"] = rate.end_date.isoformat()
        return item

    def _item_to_rate(self, item: dict[str, Any]) -> NightlyRate:
        start = item.get("start_date")
        end = item.get("end_date")
        return NightlyRate(
            property=Property(item["property"]),
            booking_mode=BookingMode(item["booking_mode"]),
            season_name=item.get("season_name", "default"),
            amount=Money.from_cents(int(item["amount_cents"]), item.get("currency", self.currency)),
            start_date=dt.date.fromisoformat(start) if start else None,
            end_date=dt.date.fromisoformat(end) if end else None,
        )

    def _room_to_item(self, room: Room) -> dict[str, Any]:
        return {
            "room_id": room.room_id,
            "property": room.property.value,
            "name": room.name,
            "capacity": room.capacity,
            "nightly_rate_cents": room.nightly_rate.to_cents(),
            "child_surcharge_cents": room.child_surcharge.to_cents(),
            "currency": room.nightly_rate.currency,
        }

    def _item_to_room(self, item: dict[str, Any]) -> Room:
        currency = item.get("currency", self.currency)
        return Room(
            room_id=item["room_id"],
            property=Property(item["property"]),
            name=item["name"],
            capacity=int(item["capacity"]),
            nightly_rate=Money.from_cents(int(item["nightly_rate_cents"]), currency),
            child_surcharge=Money.from_cents(int(item.get("child_surcharge_cents", 0)), currency),
        )
