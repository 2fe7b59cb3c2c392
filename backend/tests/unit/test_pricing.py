"""Unit tests for PricingCalculator and PricingService.

Test categories:
- Per-guest-daily pricing
- Per-room aggregation and party split
- Buyout with seasonal overrides
- Validation errors
- Rate card persistence
"""

import datetime as dt
from typing import Any

import pytest

from booking_core.models import (
    BookingError,
    BookingMode,
    ErrorCode,
    Money,
    NightlyRate,
    PerGuestBreakdown,
    Property,
    RoomBreakdown,
)
from booking_core.services.pricing import PricingCalculator, PricingService, split_party


@pytest.fixture
def calculator(rate_card: Any) -> PricingCalculator:
    return PricingCalculator(rate_card)


class TestPerGuestPricing:
    def test_two_guests_three_nights(self, calculator: PricingCalculator) -> None:
        """$45 per guest per night, 2 guests, 3 nights = $270."""
        quote = calculator.calculate_price(
            "clear_lake",
            dt.date(2024, 7, 1),
            dt.date(2024, 7, 4),
            "day",
            guests_count=2,
        )

        assert quote.nights == 3
        assert quote.total == Money.of("270.00")
        assert isinstance(quote.breakdown, PerGuestBreakdown)
        assert quote.breakdown.price_per_guest_per_night == Money.of("45.00")
        assert quote.breakdown.guests_count == 2


class TestRoomPricing:
    def test_two_rooms_aggregate(self, calculator: PricingCalculator) -> None:
        """Lake View $100 + Loft $140 over two nights = $240."""
        quote = calculator.calculate_price(
            Property.CLEAR_LAKE,
            dt.date(2026, 7, 10),
            dt.date(2026, 7, 12),
            BookingMode.ROOM,
            room_ids=["lake-view", "loft"],
            guests_count=2,
        )

        assert quote.total == Money.of("240.00")
        assert isinstance(quote.breakdown, RoomBreakdown)
        lines = {line.room_id: line for line in quote.breakdown.rooms}
        assert lines["lake-view"].subtotal == Money.of("100.00")
        assert lines["loft"].subtotal == Money.of("140.00")
        assert lines["lake-view"].price_per_night == Money.of("50.00")
        assert lines["lake-view"].guests_count == 1
        assert lines["loft"].nights == 2

    def test_child_surcharge_per_night(self, calculator: PricingCalculator) -> None:
        quote = calculator.calculate_price(
            Property.CLEAR_LAKE,
            dt.date(2026, 7, 10),
            dt.date(2026, 7, 12),
            BookingMode.ROOM,
            room_ids=["loft"],
            guests_count=2,
            children_count=2,
        )

        # (70 + 2 * 15) * 2 nights
        assert quote.total == Money.of("200.00")
        line = quote.breakdown.rooms[0]  # type: ignore[union-attr]
        assert line.children_price_per_night == Money.of("30.00")

    def test_party_larger_than_room(self, calculator: PricingCalculator) -> None:
        with pytest.raises(BookingError) as exc_info:
            calculator.calculate_price(
                Property.CLEAR_LAKE,
                dt.date(2026, 7, 10),
                dt.date(2026, 7, 12),
                BookingMode.ROOM,
                room_ids=["lake-view"],
                guests_count=3,
            )
        assert exc_info.value.code == ErrorCode.MAX_GUESTS_EXCEEDED

    def test_room_required(self, calculator: PricingCalculator) -> None:
        with pytest.raises(BookingError) as exc_info:
            calculator.calculate_price(
                Property.CLEAR_LAKE, dt.date(2026, 7, 10), dt.date(2026, 7, 12), "room"
            )
        assert exc_info.value.code == ErrorCode.ROOM_REQUIRED

    def test_room_of_other_property(self, calculator: PricingCalculator) -> None:
        with pytest.raises(BookingError) as exc_info:
            calculator.calculate_price(
                Property.TAHOE,
                dt.date(2026, 7, 10),
                dt.date(2026, 7, 12),
                "room",
                room_ids=["loft"],
            )
        assert exc_info.value.code == ErrorCode.ROOM_NOT_FOUND

    def test_split_party(self) -> None:
        assert split_party(5, 2) == [3, 2]
        assert split_party(0, 3) == [0, 0, 0]


class TestBuyoutPricing:
    def test_default_rate(self, calculator: PricingCalculator) -> None:
        quote = calculator.calculate_price(
            "tahoe", dt.date(2026, 8, 1), dt.date(2026, 8, 3), "buyout"
        )
        assert quote.total == Money.of("1000.00")
        assert quote.breakdown.price_per_night == Money.of("500.00")  # type: ignore[union-attr]

    def test_seasonal_rate_overrides_default(self, calculator: PricingCalculator) -> None:
        """Nights of Jul 3-5 use the $650 season, Jul 2 the $500 default."""
        quote = calculator.calculate_price(
            "tahoe", dt.date(2026, 7, 2), dt.date(2026, 7, 6), "buyout"
        )
        assert quote.total == Money.of("2450.00")
        assert quote.breakdown.price_per_night == Money.of("612.50")  # type: ignore[union-attr]

    @pytest.mark.parametrize("reverse", [False, True])
    def test_overlapping_seasons_pick_narrowest(self, rate_card: Any, reverse: bool) -> None:
        summer = NightlyRate(
            property=Property.TAHOE,
            booking_mode=BookingMode.BUYOUT,
            amount=Money.of("550.00"),
            season_name="summer",
            start_date=dt.date(2026, 6, 1),
            end_date=dt.date(2026, 8, 31),
        )
        rates = [*rate_card.rates, summer]
        if reverse:
            rates.reverse()
        calculator = PricingCalculator(rate_card.model_copy(update={"rates": rates}))

        assert calculator.rate_for_night(
            Property.TAHOE, BookingMode.BUYOUT, dt.date(2026, 7, 4)
        ) == Money.of("650.00")
        assert calculator.rate_for_night(
            Property.TAHOE, BookingMode.BUYOUT, dt.date(2026, 7, 10)
        ) == Money.of("550.00")

    def test_equal_windows_break_tie_by_name(self, rate_card: Any) -> None:
        def season(name: str, amount: str) -> NightlyRate:
            return NightlyRate(
                property=Property.TAHOE,
                booking_mode=BookingMode.BUYOUT,
                amount=Money.of(amount),
                season_name=name,
                start_date=dt.date(2026, 9, 1),
                end_date=dt.date(2026, 9, 7),
            )

        rates = [season("labor_day_b", "700.00"), season("labor_day_a", "600.00")]
        calculator = PricingCalculator(rate_card.model_copy(update={"rates": rates}))

        assert calculator.rate_for_night(
            Property.TAHOE, BookingMode.BUYOUT, dt.date(2026, 9, 3)
        ) == Money.of("600.00")


class TestPricingValidation:
    def test_checkout_before_checkin(self, calculator: PricingCalculator) -> None:
        with pytest.raises(BookingError) as exc_info:
            calculator.calculate_price(
                "tahoe", dt.date(2026, 7, 5), dt.date(2026, 7, 5), "buyout"
            )
        assert exc_info.value.code == ErrorCode.INVALID_DATE_RANGE

    def test_unknown_mode(self, calculator: PricingCalculator) -> None:
        with pytest.raises(BookingError) as exc_info:
            calculator.calculate_price(
                "tahoe", dt.date(2026, 7, 1), dt.date(2026, 7, 2), "weekly"
            )
        assert exc_info.value.code == ErrorCode.INVALID_BOOKING_MODE

    def test_missing_rate(self, calculator: PricingCalculator) -> None:
        with pytest.raises(BookingError) as exc_info:
            calculator.calculate_price(
                "clear_lake", dt.date(2026, 7, 1), dt.date(2026, 7, 2), "buyout"
            )
        assert exc_info.value.code == ErrorCode.PRICING_RULE_NOT_FOUND


class TestPricingService:
    def test_rate_card_round_trip(self, db: Any, rate_card: Any) -> None:
        service = PricingService(db=db)
        for rate in rate_card.rates:
            service.put_rate(rate)
        for room in rate_card.rooms.values():
            service.put_room(room)

        loaded = service.load_rate_card()

        assert len(loaded.rates) == 3
        assert loaded.rooms["loft"].nightly_rate == Money.of("70.00")
        seasonal = [r for r in loaded.rates if r.season_name == "july4"]
        assert seasonal[0].start_date == dt.date(2026, 7, 3)

        quote = service.calculator().calculate_price(
            "clear_lake", dt.date(2024, 7, 1), dt.date(2024, 7, 4), "day", guests_count=2
        )
        assert quote.total == Money.of("270.00")
