"""Pricing endpoints.

All amounts are in cents (e.g., 27000 = $270.00).
"""

from fastapi import APIRouter, Depends

from booking_api.dependencies import get_booking_locker
from booking_api.models.pricing import QuoteResponse, StayRequest
from booking_core.services import BookingLocker

router = APIRouter(tags=["pricing"])


@router.post(
    "/pricing/quote",
    summary="Quote a stay",
    description="""
Calculate the price of a stay without reserving anything.

**Booking modes:**
- `buyout`: whole property, nightly rate
- `day`: shared stay, rate per guest per night
- `room`: selected rooms, room rate plus child surcharge per night
""",
    response_model=QuoteResponse,
    responses={
        200: {
            "description": "Price calculated",
            "content": {
                "application/json": {
                    "example": {
                        "property": "clear_lake",
                        "booking_mode": "room",
                        "check_in": "2026-07-01",
                        "check_out": "2026-07-03",
                        "nights": 2,
                        "total_cents": 27000,
                        "currency": "USD",
                        "breakdown": {"type": "room", "nights": 2, "rooms": []},
                    }
                }
            },
        },
        400: {"description": "Invalid dates, mode or party size"},
        404: {"description": "No rate configured or unknown room"},
    },
)
async def quote(
    request: StayRequest,
    locker: BookingLocker = Depends(get_booking_locker),
) -> QuoteResponse:
    price = locker.pricing.calculate_price(
        property=request.property,
        check_in=request.check_in,
        check_out=request.check_out,
        booking_mode=request.booking_mode,
        room_ids=request.room_ids,
        guests_count=request.guests_count,
        children_count=request.children_count,
    )
    return QuoteResponse.from_quote(price)
