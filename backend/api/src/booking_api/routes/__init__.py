"""API routes package.

Routers are organized by domain:

- pricing: Price quotes
- bookings: Holds, booking lookup, payment intents and cancellation
- payments: Stripe redirect return
- webhooks: Stripe webhook events

All routers are registered in main.py with /api prefix.
"""

from booking_api.routes.bookings import router as bookings_router
from booking_api.routes.payments import router as payments_router
from booking_api.routes.pricing import router as pricing_router
from booking_api.routes.webhooks import router as webhooks_router

__all__ = [
    "bookings_router",
    "payments_router",
    "pricing_router",
    "webhooks_router",
]
