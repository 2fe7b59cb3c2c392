"""API-specific request/response models.

Domain models (Booking, PriceQuote, RefundCalculation, ...) live in
booking_core.models; these models are the JSON shapes of the REST layer.
All amounts are integer cents in the booking's currency.

Modules:
- pricing: Quote request/response
- bookings: Hold, booking, cancellation and refund quote models
- payments: PaymentIntent and webhook acknowledgement models
"""

__all__: list[str] = []
