"""Pydantic models for the booking engine."""

from .booking import Booking, HoldStatus, User
from .enums import (
    AccountType,
    BookingMode,
    BookingStatus,
    EntryDirection,
    InventoryState,
    PaymentStatus,
    PendingRefundStatus,
    Property,
    TransactionType,
)
from .errors import (
    ERROR_CATEGORIES,
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    STRIPE_RETRYABLE_ERRORS,
    BookingError,
    ErrorCategory,
    ErrorCode,
    ToolError,
    is_stripe_error_retryable,
)
from .ledger import (
    LedgerAccount,
    LedgerEntry,
    LedgerTransaction,
    Payment,
    PaymentMethodRecord,
    PostedPayment,
    PostedRefund,
)
from .money import Money, sum_money
from .pricing import (
    BuyoutBreakdown,
    NightlyRate,
    PerGuestBreakdown,
    PriceQuote,
    PricingBreakdown,
    RateCard,
    Room,
    RoomBreakdown,
    RoomLine,
)
from .refund import (
    PendingRefund,
    Refund,
    RefundCalculation,
    RefundPolicy,
    RefundRule,
)
from .stripe_webhook import (
    AbsentInstrument,
    ExpandedInstrument,
    InlineInstrument,
    PaymentInstrument,
    StripeWebhookEvent,
    WebhookOutcome,
    WebhookResult,
)

__all__ = [
    # Enums
    "AccountType",
    "BookingMode",
    "BookingStatus",
    "EntryDirection",
    "InventoryState",
    "PaymentStatus",
    "PendingRefundStatus",
    "Property",
    "TransactionType",
    # Errors
    "ERROR_CATEGORIES",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "STRIPE_RETRYABLE_ERRORS",
    "BookingError",
    "ErrorCategory",
    "ErrorCode",
    "ToolError",
    "is_stripe_error_retryable",
    # Money
    "Money",
    "sum_money",
    # Pricing
    "BuyoutBreakdown",
    "NightlyRate",
    "PerGuestBreakdown",
    "PriceQuote",
    "PricingBreakdown",
    "RateCard",
    "Room",
    "RoomBreakdown",
    "RoomLine",
    # Booking
    "Booking",
    "HoldStatus",
    "User",
    # Refunds
    "PendingRefund",
    "Refund",
    "RefundCalculation",
    "RefundPolicy",
    "RefundRule",
    # Ledger
    "LedgerAccount",
    "LedgerEntry",
    "LedgerTransaction",
    "Payment",
    "PaymentMethodRecord",
    "PostedPayment",
    "PostedRefund",
    # Stripe
    "AbsentInstrument",
    "ExpandedInstrument",
    "InlineInstrument",
    "PaymentInstrument",
    "StripeWebhookEvent",
    "WebhookOutcome",
    "WebhookResult",
]
