"""Enumeration types for booking engine data models."""

from enum import Enum


class Property(str, Enum):
    """Bookable cabin properties."""

    TAHOE = "tahoe"
    CLEAR_LAKE = "clear_lake"


class BookingMode(str, Enum):
    """Pricing and allocation scheme for a booking."""

    BUYOUT = "buyout"  # whole-property buyout
    DAY = "day"  # per-guest-daily
    ROOM = "room"  # per-room


class BookingStatus(str, Enum):
    """Booking state machine states."""

    HOLD = "hold"
    COMPLETE = "complete"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """Status of a recorded payment."""

    COMPLETED = "completed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PendingRefundStatus(str, Enum):
    """Review status of a refund awaiting approval."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AccountType(str, Enum):
    """Ledger account classification."""

    ASSET = "asset"
    REVENUE = "revenue"
    EXPENSE = "expense"
    LIABILITY = "liability"


class EntryDirection(str, Enum):
    """Side of a double-entry posting."""

    DEBIT = "debit"
    CREDIT = "credit"


class TransactionType(str, Enum):
    """Kind of ledger transaction."""

    PAYMENT = "payment"
    REFUND = "refund"


class InventoryState(str, Enum):
    """State of a reserved inventory night."""

    HELD = "held"
    BOOKED = "booked"
