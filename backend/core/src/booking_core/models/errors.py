"""Standard error codes for the booking engine.

Every failure a caller can observe is a BookingError carrying one of these
codes. Codes are grouped by category so the HTTP layer and operators can
tell a rejected request apart from a money/booking inconsistency.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCategory(str, Enum):
    """How an error should be handled by the caller."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONTENTION = "contention"
    STATE = "state"
    EXTERNAL = "external"
    CONSISTENCY = "consistency"


class ErrorCode(str, Enum):
    """Standard error codes for booking, payment and ledger operations."""

    # Validation errors (ERR_VAL_001-ERR_VAL_009)
    INVALID_DATE_RANGE = "ERR_VAL_001"
    ROOM_REQUIRED = "ERR_VAL_002"
    INVALID_BOOKING_MODE = "ERR_VAL_003"
    MAX_GUESTS_EXCEEDED = "ERR_VAL_004"
    STAY_TOO_LONG = "ERR_VAL_005"
    MEMBERSHIP_REQUIRED = "ERR_VAL_006"
    CURRENCY_MISMATCH = "ERR_VAL_007"
    INVALID_GUEST_COUNT = "ERR_VAL_008"

    # Lookup errors (ERR_NF_001-ERR_NF_005)
    BOOKING_NOT_FOUND = "ERR_NF_001"
    ROOM_NOT_FOUND = "ERR_NF_002"
    PRICING_RULE_NOT_FOUND = "ERR_NF_003"
    PAYMENT_NOT_FOUND = "ERR_NF_004"
    PENDING_REFUND_NOT_FOUND = "ERR_NF_005"

    # Contention (ERR_LOCK_001)
    RESOURCE_UNAVAILABLE = "ERR_LOCK_001"

    # State machine errors (ERR_STATE_001-ERR_STATE_004)
    NOT_IN_HOLD_STATE = "ERR_STATE_001"
    ALREADY_EXPIRED = "ERR_STATE_002"
    ALREADY_CANCELED = "ERR_STATE_003"
    PENDING_REFUND_NOT_PENDING = "ERR_STATE_004"

    # External payment processor errors (ERR_STRIPE_001-ERR_STRIPE_006)
    INVALID_WEBHOOK_SIGNATURE = "ERR_STRIPE_001"
    STRIPE_API_ERROR = "ERR_STRIPE_002"
    PAYMENT_VERIFICATION_FAILED = "ERR_STRIPE_003"
    PAYMENT_NOT_SUCCEEDED = "ERR_STRIPE_004"
    PAYMENT_AMOUNT_MISMATCH = "ERR_STRIPE_005"
    RECONCILIATION_TIMEOUT = "ERR_STRIPE_006"

    # Consistency errors (ERR_CONS_001-ERR_CONS_003)
    BOOKING_CONFIRMATION_FAILED = "ERR_CONS_001"
    LEDGER_UNBALANCED = "ERR_CONS_002"
    REFUND_EXCEEDS_PAYMENT = "ERR_CONS_003"


ERROR_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.INVALID_DATE_RANGE: ErrorCategory.VALIDATION,
    ErrorCode.ROOM_REQUIRED: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_BOOKING_MODE: ErrorCategory.VALIDATION,
    ErrorCode.MAX_GUESTS_EXCEEDED: ErrorCategory.VALIDATION,
    ErrorCode.STAY_TOO_LONG: ErrorCategory.VALIDATION,
    ErrorCode.MEMBERSHIP_REQUIRED: ErrorCategory.VALIDATION,
    ErrorCode.CURRENCY_MISMATCH: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_GUEST_COUNT: ErrorCategory.VALIDATION,
    ErrorCode.BOOKING_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.ROOM_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.PRICING_RULE_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.PENDING_REFUND_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.RESOURCE_UNAVAILABLE: ErrorCategory.CONTENTION,
    ErrorCode.NOT_IN_HOLD_STATE: ErrorCategory.STATE,
    ErrorCode.ALREADY_EXPIRED: ErrorCategory.STATE,
    ErrorCode.ALREADY_CANCELED: ErrorCategory.STATE,
    ErrorCode.PENDING_REFUND_NOT_PENDING: ErrorCategory.STATE,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: ErrorCategory.VALIDATION,
    ErrorCode.STRIPE_API_ERROR: ErrorCategory.EXTERNAL,
    ErrorCode.PAYMENT_VERIFICATION_FAILED: ErrorCategory.EXTERNAL,
    ErrorCode.PAYMENT_NOT_SUCCEEDED: ErrorCategory.EXTERNAL,
    ErrorCode.PAYMENT_AMOUNT_MISMATCH: ErrorCategory.CONSISTENCY,
    ErrorCode.RECONCILIATION_TIMEOUT: ErrorCategory.EXTERNAL,
    ErrorCode.BOOKING_CONFIRMATION_FAILED: ErrorCategory.CONSISTENCY,
    ErrorCode.LEDGER_UNBALANCED: ErrorCategory.CONSISTENCY,
    ErrorCode.REFUND_EXCEEDS_PAYMENT: ErrorCategory.CONSISTENCY,
}

# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_DATE_RANGE: "Check-out must be after check-in",
    ErrorCode.ROOM_REQUIRED: "At least one room must be selected for a room booking",
    ErrorCode.INVALID_BOOKING_MODE: "Booking mode is not supported for this property",
    ErrorCode.MAX_GUESTS_EXCEEDED: "Number of guests exceeds the room capacity",
    ErrorCode.STAY_TOO_LONG: "The requested stay is too long to reserve in one booking",
    ErrorCode.MEMBERSHIP_REQUIRED: "An active membership is required to book",
    ErrorCode.CURRENCY_MISMATCH: "Amounts in different currencies cannot be combined",
    ErrorCode.INVALID_GUEST_COUNT: "Guest count must be at least one",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.ROOM_NOT_FOUND: "Room not found for this property",
    ErrorCode.PRICING_RULE_NOT_FOUND: "No rate is configured for the requested stay",
    ErrorCode.PAYMENT_NOT_FOUND: "No payment is recorded for this booking",
    ErrorCode.PENDING_REFUND_NOT_FOUND: "Pending refund not found",
    ErrorCode.RESOURCE_UNAVAILABLE: "The requested dates are already held or booked",
    ErrorCode.NOT_IN_HOLD_STATE: "Booking is not in hold status",
    ErrorCode.ALREADY_EXPIRED: "The booking hold has expired",
    ErrorCode.ALREADY_CANCELED: "Booking is already canceled",
    ErrorCode.PENDING_REFUND_NOT_PENDING: "Refund has already been reviewed",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.STRIPE_API_ERROR: "Stripe API error occurred",
    ErrorCode.PAYMENT_VERIFICATION_FAILED: "Payment could not be verified with Stripe",
    ErrorCode.PAYMENT_NOT_SUCCEEDED: "Payment has not succeeded",
    ErrorCode.PAYMENT_AMOUNT_MISMATCH: "Payment amount does not match the booking total",
    ErrorCode.RECONCILIATION_TIMEOUT: "Timed out waiting for the payment to become visible",
    ErrorCode.BOOKING_CONFIRMATION_FAILED: "Payment was recorded but the booking could not be confirmed",
    ErrorCode.LEDGER_UNBALANCED: "Ledger entries do not balance",
    ErrorCode.REFUND_EXCEEDS_PAYMENT: "Refund total would exceed the original payment",
}

# Recovery suggestions for callers and operators
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_DATE_RANGE: "Choose a check-out date after the check-in date",
    ErrorCode.ROOM_REQUIRED: "Select one or more rooms",
    ErrorCode.INVALID_BOOKING_MODE: "Use buyout, day or room",
    ErrorCode.MAX_GUESTS_EXCEEDED: "Reduce the party size or add rooms",
    ErrorCode.STAY_TOO_LONG: "Split the stay into shorter bookings",
    ErrorCode.MEMBERSHIP_REQUIRED: "Renew the membership before booking",
    ErrorCode.CURRENCY_MISMATCH: "Convert amounts to a single currency",
    ErrorCode.INVALID_GUEST_COUNT: "Provide at least one guest",
    ErrorCode.BOOKING_NOT_FOUND: "Verify the booking ID",
    ErrorCode.ROOM_NOT_FOUND: "Verify the room IDs belong to the property",
    ErrorCode.PRICING_RULE_NOT_FOUND: "Configure a rate for the property and mode",
    ErrorCode.PAYMENT_NOT_FOUND: "Check the ledger for the booking's payment",
    ErrorCode.PENDING_REFUND_NOT_FOUND: "Verify the pending refund ID",
    ErrorCode.RESOURCE_UNAVAILABLE: "Offer alternative dates or rooms",
    ErrorCode.NOT_IN_HOLD_STATE: "Reload the booking; it may already be confirmed or canceled",
    ErrorCode.ALREADY_EXPIRED: "Start a new booking; if payment succeeded, refund it",
    ErrorCode.ALREADY_CANCELED: "No action needed",
    ErrorCode.PENDING_REFUND_NOT_PENDING: "Reload the refund record",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.STRIPE_API_ERROR: "Try again or contact support",
    ErrorCode.PAYMENT_VERIFICATION_FAILED: "Retry verification shortly",
    ErrorCode.PAYMENT_NOT_SUCCEEDED: "Ask the guest to complete payment",
    ErrorCode.PAYMENT_AMOUNT_MISMATCH: "Compare the PaymentIntent with the booking total",
    ErrorCode.RECONCILIATION_TIMEOUT: "Check the Stripe dashboard; the webhook will complete the booking",
    ErrorCode.BOOKING_CONFIRMATION_FAILED: "Reconcile manually: payment is posted, booking is not complete",
    ErrorCode.LEDGER_UNBALANCED: "Investigate the transaction entries",
    ErrorCode.REFUND_EXCEEDS_PAYMENT: "Lower the refund amount",
}


class ToolError(BaseModel):
    """Standard error response format for failed operations."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    category: ErrorCategory
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ToolError":
        """Create a ToolError from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            A ToolError with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            category=ERROR_CATEGORIES[code],
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class BookingError(Exception):
    """Exception raised by booking, payment and ledger operations."""

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.category = ERROR_CATEGORIES[code]
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            rendered = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({rendered})"
        return self.message

    def to_tool_error(self) -> ToolError:
        """Convert this exception to a ToolError response."""
        return ToolError.from_code(self.code, self.details)


# Stripe error codes that indicate the call may succeed if retried
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    """Check if a Stripe error is likely transient and retryable.

    Args:
        stripe_error_code: The Stripe error code.

    Returns:
        True if the error may be resolved by retrying.
    """
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False
