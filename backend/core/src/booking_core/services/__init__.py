"""Booking engine services."""

from .booking_locker import BookingLocker, CancellationResult
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .ledger_service import LedgerService, estimate_processing_fee
from .payment_reconciler import PaymentReconciler, normalize_intent_id
from .pricing import PricingCalculator, PricingService
from .refund_policy_service import RefundPolicyEvaluator, RefundPolicyService
from .refund_service import RefundService
from .stripe_service import StripeService, StripeServiceError, get_stripe_service
from .user_directory import UserDirectory

__all__ = [
    "BookingLocker",
    "CancellationResult",
    "DynamoDBService",
    "LedgerService",
    "PaymentReconciler",
    "PricingCalculator",
    "PricingService",
    "RefundPolicyEvaluator",
    "RefundPolicyService",
    "RefundService",
    "StripeService",
    "StripeServiceError",
    "UserDirectory",
    "estimate_processing_fee",
    "get_dynamodb_service",
    "get_stripe_service",
    "normalize_intent_id",
    "reset_dynamodb_service",
]
