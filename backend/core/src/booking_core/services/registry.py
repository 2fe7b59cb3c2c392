"""Cached service instances wired from environment settings.

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── PricingService ── PricingCalculator
        ├── RefundPolicyService ── RefundPolicyEvaluator
        ├── LedgerService
        │       └── RefundService (+ StripeService)
        ├── UserDirectory
        └── BookingLocker
                └── PaymentReconciler (+ StripeService)

Rates and refund policies are loaded once per process when the locker is
first built; call reset_services() to pick up configuration changes.
"""

from functools import lru_cache

from booking_core.config import get_settings

from .booking_locker import BookingLocker
from .dynamodb import get_dynamodb_service, reset_dynamodb_service
from .ledger_service import LedgerService
from .payment_reconciler import PaymentReconciler
from .pricing import PricingService
from .refund_policy_service import RefundPolicyService
from .refund_service import RefundService
from .ssm_service import get_ssm_service
from .stripe_service import get_stripe_service
from .user_directory import UserDirectory


@lru_cache
def get_pricing_service() -> PricingService:
    return PricingService(db=get_dynamodb_service(), currency=get_settings().currency)


@lru_cache
def get_refund_policy_service() -> RefundPolicyService:
    return RefundPolicyService(db=get_dynamodb_service())


@lru_cache
def get_ledger_service() -> LedgerService:
    return LedgerService(db=get_dynamodb_service())


@lru_cache
def get_refund_service() -> RefundService:
    return RefundService(
        db=get_dynamodb_service(),
        ledger=get_ledger_service(),
        stripe=get_stripe_service(),
    )


@lru_cache
def get_booking_locker() -> BookingLocker:
    """Get cached BookingLocker with rates and policies loaded from DynamoDB."""
    return BookingLocker(
        get_dynamodb_service(),
        pricing=get_pricing_service().calculator(),
        refunds=get_refund_policy_service().evaluator(),
        ledger=get_ledger_service(),
        refund_service=get_refund_service(),
        settings=get_settings(),
    )


@lru_cache
def get_user_directory() -> UserDirectory:
    return UserDirectory(db=get_dynamodb_service())


@lru_cache
def get_payment_reconciler() -> PaymentReconciler:
    return PaymentReconciler(
        get_dynamodb_service(),
        locker=get_booking_locker(),
        ledger=get_ledger_service(),
        stripe=get_stripe_service(),
        settings=get_settings(),
    )


def reset_services() -> None:
    """Clear all cached service instances (for tests and config reloads)."""
    get_pricing_service.cache_clear()
    get_refund_policy_service.cache_clear()
    get_ledger_service.cache_clear()
    get_refund_service.cache_clear()
    get_booking_locker.cache_clear()
    get_payment_reconciler.cache_clear()
    get_user_directory.cache_clear()
    get_stripe_service.cache_clear()
    get_ssm_service.cache_clear()
    get_settings.cache_clear()
    reset_dynamodb_service()
