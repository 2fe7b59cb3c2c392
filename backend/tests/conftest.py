"""Pytest configuration and fixtures for booking engine tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (every table and index the engine uses)
- A controllable clock
- Seeded rates, rooms and refund policies
- A mocked StripeService
- Wired services (locker, ledger, reconciler) on the mocked tables
"""

import datetime as dt
import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-booking")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

TABLE_PREFIX = "test-booking"

TEST_USER_ID = "user-123"
TEST_CUSTOMER_ID = "cus_test123"

# 2026-06-01 10:00 UTC; stays in the tests are in July 2026
TEST_NOW = dt.datetime(2026, 6, 1, 10, 0, tzinfo=dt.UTC)


# === Clock ===


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: dt.datetime = TEST_NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# === Service Reset ===


@pytest.fixture(autouse=True)
def reset_cached_services() -> Generator[None, None, None]:
    """Clear cached services before and after each test.

    Ensures tests using mock_aws get fresh boto3 resources inside the
    mock context rather than reusing a singleton from a previous test.
    """
    from booking_core.services.registry import reset_services

    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


def _table(
    name: str,
    key: str,
    indexes: list[tuple[str, str, str | None]] | None = None,
) -> dict[str, Any]:
    """Build a create_table request; indexes are (name, hash_key, range_key)."""
    attributes = {key}
    config: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "BillingMode": "PAY_PER_REQUEST",
    }
    gsis = []
    for index_name, hash_key, range_key in indexes or []:
        schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
        attributes.add(hash_key)
        if range_key:
            schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
            attributes.add(range_key)
        gsis.append(
            {
                "IndexName": index_name,
                "KeySchema": schema,
                "Projection": {"ProjectionType": "ALL"},
            }
        )
    if gsis:
        config["GlobalSecondaryIndexes"] = gsis
    config["AttributeDefinitions"] = [
        {"AttributeName": attr, "AttributeType": "S"} for attr in sorted(attributes)
    ]
    return config


TABLES: list[dict[str, Any]] = [
    _table(
        "bookings",
        "booking_id",
        [
            ("hold-expiry-index", "status", "hold_expires_at"),
            ("user-index", "user_id", None),
        ],
    ),
    _table("inventory", "inventory_key"),
    _table("rooms", "room_id"),
    _table("pricing", "rate_key"),
    _table("refund-policies", "policy_key"),
    _table("payments", "payment_id", [("entity-index", "entity_id", None)]),
    _table("refunds", "refund_id", [("payment-index", "payment_id", None)]),
    _table("pending-refunds", "pending_refund_id", [("status-index", "status", None)]),
    _table("ledger-transactions", "transaction_id"),
    _table("ledger-entries", "entry_id", [("transaction-index", "transaction_id", None)]),
    _table("ledger-idempotency", "idempotency_key"),
    _table("payment-methods", "payment_method_id", [("user-index", "user_id", None)]),
    _table("stripe-webhook-events", "event_id"),
    _table("users", "user_id"),
]


@pytest.fixture
def aws() -> Generator[None, None, None]:
    """Mocked AWS with every engine table created."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for table_config in TABLES:
            client.create_table(**table_config)
        yield


@pytest.fixture
def db(aws: None) -> Any:
    from booking_core.services.dynamodb import get_dynamodb_service

    return get_dynamodb_service()


# === Configuration Fixtures ===


@pytest.fixture
def settings() -> Any:
    from booking_core.config import EngineSettings
    from booking_core.models import Property

    return EngineSettings(
        environment="test",
        guest_capacity={Property.CLEAR_LAKE: 12},
    )


@pytest.fixture
def rate_card() -> Any:
    """Rates and rooms used across tests.

    - tahoe buyout: $500/night, $650/night over the July 4th weekend
    - clear_lake day: $45 per guest per night
    - clear_lake rooms: lake-view $50, loft $70 (child surcharge $10 / $15)
    """
    from booking_core.models import BookingMode, Money, NightlyRate, Property, RateCard, Room

    return RateCard(
        currency="USD",
        rates=[
            NightlyRate(
                property=Property.TAHOE,
                booking_mode=BookingMode.BUYOUT,
                amount=Money.of("500.00"),
            ),
            NightlyRate(
                property=Property.TAHOE,
                booking_mode=BookingMode.BUYOUT,
                amount=Money.of("650.00"),
                season_name="july4",
                start_date=dt.date(2026, 7, 3),
                end_date=dt.date(2026, 7, 5),
            ),
            NightlyRate(
                property=Property.CLEAR_LAKE,
                booking_mode=BookingMode.DAY,
                amount=Money.of("45.00"),
            ),
        ],
        rooms={
            "lake-view": Room(
                room_id="lake-view",
                property=Property.CLEAR_LAKE,
                name="Lake View",
                capacity=2,
                nightly_rate=Money.of("50.00"),
                child_surcharge=Money.of("10.00"),
            ),
            "loft": Room(
                room_id="loft",
                property=Property.CLEAR_LAKE,
                name="Loft",
                capacity=4,
                nightly_rate=Money.of("70.00"),
                child_surcharge=Money.of("15.00"),
            ),
        },
    )


@pytest.fixture
def refund_policies() -> list[Any]:
    """Tahoe buyout: 100% at 14+ days, 50% at 7+ days, nothing after."""
    from booking_core.models import BookingMode, Property, RefundPolicy, RefundRule

    return [
        RefundPolicy(
            property=Property.TAHOE,
            booking_mode=BookingMode.BUYOUT,
            name="Standard buyout",
            rules=[
                RefundRule(days_before_checkin=14, refund_percentage=100),
                RefundRule(days_before_checkin=7, refund_percentage=50),
                RefundRule(days_before_checkin=0, refund_percentage=0),
            ],
        )
    ]


@pytest.fixture
def user() -> Any:
    from booking_core.models import User

    return User(
        user_id=TEST_USER_ID,
        email="guest@example.com",
        stripe_customer_id=TEST_CUSTOMER_ID,
        membership_active=True,
    )


# === Stripe Fixtures ===


def _make_intent(
    booking: Any,
    *,
    intent_id: str = "pi_test123",
    status: str = "succeeded",
    payment_method: Any = "pm_card_visa",
    fee_cents: int | None = 813,
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    """A PaymentIntent dict as StripeService returns it (expanded)."""
    amount = booking.total_price.to_cents()
    charge: dict[str, Any] = {
        "id": "ch_test123",
        "payment_method": payment_method if isinstance(payment_method, str) else None,
    }
    if fee_cents is not None:
        charge["balance_transaction"] = {"id": "txn_test", "fee": fee_cents}
    return {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount if status == "succeeded" else 0,
        "currency": booking.total_price.currency.lower(),
        "status": status,
        "client_secret": f"{intent_id}_secret_abc",
        "payment_method": payment_method,
        "latest_charge": charge,
        "metadata": metadata
        if metadata is not None
        else {"booking_id": booking.booking_id, "booking_reference": booking.reference},
    }


@pytest.fixture
def stripe_mock() -> MagicMock:
    """StripeService double with a card payment method."""
    from booking_core.services.stripe_service import StripeService

    mock = MagicMock(spec=StripeService)
    mock.retrieve_payment_method.return_value = {
        "id": "pm_card_visa",
        "type": "card",
        "card": {"brand": "visa", "last4": "4242", "exp_month": 12, "exp_year": 2030},
    }
    mock.create_refund.side_effect = lambda **kwargs: {
        "refund_id": f"re_{kwargs.get('idempotency_key', 'test')}",
        "amount": kwargs.get("amount_cents"),
        "status": "succeeded",
    }
    return mock


# === Wired Services ===


@pytest.fixture
def ledger(db: Any, clock: FakeClock) -> Any:
    from booking_core.services.ledger_service import LedgerService

    return LedgerService(db=db, clock=clock)


@pytest.fixture
def refund_service(db: Any, ledger: Any, stripe_mock: MagicMock, clock: FakeClock) -> Any:
    from booking_core.services.refund_service import RefundService

    return RefundService(db=db, ledger=ledger, stripe=stripe_mock, clock=clock)


@pytest.fixture
def locker(
    db: Any,
    ledger: Any,
    refund_service: Any,
    rate_card: Any,
    refund_policies: list[Any],
    settings: Any,
    clock: FakeClock,
) -> Any:
    from booking_core.services.booking_locker import BookingLocker
    from booking_core.services.pricing import PricingCalculator
    from booking_core.services.refund_policy_service import RefundPolicyEvaluator

    return BookingLocker(
        db,
        pricing=PricingCalculator(rate_card),
        refunds=RefundPolicyEvaluator(refund_policies),
        ledger=ledger,
        refund_service=refund_service,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def reconciler(
    db: Any,
    locker: Any,
    ledger: Any,
    stripe_mock: MagicMock,
    settings: Any,
    clock: FakeClock,
) -> Any:
    from booking_core.services.payment_reconciler import PaymentReconciler
    from booking_core.utils.retry import RetryPolicy

    return PaymentReconciler(
        db,
        locker=locker,
        ledger=ledger,
        stripe=stripe_mock,
        settings=settings,
        clock=clock,
        retry_policy=RetryPolicy(max_attempts=5, delay_seconds=0.5, timeout_seconds=10.0),
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def make_intent() -> Any:
    """Factory for PaymentIntent dicts matching a booking."""
    return _make_intent


@pytest.fixture
def pay(reconciler: Any, stripe_mock: MagicMock) -> Any:
    """Pay for a hold through the reconciler and return the completed booking."""

    def _pay(booking: Any, intent_id: str = "pi_test123") -> Any:
        intent = _make_intent(booking, intent_id=intent_id)
        stripe_mock.retrieve_payment_intent.return_value = intent
        return reconciler.process_payment_success(booking.booking_id, intent_id)

    return _pay


@pytest.fixture
def paid_booking(locker: Any, user: Any, pay: Any) -> Any:
    """Tahoe buyout for 2026-07-10..12 ($1000), paid and complete."""
    booking = locker.create_hold(
        user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
    )
    return pay(booking)


# === API Fixtures ===


@pytest.fixture
def api_client(db: Any, locker: Any, reconciler: Any, user: Any) -> Generator[Any, None, None]:
    """TestClient on the FastAPI app with services wired to the mocked tables.

    The default user is registered in the user directory; send it as
    X-User-Id.
    """
    from fastapi.testclient import TestClient

    from booking_api.dependencies import (
        get_booking_locker,
        get_payment_reconciler,
        get_user_directory,
    )
    from booking_api.main import app
    from booking_core.services.user_directory import UserDirectory

    directory = UserDirectory(db=db)
    directory.put_user(user)

    app.dependency_overrides[get_booking_locker] = lambda: locker
    app.dependency_overrides[get_payment_reconciler] = lambda: reconciler
    app.dependency_overrides[get_user_directory] = lambda: directory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
