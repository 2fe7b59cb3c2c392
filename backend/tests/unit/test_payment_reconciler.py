"""Unit tests for PaymentReconciler.

Test categories:
- PaymentIntent creation and its idempotency key
- Confirming a booking from a succeeded intent
- Payment instrument and fee extraction
- Redirect retries and reconciliation timeout
"""

import datetime as dt
from typing import Any
from unittest.mock import MagicMock

import pytest

from booking_core.models import (
    AbsentInstrument,
    BookingError,
    BookingStatus,
    ErrorCode,
    ExpandedInstrument,
    InlineInstrument,
    Money,
    User,
)
from booking_core.services.booking_locker import BookingLocker
from booking_core.services.payment_reconciler import (
    PaymentReconciler,
    extract_fee,
    extract_instrument,
    normalize_intent_id,
)
from booking_core.services.stripe_service import PAYMENT_INTENT_EXPAND, StripeServiceError

# === Test Configuration ===


@pytest.fixture
def hold(locker: BookingLocker, user: User) -> Any:
    """A live $1000 tahoe buyout hold."""
    return locker.create_hold(
        user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
    )


def payments_for(db: Any, booking_id: str) -> list[dict[str, Any]]:
    return db.query_by_gsi("payments", "entity-index", "entity_id", booking_id)


def not_found() -> StripeServiceError:
    return StripeServiceError(
        "No such payment_intent", stripe_error_code="resource_missing", http_status=404
    )


class TestCreatePaymentIntent:
    @pytest.fixture(autouse=True)
    def created_intent(self, stripe_mock: MagicMock) -> None:
        stripe_mock.create_payment_intent.return_value = {
            "id": "pi_test123",
            "client_secret": "pi_test123_secret_abc",
            "amount": 100000,
            "currency": "usd",
            "status": "requires_payment_method",
        }

    def test_idempotency_key_from_reference(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        user: User,
        stripe_mock: MagicMock,
    ) -> None:
        intent = reconciler.create_payment_intent(hold, user)

        assert intent["client_secret"] == "pi_test123_secret_abc"
        kwargs = stripe_mock.create_payment_intent.call_args.kwargs
        assert kwargs["idempotency_key"] == f"booking_{hold.reference}"
        assert kwargs["amount_cents"] == 100000
        assert kwargs["metadata"]["booking_id"] == hold.booking_id
        assert kwargs["customer_id"] == user.stripe_customer_id

    def test_repeated_calls_reuse_key(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        user: User,
        stripe_mock: MagicMock,
    ) -> None:
        reconciler.create_payment_intent(hold.booking_id, user)
        reconciler.create_payment_intent(hold.booking_id, user)

        keys = {c.kwargs["idempotency_key"] for c in stripe_mock.create_payment_intent.call_args_list}
        assert keys == {f"booking_{hold.reference}"}

    def test_intent_attached_to_booking(
        self,
        reconciler: PaymentReconciler,
        locker: BookingLocker,
        hold: Any,
        user: User,
    ) -> None:
        reconciler.create_payment_intent(hold, user)

        assert locker.get_booking(hold.booking_id).payment_intent_id == "pi_test123"

    def test_amount_must_match_total(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        user: User,
        stripe_mock: MagicMock,
    ) -> None:
        with pytest.raises(BookingError) as exc_info:
            reconciler.create_payment_intent(hold, user, amount=Money.of("900.00"))

        assert exc_info.value.code == ErrorCode.PAYMENT_AMOUNT_MISMATCH
        stripe_mock.create_payment_intent.assert_not_called()

    def test_expired_hold_cannot_be_paid(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        user: User,
        clock: Any,
    ) -> None:
        clock.advance(minutes=31)

        with pytest.raises(BookingError) as exc_info:
            reconciler.create_payment_intent(hold, user)

        assert exc_info.value.code == ErrorCode.ALREADY_EXPIRED

    def test_stripe_failure(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        user: User,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.create_payment_intent.side_effect = StripeServiceError(
            "Failed to create payment intent", stripe_error_code="api_key_expired"
        )

        with pytest.raises(BookingError) as exc_info:
            reconciler.create_payment_intent(hold, user)

        assert exc_info.value.code == ErrorCode.STRIPE_API_ERROR
        assert exc_info.value.details == {
            "booking_id": hold.booking_id,
            "stripe_error_code": "api_key_expired",
        }


class TestProcessPaymentSuccess:
    def test_confirms_booking_and_posts_payment(
        self,
        reconciler: PaymentReconciler,
        ledger: Any,
        hold: Any,
        pay: Any,
    ) -> None:
        booking = pay(hold)

        assert booking.status == BookingStatus.COMPLETE
        payment = ledger.get_booking_payment(hold.booking_id)
        assert payment is not None
        assert payment.amount == Money.of("1000.00")
        assert payment.fee == Money.of("8.13")
        assert payment.payment_method_id == "pm_card_visa"
        assert payment.external_payment_id == "pi_test123"

    def test_client_secret_is_normalized(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.return_value = make_intent(hold)

        reconciler.process_payment_success(hold.booking_id, "pi_test123_secret_abc")

        stripe_mock.retrieve_payment_intent.assert_called_once_with(
            "pi_test123", PAYMENT_INTENT_EXPAND
        )

    def test_second_confirmation_is_noop(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        pay: Any,
        db: Any,
    ) -> None:
        first = pay(hold)

        second = reconciler.process_payment_success(hold.booking_id, "pi_test123")

        assert second.status == BookingStatus.COMPLETE
        assert second.updated_at == first.updated_at
        assert len(payments_for(db, hold.booking_id)) == 1

    @pytest.mark.parametrize(
        ("cancel_on", "expected_status"),
        [
            (dt.date(2026, 7, 5), BookingStatus.CANCELED),
            (dt.date(2026, 6, 1), BookingStatus.REFUNDED),
        ],
    )
    def test_replay_after_cancellation_is_noop(
        self,
        reconciler: PaymentReconciler,
        locker: BookingLocker,
        ledger: Any,
        paid_booking: Any,
        db: Any,
        caplog: pytest.LogCaptureFixture,
        cancel_on: dt.date,
        expected_status: BookingStatus,
    ) -> None:
        locker.cancel_booking(paid_booking.booking_id, as_of_date=cancel_on)
        payment_before = ledger.get_booking_payment(paid_booking.booking_id)

        with caplog.at_level("CRITICAL"):
            replayed = reconciler.process_payment_success(paid_booking.booking_id, "pi_test123")

        assert replayed.status == expected_status
        assert not [r for r in caplog.records if r.levelname == "CRITICAL"]
        assert len(payments_for(db, paid_booking.booking_id)) == 1
        assert ledger.get_booking_payment(paid_booking.booking_id) == payment_before

    def test_confirmed_at_recorded(self, hold: Any, pay: Any, clock: Any) -> None:
        assert hold.confirmed_at is None

        assert pay(hold).confirmed_at == clock()

    def test_replayed_late_payment_still_fails(
        self,
        reconciler: PaymentReconciler,
        locker: BookingLocker,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
        clock: Any,
    ) -> None:
        """A hold that was never confirmed keeps failing until an operator steps in."""
        stripe_mock.retrieve_payment_intent.return_value = make_intent(hold)
        clock.advance(minutes=31)
        locker.release_hold(hold.booking_id, reason="hold_expired")

        for _ in range(2):
            with pytest.raises(BookingError) as exc_info:
                reconciler.process_payment_success(hold.booking_id, "pi_test123")
            assert exc_info.value.code == ErrorCode.BOOKING_CONFIRMATION_FAILED

    def test_payment_method_synced(
        self, hold: Any, pay: Any, db: Any, user: User
    ) -> None:
        pay(hold)

        item = db.get_item("payment-methods", {"payment_method_id": "pm_card_visa"})
        assert item is not None
        assert item["user_id"] == user.user_id
        assert item["brand"] == "visa"
        assert item["last4"] == "4242"

    def test_sync_failure_does_not_block(
        self,
        hold: Any,
        pay: Any,
        db: Any,
        ledger: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_method.side_effect = StripeServiceError("boom")

        booking = pay(hold)

        assert booking.status == BookingStatus.COMPLETE
        assert db.get_item("payment-methods", {"payment_method_id": "pm_card_visa"}) is None
        payment = ledger.get_booking_payment(hold.booking_id)
        assert payment is not None
        assert payment.payment_method_id == "pm_card_visa"

    def test_fee_estimated_without_balance_transaction(
        self,
        reconciler: PaymentReconciler,
        ledger: Any,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.return_value = make_intent(hold, fee_cents=None)

        reconciler.process_payment_success(hold.booking_id, "pi_test123")

        payment = ledger.get_booking_payment(hold.booking_id)
        assert payment is not None
        assert payment.fee == Money.of("29.30")

    @pytest.mark.parametrize("status", ["requires_payment_method", "processing", "canceled"])
    def test_unsucceeded_intent_changes_nothing(
        self,
        reconciler: PaymentReconciler,
        locker: BookingLocker,
        ledger: Any,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
        status: str,
    ) -> None:
        stripe_mock.retrieve_payment_intent.return_value = make_intent(hold, status=status)

        with pytest.raises(BookingError) as exc_info:
            reconciler.process_payment_success(hold.booking_id, "pi_test123")

        assert exc_info.value.code == ErrorCode.PAYMENT_NOT_SUCCEEDED
        assert locker.get_booking(hold.booking_id).status == BookingStatus.HOLD
        assert ledger.get_booking_payment(hold.booking_id) is None

    def test_amount_mismatch(
        self,
        reconciler: PaymentReconciler,
        ledger: Any,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
    ) -> None:
        intent = make_intent(hold)
        intent["amount"] = intent["amount_received"] = 50000
        stripe_mock.retrieve_payment_intent.return_value = intent

        with pytest.raises(BookingError) as exc_info:
            reconciler.process_payment_success(hold.booking_id, "pi_test123")

        assert exc_info.value.code == ErrorCode.PAYMENT_AMOUNT_MISMATCH
        assert ledger.get_booking_payment(hold.booking_id) is None

    def test_intent_for_another_booking(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.return_value = make_intent(
            hold, metadata={"booking_id": "someone-elses"}
        )

        with pytest.raises(BookingError) as exc_info:
            reconciler.process_payment_success(hold.booking_id, "pi_test123")

        assert exc_info.value.code == ErrorCode.PAYMENT_VERIFICATION_FAILED

    def test_retrieval_failure(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.side_effect = StripeServiceError(
            "Failed to retrieve payment intent", stripe_error_code="rate_limit"
        )

        with pytest.raises(BookingError) as exc_info:
            reconciler.process_payment_success(hold.booking_id, "pi_test123")

        assert exc_info.value.code == ErrorCode.PAYMENT_VERIFICATION_FAILED
        assert exc_info.value.details is not None
        assert exc_info.value.details["stripe_error_code"] == "rate_limit"

    def test_payment_after_expiry_is_surfaced(
        self,
        reconciler: PaymentReconciler,
        locker: BookingLocker,
        ledger: Any,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
        clock: Any,
    ) -> None:
        """Money arrived after the hold lapsed: recorded, booking left for an operator."""
        stripe_mock.retrieve_payment_intent.return_value = make_intent(hold)
        clock.advance(minutes=31)

        with pytest.raises(BookingError) as exc_info:
            reconciler.process_payment_success(hold.booking_id, "pi_test123")

        error = exc_info.value
        assert error.code == ErrorCode.BOOKING_CONFIRMATION_FAILED
        assert error.details is not None
        assert error.details["cause"] == ErrorCode.ALREADY_EXPIRED.value
        assert error.details["payment_intent_id"] == "pi_test123"

        payment = ledger.get_booking_payment(hold.booking_id)
        assert payment is not None
        assert error.details["payment_id"] == payment.payment_id
        assert locker.get_booking(hold.booking_id).status == BookingStatus.HOLD


class TestInstrumentExtraction:
    def test_inline_id(self) -> None:
        instrument = extract_instrument({"payment_method": "pm_inline"})

        assert instrument == InlineInstrument(payment_method_id="pm_inline")

    def test_expanded_object(self) -> None:
        method = {"id": "pm_expanded", "type": "card", "card": {"brand": "amex"}}

        instrument = extract_instrument({"payment_method": method})

        assert isinstance(instrument, ExpandedInstrument)
        assert instrument.payment_method_id == "pm_expanded"
        assert instrument.data["card"]["brand"] == "amex"

    def test_falls_back_to_latest_charge(self) -> None:
        instrument = extract_instrument(
            {"payment_method": None, "latest_charge": {"payment_method": "pm_charge"}}
        )

        assert instrument == InlineInstrument(payment_method_id="pm_charge")

    def test_falls_back_to_charges_list(self) -> None:
        intent = {"charges": {"data": [{"payment_method": "pm_first"}, {"payment_method": "pm_2"}]}}

        assert extract_instrument(intent) == InlineInstrument(payment_method_id="pm_first")

    def test_absent(self) -> None:
        assert isinstance(extract_instrument({"latest_charge": "ch_unexpanded"}), AbsentInstrument)

    def test_absent_instrument_not_synced(self, reconciler: PaymentReconciler) -> None:
        assert reconciler.sync_payment_method("user-123", AbsentInstrument()) is None

    def test_expanded_instrument_skips_lookup(
        self, reconciler: PaymentReconciler, stripe_mock: MagicMock
    ) -> None:
        record = reconciler.sync_payment_method(
            "user-123",
            ExpandedInstrument(
                payment_method_id="pm_expanded",
                data={"type": "card", "card": {"brand": "amex", "last4": "0005"}},
            ),
        )

        assert record is not None
        assert record.brand == "amex"
        stripe_mock.retrieve_payment_method.assert_not_called()

    def test_fee_from_balance_transaction(self) -> None:
        intent = {"latest_charge": {"balance_transaction": {"fee": 321}}}

        assert extract_fee(intent, Money.of("100.00")) == Money.of("3.21")


class TestNormalizeIntentId:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("pi_3Abc", "pi_3Abc"),
            ("pi_3Abc_secret_XyZ", "pi_3Abc"),
            ("  pi_3Abc_secret_XyZ  ", "pi_3Abc"),
        ],
    )
    def test_normalize(self, value: str, expected: str) -> None:
        assert normalize_intent_id(value) == expected


class TestResolveRedirect:
    def test_failed_redirect_status(
        self, reconciler: PaymentReconciler, stripe_mock: MagicMock
    ) -> None:
        with pytest.raises(BookingError) as exc_info:
            reconciler.resolve_redirect("pi_test123_secret_abc", "failed")

        assert exc_info.value.code == ErrorCode.PAYMENT_NOT_SUCCEEDED
        stripe_mock.retrieve_payment_intent.assert_not_called()

    def test_retries_until_intent_visible(
        self,
        reconciler: PaymentReconciler,
        hold: Any,
        make_intent: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.side_effect = [
            not_found(),
            make_intent(hold, metadata={}),
            make_intent(hold),
        ]

        booking = reconciler.resolve_redirect("pi_test123_secret_abc", "succeeded")

        assert booking.booking_id == hold.booking_id
        assert booking.status == BookingStatus.COMPLETE
        assert stripe_mock.retrieve_payment_intent.call_count == 3

    def test_times_out_with_distinct_error(
        self,
        reconciler: PaymentReconciler,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.side_effect = not_found()

        with pytest.raises(BookingError) as exc_info:
            reconciler.resolve_redirect("pi_missing", "succeeded")

        assert exc_info.value.code == ErrorCode.RECONCILIATION_TIMEOUT
        assert exc_info.value.details is not None
        assert exc_info.value.details["attempts"] == "5"
        assert exc_info.value.details["last_error"] == "payment_intent_not_found"
        assert stripe_mock.retrieve_payment_intent.call_count == 5

    def test_terminal_error_not_retried(
        self,
        reconciler: PaymentReconciler,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.retrieve_payment_intent.side_effect = StripeServiceError(
            "Invalid API key", stripe_error_code="api_key_invalid", http_status=401
        )

        with pytest.raises(BookingError) as exc_info:
            reconciler.resolve_redirect("pi_test123", "succeeded")

        assert exc_info.value.code == ErrorCode.PAYMENT_VERIFICATION_FAILED
        assert stripe_mock.retrieve_payment_intent.call_count == 1
