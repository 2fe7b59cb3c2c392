"""Unit tests for BookingLocker.cancel_booking.

Test categories:
- Cancelling a hold
- Full, partial and zero refunds of a paid booking
- Idempotent re-cancellation
- Stripe failure during an immediate refund
"""

import datetime as dt
from typing import Any
from unittest.mock import MagicMock

import pytest

from booking_core.models import (
    BookingError,
    BookingStatus,
    ErrorCode,
    Money,
    PaymentStatus,
    PendingRefund,
    PendingRefundStatus,
    Refund,
    User,
)
from booking_core.services.booking_locker import BookingLocker
from booking_core.services.stripe_service import StripeServiceError


class TestCancelHold:
    def test_hold_is_released_without_refund(
        self, locker: BookingLocker, user: User, stripe_mock: MagicMock
    ) -> None:
        booking = locker.create_hold(
            user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
        )

        result = locker.cancel_booking(booking.booking_id)

        assert result.booking.status == BookingStatus.CANCELED
        assert result.booking.cancellation_reason == "canceled_by_user"
        assert result.refund_amount == Money.zero()
        assert result.refund_record is None
        stripe_mock.create_refund.assert_not_called()

    def test_hold_dates_become_available(
        self, locker: BookingLocker, user: User
    ) -> None:
        booking = locker.create_hold(
            user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
        )
        locker.cancel_booking(booking, reason="plans changed")

        again = locker.create_hold(
            user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
        )

        assert again.status == BookingStatus.HOLD


class TestCancelPaidBooking:
    def test_full_refund_issued_immediately(
        self,
        locker: BookingLocker,
        paid_booking: Any,
        stripe_mock: MagicMock,
    ) -> None:
        """39 days out falls in the 100% rule."""
        result = locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 6, 1))

        assert result.booking.status == BookingStatus.REFUNDED
        assert result.refund_amount == Money.of("1000.00")
        assert isinstance(result.refund_record, Refund)
        assert result.calculation is not None
        assert result.calculation.refund_percentage == 100

        stripe_mock.create_refund.assert_called_once()
        kwargs = stripe_mock.create_refund.call_args.kwargs
        assert kwargs["amount_cents"] == 100000
        assert kwargs["payment_intent_id"] == "pi_test123"
        assert kwargs["idempotency_key"] == f"cancel_{paid_booking.reference}"

        payment = locker.ledger.get_booking_payment(paid_booking.booking_id)
        assert payment is not None
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refundable_amount == Money.zero()

    def test_partial_refund_waits_for_review(
        self,
        locker: BookingLocker,
        paid_booking: Any,
        stripe_mock: MagicMock,
    ) -> None:
        """9 days out falls in the 50% rule."""
        result = locker.cancel_booking(
            paid_booking.booking_id, as_of_date=dt.date(2026, 7, 1), reason="illness"
        )

        assert result.booking.status == BookingStatus.CANCELED
        assert result.refund_amount == Money.of("500.00")
        assert isinstance(result.refund_record, PendingRefund)
        assert result.refund_record.policy_refund_amount == Money.of("500.00")
        assert result.refund_record.status == PendingRefundStatus.PENDING
        assert result.refund_record.cancellation_reason == "illness"
        assert result.refund_record.applied_rule is not None
        assert result.refund_record.applied_rule.refund_percentage == 50
        stripe_mock.create_refund.assert_not_called()

        pending = locker.list_pending_refunds()
        assert [p.pending_refund_id for p in pending] == [
            result.refund_record.pending_refund_id
        ]

    def test_zero_refund_only_cancels(
        self,
        locker: BookingLocker,
        paid_booking: Any,
        stripe_mock: MagicMock,
    ) -> None:
        result = locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 7, 8))

        assert result.booking.status == BookingStatus.CANCELED
        assert result.refund_amount == Money.zero()
        assert result.refund_record is None
        assert result.calculation is not None
        assert result.calculation.days_before_checkin == 2
        stripe_mock.create_refund.assert_not_called()
        assert locker.list_pending_refunds() == []

    def test_cancel_after_check_in(
        self, locker: BookingLocker, paid_booking: Any
    ) -> None:
        result = locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 7, 11))

        assert result.booking.status == BookingStatus.CANCELED
        assert result.calculation is not None
        assert result.calculation.days_before_checkin == -1
        assert result.refund_amount == Money.zero()

    def test_cancel_is_idempotent(
        self,
        locker: BookingLocker,
        paid_booking: Any,
        stripe_mock: MagicMock,
    ) -> None:
        first = locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 6, 1))

        second = locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 6, 1))

        assert second.booking.status == first.booking.status == BookingStatus.REFUNDED
        assert second.refund_amount == Money.zero()
        assert second.refund_record is None
        stripe_mock.create_refund.assert_called_once()

    def test_stripe_failure_queues_refund_for_review(
        self,
        locker: BookingLocker,
        paid_booking: Any,
        stripe_mock: MagicMock,
    ) -> None:
        stripe_mock.create_refund.side_effect = StripeServiceError(
            "Failed to create refund", stripe_error_code="charge_disputed"
        )

        result = locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 6, 1))

        assert result.booking.status == BookingStatus.CANCELED
        assert isinstance(result.refund_record, PendingRefund)
        assert result.refund_record.policy_refund_amount == Money.of("1000.00")

        payment = locker.ledger.get_booking_payment(paid_booking.booking_id)
        assert payment is not None
        assert payment.status == PaymentStatus.COMPLETED

    def test_complete_booking_keeps_inventory(
        self, locker: BookingLocker, paid_booking: Any, user: User
    ) -> None:
        locker.cancel_booking(paid_booking.booking_id, as_of_date=dt.date(2026, 7, 8))

        with pytest.raises(BookingError) as exc_info:
            locker.create_hold(
                user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
            )

        assert exc_info.value.code == ErrorCode.RESOURCE_UNAVAILABLE


class TestCalculateRefund:
    def test_quote_does_not_cancel(self, locker: BookingLocker, paid_booking: Any) -> None:
        calculation = locker.calculate_refund(
            paid_booking.booking_id, as_of_date=dt.date(2026, 7, 1)
        )

        assert calculation.refund_amount == Money.of("500.00")
        assert calculation.payment_amount == Money.of("1000.00")
        assert locker.get_booking(paid_booking.booking_id).status == BookingStatus.COMPLETE

    def test_unpaid_hold_quotes_against_total(
        self, locker: BookingLocker, user: User
    ) -> None:
        booking = locker.create_hold(
            user, "tahoe", dt.date(2026, 7, 10), dt.date(2026, 7, 12), "buyout"
        )

        calculation = locker.calculate_refund(booking.booking_id)

        assert calculation.payment_amount == booking.total_price
        assert calculation.refund_amount == booking.total_price
