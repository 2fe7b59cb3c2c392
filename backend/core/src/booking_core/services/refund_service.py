"""Refund issuing and pending refund records.

issue_refund sends the refund to Stripe and posts the ledger reversal.
Pending refunds hold the policy-computed amount until an admin approves
(optionally overriding the amount) or rejects them.
"""

import uuid
from typing import TYPE_CHECKING, Any

from booking_core.models import (
    Booking,
    BookingError,
    ErrorCode,
    Money,
    Payment,
    PendingRefund,
    PendingRefundStatus,
    PostedRefund,
    RefundCalculation,
    RefundRule,
)
from booking_core.utils.clock import Clock, from_iso, to_iso, utc_now
from booking_core.utils.logging import get_logger, log_payment_operation

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .ledger_service import LedgerService
    from .stripe_service import StripeService

logger = get_logger(__name__)


class RefundService:
    """Issues refunds and stores refunds awaiting review."""

    PENDING_TABLE = "pending-refunds"

    def __init__(
        self,
        db: "DynamoDBService",
        ledger: "LedgerService",
        stripe: "StripeService",
        clock: Clock = utc_now,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.stripe = stripe
        self.clock = clock

    def issue_refund(
        self,
        *,
        payment: Payment,
        amount: Money,
        reason: str | None,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PostedRefund:
        """Refund through Stripe, then post the ledger reversal.

        Raises:
            StripeServiceError: If Stripe rejects the refund (nothing posted)
            BookingError: REFUND_EXCEEDS_PAYMENT if the amount is more than is
                left to refund (checked before Stripe is called)
        """
        if amount > payment.refundable_amount:
            raise BookingError(
                ErrorCode.REFUND_EXCEEDS_PAYMENT,
                {
                    "payment_id": payment.payment_id,
                    "requested": str(amount.amount),
                    "refundable": str(payment.refundable_amount.amount),
                },
            )

        result = self.stripe.create_refund(
            payment_intent_id=payment.external_payment_id,
            amount_cents=amount.to_cents(),
            reason=reason,
            idempotency_key=idempotency_key,
            metadata={"booking_id": payment.entity_id, **(metadata or {})},
        )
        return self.ledger.post_refund(
            payment=payment,
            amount=amount,
            external_refund_id=result["refund_id"],
            reason=reason,
        )

    def create_pending_refund(
        self,
        *,
        booking: Booking,
        payment: Payment,
        calculation: RefundCalculation,
        reason: str | None,
    ) -> PendingRefund:
        """Record a refund that needs manual approval."""
        pending = PendingRefund(
            pending_refund_id=f"PRF-{uuid.uuid4().hex[:16].upper()}",
            booking_id=booking.booking_id,
            payment_id=payment.payment_id,
            user_id=booking.user_id,
            policy_refund_amount=calculation.refund_amount,
            status=PendingRefundStatus.PENDING,
            cancellation_reason=reason,
            applied_rule=calculation.applied_rule,
            created_at=self.clock(),
        )
        self.db.put_item(
            self.PENDING_TABLE,
            self._pending_to_item(pending),
            condition_expression="attribute_not_exists(pending_refund_id)",
        )
        log_payment_operation(
            logger,
            "create_pending_refund",
            payment_id=payment.payment_id,
            booking_id=booking.booking_id,
            amount_cents=calculation.refund_amount.to_cents(),
            status=PendingRefundStatus.PENDING.value,
        )
        return pending

    def get_pending_refund(self, pending_refund_id: str) -> PendingRefund:
        item = self.db.get_item(self.PENDING_TABLE, {"pending_refund_id": pending_refund_id})
        if not item:
            raise BookingError(
                ErrorCode.PENDING_REFUND_NOT_FOUND, {"pending_refund_id": pending_refund_id}
            )
        return self._item_to_pending(item)

    def list_pending_refunds(
        self, status: PendingRefundStatus = PendingRefundStatus.PENDING
    ) -> list[PendingRefund]:
        items = self.db.query_by_gsi(self.PENDING_TABLE, "status-index", "status", status.value)
        refunds = [self._item_to_pending(i) for i in items]
        return sorted(refunds, key=lambda r: r.created_at)

    def mark_reviewed(
        self,
        pending: PendingRefund,
        *,
        status: PendingRefundStatus,
        admin_refund_amount: Money | None = None,
        admin_notes: str | None = None,
        reviewed_by: str | None = None,
        refund_id: str | None = None,
    ) -> PendingRefund:
        """Move a pending refund to approved or rejected, exactly once.

        Raises:
            BookingError: PENDING_REFUND_NOT_PENDING if already reviewed
        """
        now = self.clock()
        values: dict[str, Any] = {
            ":status": status.value,
            ":pending": PendingRefundStatus.PENDING.value,
            ":reviewed_at": to_iso(now),
        }
        sets = ["#s = :status", "reviewed_at = :reviewed_at"]
        optional = {
            "admin_refund_cents": admin_refund_amount.to_cents() if admin_refund_amount else None,
            "admin_notes": admin_notes,
            "reviewed_by": reviewed_by,
            "refund_id": refund_id,
        }
        for name, value in optional.items():
            if value is not None:
                sets.append(f"{name} = :{name}")
                values[f":{name}"] = value

        updated = self.db.update_item(
            self.PENDING_TABLE,
            {"pending_refund_id": pending.pending_refund_id},
            "SET " + ", ".join(sets),
            values,
            expression_attribute_names={"#s": "status"},
            condition_expression="#s = :pending",
        )
        if updated is None:
            raise BookingError(
                ErrorCode.PENDING_REFUND_NOT_PENDING,
                {"pending_refund_id": pending.pending_refund_id},
            )

        logger.info(
            "Pending refund %s %s by %s",
            pending.pending_refund_id,
            status.value,
            reviewed_by or "unknown",
        )
        return self._item_to_pending(updated)

    def _pending_to_item(self, pending: PendingRefund) -> dict[str, Any]:
        item: dict[str, Any] = {
            "pending_refund_id": pending.pending_refund_id,
            "booking_id": pending.booking_id,
            "payment_id": pending.payment_id,
            "user_id": pending.user_id,
            "policy_refund_cents": pending.policy_refund_amount.to_cents(),
            "currency": pending.policy_refund_amount.currency,
            "status": pending.status.value,
            "created_at": to_iso(pending.created_at),
        }
        if pending.cancellation_reason:
            item["cancellation_reason"] = pending.cancellation_reason
        if pending.applied_rule:
            item["applied_rule"] = {
                "days_before_checkin": pending.applied_rule.days_before_checkin,
                "refund_percentage": pending.applied_rule.refund_percentage,
                "description": pending.applied_rule.description,
            }
        return item

    def _item_to_pending(self, item: dict[str, Any]) -> PendingRefund:
        currency = item["currency"]
        rule = item.get("applied_rule")
        admin_cents = item.get("admin_refund_cents")
        reviewed_at = item.get("reviewed_at")
        return PendingRefund(
            pending_refund_id=item["pending_refund_id"],
            booking_id=item["booking_id"],
            payment_id=item["payment_id"],
            user_id=item["user_id"],
            policy_refund_amount=Money.from_cents(int(item["policy_refund_cents"]), currency),
            admin_refund_amount=(
                Money.from_cents(int(admin_cents), currency) if admin_cents is not None else None
            ),
            status=PendingRefundStatus(item["status"]),
            cancellation_reason=item.get("cancellation_reason"),
            applied_rule=(
                RefundRule(
                    days_before_checkin=int(rule["days_before_checkin"]),
                    refund_percentage=int(rule["refund_percentage"]),
                    description=rule.get("description", ""),
                )
                if rule
                else None
            ),
            admin_notes=item.get("admin_notes"),
            reviewed_by=item.get("reviewed_by"),
            refund_id=item.get("refund_id"),
            created_at=from_iso(item["created_at"]),
            reviewed_at=from_iso(reviewed_at) if reviewed_at else None,
        )
