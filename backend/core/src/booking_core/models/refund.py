"""Refund policy, refund and pending refund models."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .enums import BookingMode, PendingRefundStatus, Property
from .money import Money


class RefundRule(BaseModel):
    """Refund percentage granted when cancelling at least N days out."""

    model_config = ConfigDict(strict=True, frozen=True)

    days_before_checkin: int
    refund_percentage: int = Field(..., ge=0, le=100)
    description: str = ""


class RefundPolicy(BaseModel):
    """Ordered refund rules for a (property, booking mode)."""

    model_config = ConfigDict(strict=True)

    property: Property
    booking_mode: BookingMode
    name: str = ""
    is_active: bool = True
    rules: list[RefundRule] = Field(default_factory=list)

    def rules_by_threshold(self) -> list[RefundRule]:
        """Rules sorted with the largest days-before-checkin first."""
        return sorted(self.rules, key=lambda r: r.days_before_checkin, reverse=True)


class RefundCalculation(BaseModel):
    """Outcome of evaluating a refund policy for a cancellation date."""

    model_config = ConfigDict(strict=True)

    refund_amount: Money
    payment_amount: Money
    applied_rule: RefundRule | None = None
    refund_percentage: int
    days_before_checkin: int
    policy_found: bool
    description: str

    @property
    def is_full_refund(self) -> bool:
        return self.refund_amount == self.payment_amount


class Refund(BaseModel):
    """A processed refund recorded against a payment."""

    model_config = ConfigDict(strict=True)

    refund_id: str
    reference: str
    payment_id: str
    booking_id: str | None = None
    amount: Money
    reason: str | None = None
    external_refund_id: str
    transaction_id: str
    created_at: dt.datetime


class PendingRefund(BaseModel):
    """A refund awaiting manual review.

    policy_refund_amount is what the policy computed at cancellation time;
    admin_refund_amount is set only when a reviewer overrides it.
    """

    model_config = ConfigDict(strict=True)

    pending_refund_id: str
    booking_id: str
    payment_id: str
    user_id: str
    policy_refund_amount: Money
    admin_refund_amount: Money | None = None
    status: PendingRefundStatus = PendingRefundStatus.PENDING
    cancellation_reason: str | None = None
    applied_rule: RefundRule | None = None
    admin_notes: str | None = None
    reviewed_by: str | None = None
    refund_id: str | None = None
    created_at: dt.datetime
    reviewed_at: dt.datetime | None = None

    @property
    def amount_to_refund(self) -> Money:
        if self.admin_refund_amount is not None:
            return self.admin_refund_amount
        return self.policy_refund_amount
