"""Refund policy evaluation for cancellations.

Policies are ordered rule sets scoped to a (property, booking mode). Rules
are tried from the largest days-before-checkin threshold down; the first
rule whose threshold is at or below the actual days remaining applies. No
matching rule means no refund. No policy at all means a full refund.

Example with rules [{14, 100%}, {7, 50%}, {0, 0%}]:
- 20 days out: 100%
- 10 days out: 50%
- 3 days out: 0%
- after check-in (negative days): no rule matches, 0%
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from booking_core.models import (
    Booking,
    BookingMode,
    Money,
    Property,
    RefundCalculation,
    RefundPolicy,
    RefundRule,
)
from booking_core.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


def _as_date(value: dt.date | dt.datetime) -> dt.date:
    return value.date() if isinstance(value, dt.datetime) else value


class RefundPolicyEvaluator:
    """Evaluates refunds against an injected set of policies."""

    def __init__(self, policies: list[RefundPolicy]) -> None:
        self._policies: dict[tuple[Property, BookingMode], RefundPolicy] = {
            (p.property, p.booking_mode): p for p in policies if p.is_active
        }

    def get_policy(self, property: Property, booking_mode: BookingMode) -> RefundPolicy | None:
        return self._policies.get((property, booking_mode))

    def calculate_refund(
        self,
        booking: Booking,
        as_of_date: dt.date | dt.datetime,
        payment_amount: Money | None = None,
    ) -> RefundCalculation:
        """Calculate the refund a cancellation on as_of_date is entitled to.

        Args:
            booking: Booking being cancelled
            as_of_date: Cancellation date
            payment_amount: Amount actually paid; defaults to the booking total

        Returns:
            RefundCalculation with the amount and the applied rule (if any)
        """
        baseline = payment_amount if payment_amount is not None else booking.total_price
        policy = self.get_policy(booking.property, booking.booking_mode)
        return self.evaluate(policy, baseline, booking.check_in, as_of_date)

    @staticmethod
    def evaluate(
        policy: RefundPolicy | None,
        payment_amount: Money,
        check_in: dt.date,
        as_of_date: dt.date | dt.datetime,
    ) -> RefundCalculation:
        """Apply a policy to a payment amount for a cancellation date."""
        days_before = (check_in - _as_date(as_of_date)).days

        if policy is None:
            return RefundCalculation(
                refund_amount=payment_amount,
                payment_amount=payment_amount,
                applied_rule=None,
                refund_percentage=100,
                days_before_checkin=days_before,
                policy_found=False,
                description="No refund policy configured: full refund",
            )

        rule = _select_rule(policy.rules_by_threshold(), days_before)
        if rule is None:
            return RefundCalculation(
                refund_amount=Money.zero(payment_amount.currency),
                payment_amount=payment_amount,
                applied_rule=None,
                refund_percentage=0,
                days_before_checkin=days_before,
                policy_found=True,
                description=f"No refund: cancelled {days_before} days before check-in",
            )

        return RefundCalculation(
            refund_amount=payment_amount.percentage(rule.refund_percentage),
            payment_amount=payment_amount,
            applied_rule=rule,
            refund_percentage=rule.refund_percentage,
            days_before_checkin=days_before,
            policy_found=True,
            description=rule.description
            or (
                f"{rule.refund_percentage}% refund: cancelled {days_before} days "
                f"before check-in (rule: {rule.days_before_checkin}+ days)"
            ),
        )


def _select_rule(rules_desc: list[RefundRule], days_before: int) -> RefundRule | None:
    for rule in rules_desc:
        if rule.days_before_checkin <= days_before:
            return rule
    return None


class RefundPolicyService:
    """Stores refund policies and builds evaluators from them."""

    TABLE = "refund-policies"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db
        self._cache: list[RefundPolicy] | None = None

    def list_policies(self, use_cache: bool = True) -> list[RefundPolicy]:
        if use_cache and self._cache is not None:
            return self._cache
        self._cache = [self._item_to_policy(item) for item in self.db.scan(self.TABLE)]
        return self._cache

    def evaluator(self) -> RefundPolicyEvaluator:
        return RefundPolicyEvaluator(self.list_policies())

    def put_policy(self, policy: RefundPolicy) -> bool:
        """Create or replace the policy for its (property, mode)."""
        self._cache = None
        saved = self.db.put_item(self.TABLE, self._policy_to_item(policy))
        logger.info(
            "Saved refund policy %s/%s with %d rules",
            policy.property.value,
            policy.booking_mode.value,
            len(policy.rules),
        )
        return saved

    def clear_cache(self) -> None:
        self._cache = None

    def _policy_to_item(self, policy: RefundPolicy) -> dict[str, Any]:
        return {
            "policy_key": f"{policy.property.value}#{policy.booking_mode.value}",
            "property": policy.property.value,
            "booking_mode": policy.booking_mode.value,
            "name": policy.name,
            "is_active": policy.is_active,
            "rules": [
                {
                    "days_before_checkin": r.days_before_checkin,
                    "refund_percentage": r.refund_percentage,
                    "description": r.description,
                }
                for r in policy.rules
            ],
        }

    def _item_to_policy(self, item: dict[str, Any]) -> RefundPolicy:
        return RefundPolicy(
            property=Property(item["property"]),
            booking_mode=BookingMode(item["booking_mode"]),
            name=item.get("name", ""),
            is_active=bool(item.get("is_active", True)),
            rules=[
                RefundRule(
                    days_before_checkin=int(r["days_before_checkin"]),
                    refund_percentage=int(r["refund_percentage"]),
                    description=r.get("description", ""),
                )
                for r in item.get("rules", [])
            ],
        )
