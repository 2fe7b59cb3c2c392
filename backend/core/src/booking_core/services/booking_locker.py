"""Booking state machine with storage-level mutual exclusion.

A hold is created in a single DynamoDB transaction that puts the booking
row and claims one inventory row per night (plus one per room for per-room
bookings). Conflicting claims fail the transaction's condition checks, so
two overlapping holds can never both commit regardless of how many
processes are running.

Inventory rows:
    {property}#{YYYY-MM-DD}
        buyout_holder  booking holding the whole property that night
        rooms_in_use   number of room claims that night
        guests_in_use  per-guest-daily head count that night
    {property}#{YYYY-MM-DD}#room#{room_id}
        holder         booking holding the room that night

State transitions:
    hold -> complete      confirm_booking (payment reconciled)
    hold -> canceled      release_hold (owner, sweeper, cancel_booking)
    complete -> canceled  cancel_booking (refund path)
    canceled -> refunded  refund processed
"""

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from booking_core.config import EngineSettings, get_settings
from booking_core.models import (
    Booking,
    BookingError,
    BookingMode,
    BookingStatus,
    BuyoutBreakdown,
    ErrorCode,
    InventoryState,
    Money,
    PendingRefund,
    PendingRefundStatus,
    PerGuestBreakdown,
    PostedRefund,
    PricingBreakdown,
    Property,
    Refund,
    RefundCalculation,
    RoomBreakdown,
    RoomLine,
    User,
)
from booking_core.utils.clock import Clock, from_iso, stay_nights, to_iso, utc_now
from booking_core.utils.logging import get_logger, log_booking_transition
from booking_core.utils.reference import BOOKING_PREFIX, generate_reference

from .dynamodb import TransactionCancelled
from .pricing import parse_booking_mode, parse_property
from .stripe_service import StripeServiceError

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .ledger_service import LedgerService
    from .pricing import PricingCalculator
    from .refund_policy_service import RefundPolicyEvaluator
    from .refund_service import RefundService

logger = get_logger(__name__)

# DynamoDB TransactWriteItems limit
MAX_TRANSACTION_ITEMS = 100


@dataclass
class CancellationResult:
    """Outcome of cancel_booking."""

    booking: Booking
    refund_amount: Money
    refund_record: Refund | PendingRefund | None = None
    calculation: RefundCalculation | None = None


def night_key(prop: Property, night: dt.date) -> str:
    return f"{prop.value}#{night.isoformat()}"


def room_night_key(prop: Property, night: dt.date, room_id: str) -> str:
    return f"{night_key(prop, night)}#room#{room_id}"


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class BookingLocker:
    """Owns every status change of a booking.

    Usage:
        locker = BookingLocker(db, pricing=calculator, refunds=evaluator, ledger=ledger)
        booking = locker.create_hold(user, "tahoe", check_in, check_out, "buyout")
        locker.confirm_booking(booking.booking_id)
    """

    BOOKINGS_TABLE = "bookings"
    INVENTORY_TABLE = "inventory"

    def __init__(
        self,
        db: "DynamoDBService",
        *,
        pricing: "PricingCalculator",
        refunds: "RefundPolicyEvaluator",
        ledger: "LedgerService",
        refund_service: "RefundService | None" = None,
        settings: EngineSettings | None = None,
        clock: Clock = utc_now,
        hold_duration: dt.timedelta | None = None,
    ) -> None:
        """Initialize the locker.

        Args:
            db: DynamoDB service instance
            pricing: Calculator used to price new holds
            refunds: Evaluator used when cancelling paid bookings
            ledger: Ledger used to find the original payment
            refund_service: Issues refunds; required to cancel paid bookings
            settings: Engine settings (defaults to environment settings)
            clock: Source of the current time
            hold_duration: Hold lifetime; defaults to settings.hold_duration_minutes
        """
        self.db = db
        self.pricing = pricing
        self.refunds = refunds
        self.ledger = ledger
        self.refund_service = refund_service
        self.settings = settings or get_settings()
        self.clock = clock
        self.hold_duration = hold_duration or dt.timedelta(
            minutes=self.settings.hold_duration_minutes
        )

    # Hold creation

    def create_hold(
        self,
        user: User,
        property: Property | str,
        check_in: dt.date,
        check_out: dt.date,
        booking_mode: BookingMode | str,
        room_ids: list[str] | None = None,
        guests_count: int = 1,
        children_count: int = 0,
    ) -> Booking:
        """Price the stay and atomically place a hold on it.

        Args:
            user: Booking owner
            property: Property to book
            check_in: Check-in date
            check_out: Check-out date (exclusive)
            booking_mode: buyout, day or room
            room_ids: Rooms to hold (room mode only)
            guests_count: Adult guest count (at least 1)
            children_count: Child count

        Returns:
            The new booking in HOLD status

        Raises:
            BookingError: MEMBERSHIP_REQUIRED, any pricing validation error,
                STAY_TOO_LONG or RESOURCE_UNAVAILABLE
        """
        if self.settings.require_active_membership and not user.membership_active:
            raise BookingError(ErrorCode.MEMBERSHIP_REQUIRED, {"user_id": user.user_id})
        if guests_count < 1 or children_count < 0:
            raise BookingError(
                ErrorCode.INVALID_GUEST_COUNT,
                {"guests_count": str(guests_count), "children_count": str(children_count)},
            )

        prop = parse_property(property)
        mode = parse_booking_mode(booking_mode)
        rooms = _dedupe(room_ids or []) if mode == BookingMode.ROOM else []

        quote = self.pricing.calculate_price(
            prop,
            check_in,
            check_out,
            mode,
            room_ids=rooms,
            guests_count=guests_count,
            children_count=children_count,
        )
        capacity = self.settings.guest_capacity.get(prop)
        if mode == BookingMode.DAY and capacity is not None and guests_count > capacity:
            raise BookingError(
                ErrorCode.MAX_GUESTS_EXCEEDED,
                {"guests_count": str(guests_count), "capacity": str(capacity)},
            )

        now = self.clock()
        booking = Booking(
            booking_id=str(uuid.uuid4()),
            reference=generate_reference(BOOKING_PREFIX, now.date()),
            user_id=user.user_id,
            property=prop,
            booking_mode=mode,
            room_ids=rooms,
            check_in=check_in,
            check_out=check_out,
            guests_count=guests_count,
            children_count=children_count,
            status=BookingStatus.HOLD,
            hold_expires_at=now + self.hold_duration,
            total_price=quote.total,
            pricing_breakdown=quote.breakdown,
            created_at=now,
            updated_at=now,
        )

        items = [
            self.db.tx_put(
                self.BOOKINGS_TABLE,
                self._booking_to_item(booking),
                condition_expression="attribute_not_exists(booking_id)",
            ),
            *self._claim_items(booking, now),
        ]
        if len(items) > MAX_TRANSACTION_ITEMS:
            raise BookingError(
                ErrorCode.STAY_TOO_LONG,
                {"nights": str(booking.nights), "rooms": str(len(rooms))},
            )

        if not self.db.transact_write(items):
            if not self._reclaim_expired_holds(prop, check_in, check_out):
                self._raise_unavailable(booking)
            if not self.db.transact_write(items):
                self._raise_unavailable(booking)

        log_booking_transition(
            logger,
            booking.booking_id,
            None,
            BookingStatus.HOLD.value,
            reference=booking.reference,
            property=prop.value,
            mode=mode.value,
            expires_at=to_iso(booking.hold_expires_at) if booking.hold_expires_at else None,
        )
        return booking

    def _raise_unavailable(self, booking: Booking) -> None:
        logger.info(
            "Hold conflict for %s %s %s..%s",
            booking.property.value,
            booking.booking_mode.value,
            booking.check_in.isoformat(),
            booking.check_out.isoformat(),
        )
        raise BookingError(
            ErrorCode.RESOURCE_UNAVAILABLE,
            {
                "property": booking.property.value,
                "check_in": booking.check_in.isoformat(),
                "check_out": booking.check_out.isoformat(),
            },
        )

    def _reclaim_expired_holds(
        self, prop: Property, check_in: dt.date, check_out: dt.date
    ) -> int:
        """Release expired, unswept holds that overlap the requested stay."""
        reclaimed = 0
        for booking in self.list_expired_holds():
            if booking.property != prop:
                continue
            if not (booking.check_in < check_out and check_in < booking.check_out):
                continue
            try:
                self.release_hold(booking.booking_id, reason="hold_expired")
                reclaimed += 1
            except BookingError as e:
                # Confirmed concurrently; it keeps its inventory
                logger.info("Could not reclaim hold %s: %s", booking.booking_id, e)
        return reclaimed

    # Expiry

    def is_expired(self, booking: Booking, now: dt.datetime | None = None) -> bool:
        """Whether payment may no longer proceed against this booking.

        Any non-hold status counts as expired. A hold without an expiry
        timestamp is treated as live.
        """
        if booking.status != BookingStatus.HOLD:
            return True
        if booking.hold_expires_at is None:
            return False
        return (now or self.clock()) > booking.hold_expires_at

    def list_expired_holds(self, now: dt.datetime | None = None) -> list[Booking]:
        """Holds whose expiry has passed, oldest first."""
        cutoff = to_iso(now or self.clock())
        items = self.db.query_by_gsi(
            self.BOOKINGS_TABLE,
            "hold-expiry-index",
            "status",
            BookingStatus.HOLD.value,
            Key("hold_expires_at").lt(cutoff),
        )
        return [self._item_to_booking(item) for item in items]

    # Release / confirm

    def release_hold(
        self,
        booking_id: str,
        reason: str | None = None,
        raise_if_canceled: bool = False,
    ) -> Booking:
        """Cancel a hold and free its inventory in one transaction.

        Releasing an already-canceled booking is a no-op that returns it,
        unless raise_if_canceled asks for ALREADY_CANCELED instead.

        Raises:
            BookingError: BOOKING_NOT_FOUND, ALREADY_CANCELED or NOT_IN_HOLD_STATE
        """
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.HOLD:
            return self._not_releasable(booking, raise_if_canceled)

        now = self.clock()
        values: dict[str, Any] = {
            ":canceled": BookingStatus.CANCELED.value,
            ":hold": BookingStatus.HOLD.value,
            ":now": to_iso(now),
        }
        sets = ["#s = :canceled", "updated_at = :now", "canceled_at = :now"]
        if reason:
            sets.append("cancellation_reason = :reason")
            values[":reason"] = reason

        items = [
            self.db.tx_update(
                self.BOOKINGS_TABLE,
                {"booking_id": booking_id},
                "SET " + ", ".join(sets) + " REMOVE hold_expires_at",
                condition_expression="#s = :hold",
                expression_attribute_names={"#s": "status"},
                expression_attribute_values=values,
            ),
            *self._release_items(booking, now),
        ]

        try:
            self.db.transact_write_or_raise(items)
        except TransactionCancelled as e:
            current = self.get_booking(booking_id)
            if current.status != BookingStatus.HOLD:
                return self._not_releasable(current, raise_if_canceled)
            logger.critical(
                "Inventory for hold %s does not match the booking: %s",
                booking_id,
                e.reasons,
            )
            raise

        log_booking_transition(
            logger,
            booking_id,
            BookingStatus.HOLD.value,
            BookingStatus.CANCELED.value,
            reason=reason,
        )
        return self.get_booking(booking_id)

    def _not_releasable(self, booking: Booking, raise_if_canceled: bool) -> Booking:
        if booking.status == BookingStatus.CANCELED:
            if raise_if_canceled:
                raise BookingError(
                    ErrorCode.ALREADY_CANCELED, {"booking_id": booking.booking_id}
                )
            logger.info("Hold %s already released", booking.booking_id)
            return booking
        raise BookingError(
            ErrorCode.NOT_IN_HOLD_STATE,
            {"booking_id": booking.booking_id, "status": booking.status.value},
        )

    def confirm_booking(self, booking_id: str) -> Booking:
        """Move a live hold to complete and mark its inventory booked.

        Raises:
            BookingError: BOOKING_NOT_FOUND, NOT_IN_HOLD_STATE or ALREADY_EXPIRED
        """
        booking = self.get_booking(booking_id)
        self.ensure_live_hold(booking)

        now = self.clock()
        items = [
            self.db.tx_update(
                self.BOOKINGS_TABLE,
                {"booking_id": booking_id},
                "SET #s = :complete, updated_at = :now, confirmed_at = :now"
                " REMOVE hold_expires_at",
                condition_expression=(
                    "#s = :hold"
                    " AND (attribute_not_exists(hold_expires_at) OR hold_expires_at >= :now)"
                ),
                expression_attribute_names={"#s": "status"},
                expression_attribute_values={
                    ":complete": BookingStatus.COMPLETE.value,
                    ":hold": BookingStatus.HOLD.value,
                    ":now": to_iso(now),
                },
            ),
            *self._mark_booked_items(booking, now),
        ]

        if not self.db.transact_write(items):
            current = self.get_booking(booking_id)
            self.ensure_live_hold(current, now)
            logger.critical("Inventory for hold %s could not be marked booked", booking_id)
            raise BookingError(
                ErrorCode.BOOKING_CONFIRMATION_FAILED, {"booking_id": booking_id}
            )

        log_booking_transition(
            logger,
            booking_id,
            BookingStatus.HOLD.value,
            BookingStatus.COMPLETE.value,
        )
        return self.get_booking(booking_id)

    def ensure_live_hold(self, booking: Booking, now: dt.datetime | None = None) -> None:
        if booking.status != BookingStatus.HOLD:
            raise BookingError(
                ErrorCode.NOT_IN_HOLD_STATE,
                {"booking_id": booking.booking_id, "status": booking.status.value},
            )
        if self.is_expired(booking, now):
            raise BookingError(
                ErrorCode.ALREADY_EXPIRED,
                {
                    "booking_id": booking.booking_id,
                    "hold_expires_at": to_iso(booking.hold_expires_at)
                    if booking.hold_expires_at
                    else "",
                },
            )

    def attach_payment_intent(self, booking_id: str, payment_intent_id: str) -> Booking:
        """Record the PaymentIntent created for a live hold.

        Raises:
            BookingError: NOT_IN_HOLD_STATE if the booking left HOLD meanwhile
        """
        updated = self.db.update_item(
            self.BOOKINGS_TABLE,
            {"booking_id": booking_id},
            "SET payment_intent_id = :pi, updated_at = :now",
            {
                ":pi": payment_intent_id,
                ":now": to_iso(self.clock()),
                ":hold": BookingStatus.HOLD.value,
            },
            expression_attribute_names={"#s": "status"},
            condition_expression="#s = :hold",
        )
        if updated is None:
            raise BookingError(ErrorCode.NOT_IN_HOLD_STATE, {"booking_id": booking_id})
        return self._item_to_booking(updated)

    # Cancellation

    def cancel_booking(
        self,
        booking: Booking | str,
        as_of_date: dt.date | None = None,
        reason: str | None = None,
    ) -> CancellationResult:
        """Cancel a booking, refunding a paid one per its refund policy.

        - hold: released, no refund
        - canceled/refunded: returned unchanged
        - complete: canceled; a full refund is issued immediately, a
          partial refund waits for review as a PendingRefund, zero is
          just a cancellation. Inventory is not released.

        Raises:
            BookingError: BOOKING_NOT_FOUND
        """
        booking_id = booking if isinstance(booking, str) else booking.booking_id
        current = self.get_booking(booking_id)
        zero = Money.zero(current.total_price.currency)

        if current.status in (BookingStatus.CANCELED, BookingStatus.REFUNDED):
            logger.info("Booking %s already %s", booking_id, current.status.value)
            return CancellationResult(booking=current, refund_amount=zero)

        if current.status == BookingStatus.HOLD:
            released = self.release_hold(booking_id, reason=reason or "canceled_by_user")
            return CancellationResult(booking=released, refund_amount=zero)

        as_of = as_of_date or self.clock().date()
        payment = self.ledger.get_booking_payment(booking_id)
        if payment is None:
            logger.warning("Complete booking %s has no recorded payment", booking_id)
            calculation = None
        else:
            calculation = self.refunds.calculate_refund(
                current, as_of, payment.refundable_amount
            )

        canceled = self._transition(
            current, BookingStatus.COMPLETE, BookingStatus.CANCELED, reason=reason
        )
        if canceled is None:
            return CancellationResult(booking=self.get_booking(booking_id), refund_amount=zero)

        if payment is None or calculation is None or not calculation.refund_amount.is_positive:
            return CancellationResult(
                booking=canceled, refund_amount=zero, calculation=calculation
            )

        refund_service = self._require_refund_service()
        if calculation.refund_amount == payment.refundable_amount:
            try:
                posted = refund_service.issue_refund(
                    payment=payment,
                    amount=calculation.refund_amount,
                    reason=reason,
                    idempotency_key=f"cancel_{current.reference}",
                )
            except StripeServiceError as e:
                logger.error(
                    "Immediate refund for %s failed, queueing for review: %s",
                    booking_id,
                    e,
                )
            else:
                refunded = self.mark_refunded(canceled.booking_id)
                return CancellationResult(
                    booking=refunded,
                    refund_amount=calculation.refund_amount,
                    refund_record=posted.refund,
                    calculation=calculation,
                )

        pending = refund_service.create_pending_refund(
            booking=canceled, payment=payment, calculation=calculation, reason=reason
        )
        return CancellationResult(
            booking=canceled,
            refund_amount=calculation.refund_amount,
            refund_record=pending,
            calculation=calculation,
        )

    def calculate_refund(
        self, booking_id: str, as_of_date: dt.date | None = None
    ) -> RefundCalculation:
        """Refund a cancellation would yield now, without cancelling."""
        booking = self.get_booking(booking_id)
        payment = self.ledger.get_booking_payment(booking_id)
        baseline = payment.refundable_amount if payment else booking.total_price
        return self.refunds.calculate_refund(
            booking, as_of_date or self.clock().date(), baseline
        )

    def approve_pending_refund(
        self,
        pending_refund_id: str,
        admin_refund_amount: Money | None = None,
        admin_notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> tuple[Booking, PendingRefund, PostedRefund | None]:
        """Issue a reviewed refund and mark the booking refunded.

        Raises:
            BookingError: PENDING_REFUND_NOT_FOUND, PENDING_REFUND_NOT_PENDING,
                PAYMENT_NOT_FOUND or REFUND_EXCEEDS_PAYMENT
            StripeServiceError: If Stripe rejects the refund
        """
        refund_service = self._require_refund_service()
        pending = refund_service.get_pending_refund(pending_refund_id)
        if pending.status != PendingRefundStatus.PENDING:
            raise BookingError(
                ErrorCode.PENDING_REFUND_NOT_PENDING,
                {"pending_refund_id": pending_refund_id, "status": pending.status.value},
            )
        payment = self.ledger.get_payment(pending.payment_id)
        if payment is None:
            raise BookingError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": pending.payment_id})

        amount = (
            admin_refund_amount
            if admin_refund_amount is not None
            else pending.policy_refund_amount
        )
        posted = None
        if amount.is_positive:
            posted = refund_service.issue_refund(
                payment=payment,
                amount=amount,
                reason=pending.cancellation_reason,
                idempotency_key=f"pending_refund_{pending_refund_id}",
                metadata={"pending_refund_id": pending_refund_id},
            )

        reviewed = refund_service.mark_reviewed(
            pending,
            status=PendingRefundStatus.APPROVED,
            admin_refund_amount=admin_refund_amount,
            admin_notes=admin_notes,
            reviewed_by=reviewed_by,
            refund_id=posted.refund.refund_id if posted else None,
        )
        if posted is not None:
            booking = self.mark_refunded(pending.booking_id)
        else:
            booking = self.get_booking(pending.booking_id)
        return booking, reviewed, posted

    def reject_pending_refund(
        self,
        pending_refund_id: str,
        admin_notes: str | None = None,
        reviewed_by: str | None = None,
    ) -> PendingRefund:
        """Close a pending refund without paying it out."""
        refund_service = self._require_refund_service()
        pending = refund_service.get_pending_refund(pending_refund_id)
        return refund_service.mark_reviewed(
            pending,
            status=PendingRefundStatus.REJECTED,
            admin_notes=admin_notes,
            reviewed_by=reviewed_by,
        )

    def list_pending_refunds(self) -> list[PendingRefund]:
        return self._require_refund_service().list_pending_refunds()

    def _require_refund_service(self) -> "RefundService":
        if self.refund_service is None:
            raise RuntimeError("BookingLocker was created without a refund service")
        return self.refund_service

    def mark_refunded(self, booking_id: str) -> Booking:
        """Move a canceled booking to refunded; other statuses are left alone."""
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.CANCELED:
            return booking
        refunded = self._transition(booking, BookingStatus.CANCELED, BookingStatus.REFUNDED)
        return refunded or self.get_booking(booking_id)

    def _transition(
        self,
        booking: Booking,
        from_status: BookingStatus,
        to_status: BookingStatus,
        reason: str | None = None,
    ) -> Booking | None:
        """Conditionally move a non-hold booking between statuses.

        Returns None if the booking was not in from_status.
        """
        now = to_iso(self.clock())
        values: dict[str, Any] = {":to": to_status.value, ":from": from_status.value, ":now": now}
        sets = ["#s = :to", "updated_at = :now"]
        if to_status == BookingStatus.CANCELED:
            sets.append("canceled_at = :now")
            if reason:
                sets.append("cancellation_reason = :reason")
                values[":reason"] = reason

        updated = self.db.update_item(
            self.BOOKINGS_TABLE,
            {"booking_id": booking.booking_id},
            "SET " + ", ".join(sets),
            values,
            expression_attribute_names={"#s": "status"},
            condition_expression="#s = :from",
        )
        if updated is None:
            return None

        log_booking_transition(
            logger, booking.booking_id, from_status.value, to_status.value, reason=reason
        )
        return self._item_to_booking(updated)

    # Reads

    def get_booking(self, booking_id: str) -> Booking:
        """Load a booking.

        Raises:
            BookingError: BOOKING_NOT_FOUND
        """
        item = self.db.get_item(self.BOOKINGS_TABLE, {"booking_id": booking_id})
        if not item:
            raise BookingError(ErrorCode.BOOKING_NOT_FOUND, {"booking_id": booking_id})
        return self._item_to_booking(item)

    def list_user_bookings(self, user_id: str) -> list[Booking]:
        """All bookings of a user, newest check-in first."""
        items = self.db.query_by_gsi(self.BOOKINGS_TABLE, "user-index", "user_id", user_id)
        bookings = [self._item_to_booking(item) for item in items]
        return sorted(bookings, key=lambda b: b.check_in, reverse=True)

    # Inventory transaction items

    def _claim_items(self, booking: Booking, now: dt.datetime) -> list[dict[str, Any]]:
        prop = booking.property
        holder = booking.booking_id
        stamp = to_iso(now)
        items: list[dict[str, Any]] = []

        for night in stay_nights(booking.check_in, booking.check_out):
            key = {"inventory_key": night_key(prop, night)}
            if booking.booking_mode == BookingMode.BUYOUT:
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        key,
                        "SET buyout_holder = :holder, buyout_state = :held, updated_at = :now",
                        condition_expression=(
                            "attribute_not_exists(buyout_holder)"
                            " AND (attribute_not_exists(rooms_in_use) OR rooms_in_use = :zero)"
                            " AND (attribute_not_exists(guests_in_use) OR guests_in_use = :zero)"
                        ),
                        expression_attribute_values={
                            ":holder": holder,
                            ":held": InventoryState.HELD.value,
                            ":now": stamp,
                            ":zero": 0,
                        },
                    )
                )
            elif booking.booking_mode == BookingMode.ROOM:
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        key,
                        "SET updated_at = :now ADD rooms_in_use :count",
                        condition_expression=(
                            "attribute_not_exists(buyout_holder)"
                            " AND (attribute_not_exists(guests_in_use) OR guests_in_use = :zero)"
                        ),
                        expression_attribute_values={
                            ":count": len(booking.room_ids),
                            ":now": stamp,
                            ":zero": 0,
                        },
                    )
                )
                for room_id in booking.room_ids:
                    items.append(
                        self.db.tx_put(
                            self.INVENTORY_TABLE,
                            {
                                "inventory_key": room_night_key(prop, night, room_id),
                                "holder": holder,
                                "state": InventoryState.HELD.value,
                                "updated_at": stamp,
                            },
                            condition_expression="attribute_not_exists(inventory_key)",
                        )
                    )
            else:
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        key,
                        "SET updated_at = :now ADD guests_in_use :guests",
                        condition_expression=(
                            "attribute_not_exists(buyout_holder)"
                            " AND (attribute_not_exists(rooms_in_use) OR rooms_in_use = :zero)"
                            " AND (attribute_not_exists(guests_in_use) OR guests_in_use <= :limit)"
                        ),
                        expression_attribute_values={
                            ":guests": booking.guests_count,
                            ":limit": self._guest_limit(booking),
                            ":now": stamp,
                            ":zero": 0,
                        },
                    )
                )
        return items

    def _guest_limit(self, booking: Booking) -> int:
        """Highest guests_in_use that still leaves room for this party.

        Without a configured capacity a per-guest-daily hold takes the
        whole night.
        """
        capacity = self.settings.guest_capacity.get(booking.property)
        if capacity is None:
            return 0
        return capacity - booking.guests_count

    def _release_items(self, booking: Booking, now: dt.datetime) -> list[dict[str, Any]]:
        prop = booking.property
        stamp = to_iso(now)
        items: list[dict[str, Any]] = []

        for night in stay_nights(booking.check_in, booking.check_out):
            key = {"inventory_key": night_key(prop, night)}
            if booking.booking_mode == BookingMode.BUYOUT:
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        key,
                        "SET updated_at = :now REMOVE buyout_holder, buyout_state",
                        condition_expression="buyout_holder = :holder",
                        expression_attribute_values={
                            ":holder": booking.booking_id,
                            ":now": stamp,
                        },
                    )
                )
            elif booking.booking_mode == BookingMode.ROOM:
                count = len(booking.room_ids)
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        key,
                        "SET updated_at = :now ADD rooms_in_use :dec",
                        condition_expression="rooms_in_use >= :count",
                        expression_attribute_values={
                            ":dec": -count,
                            ":count": count,
                            ":now": stamp,
                        },
                    )
                )
                for room_id in booking.room_ids:
                    items.append(
                        self.db.tx_delete(
                            self.INVENTORY_TABLE,
                            {"inventory_key": room_night_key(prop, night, room_id)},
                            condition_expression="holder = :holder",
                            expression_attribute_values={":holder": booking.booking_id},
                        )
                    )
            else:
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        key,
                        "SET updated_at = :now ADD guests_in_use :dec",
                        condition_expression="guests_in_use >= :guests",
                        expression_attribute_values={
                            ":dec": -booking.guests_count,
                            ":guests": booking.guests_count,
                            ":now": stamp,
                        },
                    )
                )
        return items

    def _mark_booked_items(self, booking: Booking, now: dt.datetime) -> list[dict[str, Any]]:
        # Per-guest-daily nights are counters with no per-booking state
        prop = booking.property
        stamp = to_iso(now)
        values = {
            ":holder": booking.booking_id,
            ":booked": InventoryState.BOOKED.value,
            ":now": stamp,
        }
        items: list[dict[str, Any]] = []

        for night in stay_nights(booking.check_in, booking.check_out):
            if booking.booking_mode == BookingMode.BUYOUT:
                items.append(
                    self.db.tx_update(
                        self.INVENTORY_TABLE,
                        {"inventory_key": night_key(prop, night)},
                        "SET buyout_state = :booked, updated_at = :now",
                        condition_expression="buyout_holder = :holder",
                        expression_attribute_values=values,
                    )
                )
            elif booking.booking_mode == BookingMode.ROOM:
                for room_id in booking.room_ids:
                    items.append(
                        self.db.tx_update(
                            self.INVENTORY_TABLE,
                            {"inventory_key": room_night_key(prop, night, room_id)},
                            "SET #state = :booked, updated_at = :now",
                            condition_expression="holder = :holder",
                            expression_attribute_names={"#state": "state"},
                            expression_attribute_values=values,
                        )
                    )
        return items

    # Item conversion

    def _booking_to_item(self, booking: Booking) -> dict[str, Any]:
        item: dict[str, Any] = {
            "booking_id": booking.booking_id,
            "reference": booking.reference,
            "user_id": booking.user_id,
            "property": booking.property.value,
            "booking_mode": booking.booking_mode.value,
            "room_ids": list(booking.room_ids),
            "check_in": booking.check_in.isoformat(),
            "check_out": booking.check_out.isoformat(),
            "guests_count": booking.guests_count,
            "children_count": booking.children_count,
            "status": booking.status.value,
            "total_cents": booking.total_price.to_cents(),
            "currency": booking.total_price.currency,
            "pricing_breakdown": breakdown_to_item(booking.pricing_breakdown),
            "created_at": to_iso(booking.created_at),
            "updated_at": to_iso(booking.updated_at),
        }
        if booking.hold_expires_at:
            item["hold_expires_at"] = to_iso(booking.hold_expires_at)
        if booking.payment_intent_id:
            item["payment_intent_id"] = booking.payment_intent_id
        if booking.cancellation_reason:
            item["cancellation_reason"] = booking.cancellation_reason
        if booking.confirmed_at:
            item["confirmed_at"] = to_iso(booking.confirmed_at)
        if booking.canceled_at:
            item["canceled_at"] = to_iso(booking.canceled_at)
        return item

    def _item_to_booking(self, item: dict[str, Any]) -> Booking:
        currency = item["currency"]
        hold_expires_at = item.get("hold_expires_at")
        confirmed_at = item.get("confirmed_at")
        canceled_at = item.get("canceled_at")
        return Booking(
            booking_id=item["booking_id"],
            reference=item["reference"],
            user_id=item["user_id"],
            property=Property(item["property"]),
            booking_mode=BookingMode(item["booking_mode"]),
            room_ids=[str(r) for r in item.get("room_ids", [])],
            check_in=dt.date.fromisoformat(item["check_in"]),
            check_out=dt.date.fromisoformat(item["check_out"]),
            guests_count=int(item["guests_count"]),
            children_count=int(item.get("children_count", 0)),
            status=BookingStatus(item["status"]),
            hold_expires_at=from_iso(hold_expires_at) if hold_expires_at else None,
            total_price=Money.from_cents(int(item["total_cents"]), currency),
            pricing_breakdown=item_to_breakdown(item["pricing_breakdown"], currency),
            payment_intent_id=item.get("payment_intent_id"),
            cancellation_reason=item.get("cancellation_reason"),
            created_at=from_iso(item["created_at"]),
            updated_at=from_iso(item["updated_at"]),
            confirmed_at=from_iso(confirmed_at) if confirmed_at else None,
            canceled_at=from_iso(canceled_at) if canceled_at else None,
        )


def breakdown_to_item(breakdown: PricingBreakdown) -> dict[str, Any]:
    """Store a pricing breakdown with amounts in cents."""
    if isinstance(breakdown, BuyoutBreakdown):
        return {
            "type": breakdown.type,
            "nights": breakdown.nights,
            "price_per_night_cents": breakdown.price_per_night.to_cents(),
        }
    if isinstance(breakdown, PerGuestBreakdown):
        return {
            "type": breakdown.type,
            "nights": breakdown.nights,
            "guests_count": breakdown.guests_count,
            "price_per_guest_per_night_cents": breakdown.price_per_guest_per_night.to_cents(),
        }
    return {
        "type": breakdown.type,
        "nights": breakdown.nights,
        "rooms": [
            {
                "room_id": line.room_id,
                "room_name": line.room_name,
                "nights": line.nights,
                "guests_count": line.guests_count,
                "children_count": line.children_count,
                "price_per_night_cents": line.price_per_night.to_cents(),
                "children_price_per_night_cents": line.children_price_per_night.to_cents(),
                "subtotal_cents": line.subtotal.to_cents(),
            }
            for line in breakdown.rooms
        ],
    }


def item_to_breakdown(item: dict[str, Any], currency: str) -> PricingBreakdown:
    def money(cents: Any) -> Money:
        return Money.from_cents(int(cents), currency)

    kind = item["type"]
    if kind == "buyout":
        return BuyoutBreakdown(
            nights=int(item["nights"]),
            price_per_night=money(item["price_per_night_cents"]),
        )
    if kind == "per_guest":
        return PerGuestBreakdown(
            nights=int(item["nights"]),
            guests_count=int(item["guests_count"]),
            price_per_guest_per_night=money(item["price_per_guest_per_night_cents"]),
        )
    return RoomBreakdown(
        nights=int(item["nights"]),
        rooms=[
            RoomLine(
                room_id=line["room_id"],
                room_name=line["room_name"],
                nights=int(line["nights"]),
                guests_count=int(line["guests_count"]),
                children_count=int(line["children_count"]),
                price_per_night=money(line["price_per_night_cents"]),
                children_price_per_night=money(line["children_price_per_night_cents"]),
                subtotal=money(line["subtotal_cents"]),
            )
            for line in item["rooms"]
        ],
    )
