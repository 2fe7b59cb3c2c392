"""Payment reconciliation between Stripe and the booking engine.

Flow:
1. create_payment_intent: idempotent PaymentIntent for a live hold
2. Confirmation arrives by redirect (resolve_redirect) or webhook
   (handle_webhook), both ending in process_payment_success
3. process_payment_success: verify the intent, post the ledger payment,
   then confirm the booking

Posting is idempotent on the PaymentIntent ID, so redirect and webhook
racing each other, or webhook redeliveries, record exactly one payment.
"""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from booking_core.config import EngineSettings, get_settings
from booking_core.models import (
    AbsentInstrument,
    Booking,
    BookingError,
    BookingStatus,
    ErrorCode,
    ExpandedInstrument,
    InlineInstrument,
    Money,
    PaymentInstrument,
    PaymentMethodRecord,
    User,
    WebhookOutcome,
    WebhookResult,
    is_stripe_error_retryable,
)
from booking_core.utils.clock import Clock, to_iso, utc_now
from booking_core.utils.logging import get_logger, log_payment_operation, log_webhook_event
from booking_core.utils.retry import RetryableError, RetryPolicy, retry_with_timeout

from .ledger_service import estimate_processing_fee
from .stripe_service import PAYMENT_INTENT_EXPAND, StripeService, StripeServiceError

if TYPE_CHECKING:
    from .booking_locker import BookingLocker
    from .dynamodb import DynamoDBService
    from .ledger_service import LedgerService

logger = get_logger(__name__)

SECRET_SEPARATOR = "_secret_"

# Reasons a freshly redirected intent is not usable yet
RETRYABLE_REASONS = frozenset({"payment_intent_not_found", "no_metadata"})

HANDLED_EVENT_TYPES = frozenset({"payment_intent.succeeded", "charge.refunded"})


def normalize_intent_id(intent_id_or_client_secret: str) -> str:
    """Reduce a client secret ({id}_secret_{nonce}) to the intent ID."""
    value = intent_id_or_client_secret.strip()
    if SECRET_SEPARATOR in value:
        return value.split(SECRET_SEPARATOR, 1)[0]
    return value


def _first_charge(intent: dict[str, Any]) -> dict[str, Any] | None:
    latest = intent.get("latest_charge")
    if isinstance(latest, dict):
        return latest
    # Older API versions list charges on the intent
    charges = intent.get("charges") or {}
    data = charges.get("data") or []
    if data and isinstance(data[0], dict):
        first: dict[str, Any] = data[0]
        return first
    return None


def extract_instrument(intent: dict[str, Any]) -> PaymentInstrument:
    """Resolve the intent's payment method into one of three shapes.

    The top-level payment_method may be an ID or an expanded object; when
    it is missing, the first charge's payment_method is used.
    """
    method = intent.get("payment_method")
    if isinstance(method, str) and method:
        return InlineInstrument(payment_method_id=method)
    if isinstance(method, dict) and method.get("id"):
        return ExpandedInstrument(payment_method_id=method["id"], data=method)

    charge = _first_charge(intent)
    if charge is not None:
        charge_method = charge.get("payment_method")
        if isinstance(charge_method, str) and charge_method:
            return InlineInstrument(payment_method_id=charge_method)
        if isinstance(charge_method, dict) and charge_method.get("id"):
            return ExpandedInstrument(
                payment_method_id=charge_method["id"], data=charge_method
            )
    return AbsentInstrument()


def instrument_id(instrument: PaymentInstrument) -> str | None:
    if isinstance(instrument, AbsentInstrument):
        return None
    return instrument.payment_method_id


def extract_fee(intent: dict[str, Any], amount: Money) -> Money:
    """Settlement fee from the charge's balance transaction, else estimated."""
    charge = _first_charge(intent)
    balance = charge.get("balance_transaction") if charge else None
    if isinstance(balance, dict) and balance.get("fee") is not None:
        return Money.from_cents(int(balance["fee"]), amount.currency)
    return estimate_processing_fee(amount)


def intent_amount(intent: dict[str, Any]) -> Money:
    cents = intent.get("amount_received") or intent.get("amount") or 0
    return Money.from_cents(int(cents), str(intent.get("currency") or "usd"))


class PaymentReconciler:
    """Drives bookings from hold to complete based on Stripe payment state."""

    PAYMENT_METHODS_TABLE = "payment-methods"
    WEBHOOK_EVENTS_TABLE = "stripe-webhook-events"

    def __init__(
        self,
        db: "DynamoDBService",
        *,
        locker: "BookingLocker",
        ledger: "LedgerService",
        stripe: StripeService,
        settings: EngineSettings | None = None,
        clock: Clock = utc_now,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.locker = locker
        self.ledger = ledger
        self.stripe = stripe
        self.clock = clock
        settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_millis(
            settings.reconcile_max_attempts,
            settings.reconcile_retry_delay_ms,
            settings.reconcile_timeout_ms,
        )
        self._sleep = sleep
        self._monotonic = monotonic

    # Intent creation

    def create_payment_intent(
        self,
        booking: Booking | str,
        user: User,
        amount: Money | None = None,
    ) -> dict[str, Any]:
        """Create (or fetch again) the PaymentIntent for a live hold.

        The idempotency key is derived from the booking reference, so
        repeated calls never create a second charge.

        Args:
            booking: Booking or booking ID
            user: Paying user (supplies the Stripe customer)
            amount: Expected amount; must equal the booking total when given

        Returns:
            PaymentIntent dict (id, client_secret, amount, currency, status)

        Raises:
            BookingError: NOT_IN_HOLD_STATE, ALREADY_EXPIRED,
                PAYMENT_AMOUNT_MISMATCH or STRIPE_API_ERROR
        """
        booking_id = booking if isinstance(booking, str) else booking.booking_id
        current = self.locker.get_booking(booking_id)
        self.locker.ensure_live_hold(current)

        if amount is not None and amount != current.total_price:
            raise BookingError(
                ErrorCode.PAYMENT_AMOUNT_MISMATCH,
                {
                    "booking_id": booking_id,
                    "expected": str(current.total_price),
                    "received": str(amount),
                },
            )

        try:
            intent = self.stripe.create_payment_intent(
                amount_cents=current.total_price.to_cents(),
                currency=current.total_price.currency,
                metadata={
                    "booking_id": current.booking_id,
                    "booking_reference": current.reference,
                    "user_id": user.user_id,
                    "property": current.property.value,
                },
                idempotency_key=f"booking_{current.reference}",
                customer_id=user.stripe_customer_id,
                description=f"Booking {current.reference}",
            )
        except StripeServiceError as e:
            raise BookingError(
                ErrorCode.STRIPE_API_ERROR,
                {"booking_id": booking_id, "stripe_error_code": e.stripe_error_code or ""},
            ) from e

        if current.payment_intent_id != intent["id"]:
            self.locker.attach_payment_intent(booking_id, intent["id"])

        log_payment_operation(
            logger,
            "create_payment_intent",
            booking_id=booking_id,
            amount_cents=current.total_price.to_cents(),
            status=intent.get("status"),
            payment_intent_id=intent["id"],
        )
        return intent

    # Confirmation

    def process_payment_success(
        self, booking: Booking | str, intent_id_or_client_secret: str
    ) -> Booking:
        """Verify a PaymentIntent and complete its booking.

        Idempotent: a booking already completed by this intent is returned
        unchanged.

        Raises:
            BookingError: PAYMENT_VERIFICATION_FAILED, PAYMENT_NOT_SUCCEEDED,
                PAYMENT_AMOUNT_MISMATCH or BOOKING_CONFIRMATION_FAILED
        """
        booking_id = booking if isinstance(booking, str) else booking.booking_id
        intent_id = normalize_intent_id(intent_id_or_client_secret)
        current = self.locker.get_booking(booking_id)

        try:
            intent = self.stripe.retrieve_payment_intent(intent_id, PAYMENT_INTENT_EXPAND)
        except StripeServiceError as e:
            raise BookingError(
                ErrorCode.PAYMENT_VERIFICATION_FAILED,
                {"payment_intent_id": intent_id, "stripe_error_code": e.stripe_error_code or ""},
            ) from e

        return self._apply_succeeded_intent(current, intent)

    def resolve_redirect(self, intent_id_or_client_secret: str, redirect_status: str) -> Booking:
        """Complete a booking from Stripe's redirect back to the site.

        The redirect can arrive before the intent (or its metadata) is
        visible, so retrieval runs inside the bounded retry loop.

        Raises:
            BookingError: PAYMENT_NOT_SUCCEEDED, RECONCILIATION_TIMEOUT,
                PAYMENT_VERIFICATION_FAILED or anything process_payment_success raises
        """
        intent_id = normalize_intent_id(intent_id_or_client_secret)
        if redirect_status != "succeeded":
            raise BookingError(
                ErrorCode.PAYMENT_NOT_SUCCEEDED,
                {"payment_intent_id": intent_id, "status": redirect_status},
            )

        def fetch(attempt: int) -> tuple[dict[str, Any], str]:
            try:
                intent = self.stripe.retrieve_payment_intent(intent_id, PAYMENT_INTENT_EXPAND)
            except StripeServiceError as e:
                if e.is_not_found:
                    raise RetryableError("payment_intent_not_found", str(e)) from e
                raise
            booking_id = (intent.get("metadata") or {}).get("booking_id")
            if not booking_id:
                raise RetryableError("no_metadata", f"{intent_id} has no booking_id")
            return intent, booking_id

        try:
            intent, booking_id = retry_with_timeout(
                fetch,
                self.retry_policy,
                is_retryable=_is_transient,
                operation_name=f"resolve_redirect {intent_id}",
                sleep=self._sleep,
                monotonic=self._monotonic,
            )
        except StripeServiceError as e:
            raise BookingError(
                ErrorCode.PAYMENT_VERIFICATION_FAILED,
                {"payment_intent_id": intent_id, "stripe_error_code": e.stripe_error_code or ""},
            ) from e

        return self._apply_succeeded_intent(self.locker.get_booking(booking_id), intent)

    def _apply_succeeded_intent(self, booking: Booking, intent: dict[str, Any]) -> Booking:
        intent_id = intent["id"]
        status = intent.get("status")
        if status != "succeeded":
            raise BookingError(
                ErrorCode.PAYMENT_NOT_SUCCEEDED,
                {"payment_intent_id": intent_id, "status": str(status)},
            )

        metadata_booking = (intent.get("metadata") or {}).get("booking_id")
        if metadata_booking and metadata_booking != booking.booking_id:
            raise BookingError(
                ErrorCode.PAYMENT_VERIFICATION_FAILED,
                {"payment_intent_id": intent_id, "booking_id": booking.booking_id},
            )

        existing = self.ledger.get_payment_by_external_id(intent_id)
        # Confirmed once already; it may have been canceled or refunded since
        if existing is not None and booking.confirmed_at is not None:
            log_payment_operation(
                logger,
                "process_payment_success",
                payment_id=existing.payment_id,
                booking_id=booking.booking_id,
                status="duplicate",
            )
            return booking

        amount = intent_amount(intent)
        if amount != booking.total_price:
            logger.error(
                "PaymentIntent %s amount %s does not match booking %s total %s",
                intent_id,
                amount,
                booking.booking_id,
                booking.total_price,
            )
            raise BookingError(
                ErrorCode.PAYMENT_AMOUNT_MISMATCH,
                {
                    "booking_id": booking.booking_id,
                    "expected": str(booking.total_price),
                    "received": str(amount),
                },
            )

        instrument = extract_instrument(intent)
        self.sync_payment_method(booking.user_id, instrument)

        posted = self.ledger.post_payment(
            user_id=booking.user_id,
            amount=amount,
            entity_type="booking",
            entity_id=booking.booking_id,
            external_payment_id=intent_id,
            fee=extract_fee(intent, amount),
            payment_method_id=instrument_id(instrument),
            property=booking.property,
            description=f"Booking {booking.reference}",
        )

        try:
            confirmed = self.locker.confirm_booking(booking.booking_id)
        except BookingError as e:
            current = self.locker.get_booking(booking.booking_id)
            if current.status == BookingStatus.COMPLETE:
                # Confirmed concurrently by the other notification path
                return current
            logger.critical(
                "Payment %s recorded but booking %s could not be confirmed (%s); "
                "manual reconciliation required",
                posted.payment.payment_id,
                booking.booking_id,
                e.code.value,
            )
            raise BookingError(
                ErrorCode.BOOKING_CONFIRMATION_FAILED,
                {
                    "booking_id": booking.booking_id,
                    "payment_id": posted.payment.payment_id,
                    "payment_intent_id": intent_id,
                    "cause": e.code.value,
                },
            ) from e

        log_payment_operation(
            logger,
            "process_payment_success",
            payment_id=posted.payment.payment_id,
            booking_id=booking.booking_id,
            amount_cents=amount.to_cents(),
            status=confirmed.status.value,
        )
        return confirmed

    def sync_payment_method(
        self, user_id: str, instrument: PaymentInstrument
    ) -> PaymentMethodRecord | None:
        """Store the card used for a payment.

        Best-effort: failures are logged and never block confirmation.
        """
        if isinstance(instrument, AbsentInstrument):
            return None

        try:
            if isinstance(instrument, ExpandedInstrument):
                data = instrument.data
            else:
                data = self.stripe.retrieve_payment_method(instrument.payment_method_id)

            card = data.get("card") or {}
            record = PaymentMethodRecord(
                payment_method_id=instrument.payment_method_id,
                user_id=user_id,
                type=str(data.get("type") or "card"),
                brand=card.get("brand"),
                last4=card.get("last4"),
                exp_month=card.get("exp_month"),
                exp_year=card.get("exp_year"),
                updated_at=self.clock(),
            )
            item = {
                "payment_method_id": record.payment_method_id,
                "user_id": record.user_id,
                "type": record.type,
                "brand": record.brand,
                "last4": record.last4,
                "exp_month": record.exp_month,
                "exp_year": record.exp_year,
                "updated_at": to_iso(record.updated_at),
            }
            self.db.put_item(
                self.PAYMENT_METHODS_TABLE,
                {k: v for k, v in item.items() if v is not None},
            )
            return record
        except Exception as e:
            # Secondary metadata only; the payment itself is unaffected
            logger.warning(
                "Failed to sync payment method %s: %s", instrument.payment_method_id, e
            )
            return None

    # Webhooks

    def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        """Verify, de-duplicate and dispatch one Stripe webhook delivery.

        Raises:
            BookingError: INVALID_WEBHOOK_SIGNATURE
        """
        if not signature:
            logger.warning("Webhook request missing Stripe-Signature header")
            raise BookingError(
                ErrorCode.INVALID_WEBHOOK_SIGNATURE,
                {"message": "Missing Stripe-Signature header"},
            )

        try:
            event = self.stripe.verify_webhook_signature(payload, signature)
        except StripeServiceError as e:
            raise BookingError(
                ErrorCode.INVALID_WEBHOOK_SIGNATURE,
                {"message": "Invalid webhook signature"},
            ) from e

        event_id = str(event.get("id"))
        event_type = str(event.get("type"))
        obj = (event.get("data") or {}).get("object") or {}
        log_webhook_event(logger, event_type, event_id, result="received")

        previous = self.db.get_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id})
        if previous and previous.get("processing_result") != WebhookResult.ERROR.value:
            log_webhook_event(logger, event_type, event_id, result=WebhookResult.DUPLICATE.value)
            return WebhookOutcome(
                event_id=event_id,
                event_type=event_type,
                result=WebhookResult.DUPLICATE,
                message="Event already processed",
            )

        if event_type not in HANDLED_EVENT_TYPES:
            logger.info("Unhandled event type %s, skipping", event_type)
            outcome = WebhookOutcome(
                result=WebhookResult.SKIPPED,
                message=f"Event type '{event_type}' not handled",
            )
        elif event_type == "payment_intent.succeeded":
            outcome = self._on_intent_succeeded(obj)
        else:
            outcome = self._on_charge_refunded(obj)
        outcome.event_id = event_id
        outcome.event_type = event_type

        self._record_event(outcome, StripeService.compute_payload_hash(payload))
        log_webhook_event(
            logger,
            event_type,
            event_id,
            booking_id=outcome.booking_id,
            payment_id=outcome.payment_id,
            result=outcome.result.value,
            error=outcome.message if outcome.result == WebhookResult.ERROR else None,
        )
        return outcome

    def _on_intent_succeeded(self, intent: dict[str, Any]) -> WebhookOutcome:
        booking_id = (intent.get("metadata") or {}).get("booking_id")
        intent_id = intent.get("id")
        if not booking_id or not intent_id:
            return WebhookOutcome(
                result=WebhookResult.SKIPPED,
                message="PaymentIntent has no booking_id metadata",
            )

        try:
            self.process_payment_success(booking_id, intent_id)
        except BookingError as e:
            return WebhookOutcome(
                result=WebhookResult.ERROR,
                message=f"{e.code.value}: {e.message}",
                booking_id=booking_id,
            )

        payment = self.ledger.get_payment_by_external_id(intent_id)
        return WebhookOutcome(
            result=WebhookResult.SUCCESS,
            booking_id=booking_id,
            payment_id=payment.payment_id if payment else None,
        )

    def _on_charge_refunded(self, charge: dict[str, Any]) -> WebhookOutcome:
        intent_id = charge.get("payment_intent")
        payment = self.ledger.get_payment_by_external_id(intent_id) if intent_id else None
        if payment is None:
            logger.warning("No payment found for refunded charge %s", charge.get("id"))
            return WebhookOutcome(result=WebhookResult.ERROR, message="Payment not found for refund")

        currency = payment.amount.currency
        listed = (charge.get("refunds") or {}).get("data") or []
        refunds = [r for r in listed if r.get("status") in ("succeeded", "pending")]
        try:
            if refunds:
                for refund in refunds:
                    self.ledger.post_refund(
                        payment=payment,
                        amount=Money.from_cents(int(refund["amount"]), currency),
                        external_refund_id=refund["id"],
                        reason=(refund.get("metadata") or {}).get("reason"),
                    )
                    payment = self.ledger.get_payment(payment.payment_id) or payment
            else:
                # Refund list not included: post the not-yet-recorded difference
                total = Money.from_cents(int(charge.get("amount_refunded") or 0), currency)
                outstanding = total - payment.refunded_amount
                if outstanding.is_positive:
                    self.ledger.post_refund(
                        payment=payment,
                        amount=outstanding,
                        external_refund_id=f"{charge.get('id')}:{total.to_cents()}",
                    )
        except BookingError as e:
            logger.critical("Refund for payment %s not recorded: %s", payment.payment_id, e)
            return WebhookOutcome(
                result=WebhookResult.ERROR,
                message=f"{e.code.value}: {e.message}",
                booking_id=payment.entity_id,
                payment_id=payment.payment_id,
            )

        updated = self.ledger.get_payment(payment.payment_id)
        if updated is not None and updated.refundable_amount.is_zero:
            self.locker.mark_refunded(payment.entity_id)
        return WebhookOutcome(
            result=WebhookResult.SUCCESS,
            booking_id=payment.entity_id,
            payment_id=payment.payment_id,
        )

    def _record_event(self, outcome: WebhookOutcome, payload_hash: str) -> None:
        item: dict[str, Any] = {
            "event_id": outcome.event_id,
            "event_type": outcome.event_type,
            "processed_at": to_iso(self.clock()),
            "payload_hash": payload_hash,
            "processing_result": outcome.result.value,
        }
        if outcome.booking_id:
            item["booking_id"] = outcome.booking_id
        if outcome.payment_id:
            item["payment_id"] = outcome.payment_id
        if outcome.result == WebhookResult.ERROR and outcome.message:
            item["error_message"] = outcome.message

        self.db.put_item(self.WEBHOOK_EVENTS_TABLE, item)


def _is_transient(error: Exception) -> bool:
    if isinstance(error, RetryableError):
        return error.reason in RETRYABLE_REASONS
    if isinstance(error, StripeServiceError):
        return is_stripe_error_retryable(error.stripe_error_code)
    return False
