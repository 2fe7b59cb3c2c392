"""Double-entry ledger posting for payments and refunds.

Each posting writes a payment (or refund) row, one ledger transaction, its
entries and an idempotency marker in a single DynamoDB transaction, so
either everything commits or nothing does. The marker key is derived from
the Stripe ID, which makes webhook redeliveries and retried confirmations
return the already-posted records.

Payment posting (gross G, fee F):
    debit  stripe_account            G
    credit {property}_booking_revenue G
    debit  stripe_fees               F   (only when F > 0)
    credit stripe_account            F   (only when F > 0)

Refund posting (amount R):
    debit  refund_expense  R
    credit stripe_account  R
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from booking_core.models import (
    AccountType,
    BookingError,
    EntryDirection,
    ErrorCode,
    LedgerAccount,
    LedgerEntry,
    LedgerTransaction,
    Money,
    Payment,
    PaymentStatus,
    PostedPayment,
    PostedRefund,
    Property,
    Refund,
    TransactionType,
)
from booking_core.utils.clock import Clock, from_iso, to_iso, utc_now
from booking_core.utils.logging import get_logger, log_payment_operation
from booking_core.utils.reference import PAYMENT_PREFIX, REFUND_PREFIX, generate_reference

from .dynamodb import TransactionCancelled

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

STRIPE_ACCOUNT = "stripe_account"
STRIPE_FEES_ACCOUNT = "stripe_fees"
REFUND_EXPENSE_ACCOUNT = "refund_expense"

# Stripe's standard card pricing, used when the balance transaction is not available
ESTIMATED_FEE_PERCENT = Decimal("2.9")
ESTIMATED_FEE_FIXED_CENTS = 30


def revenue_account(property: Property) -> str:
    return f"{property.value}_booking_revenue"


CHART_OF_ACCOUNTS: dict[str, LedgerAccount] = {
    STRIPE_ACCOUNT: LedgerAccount(
        name=STRIPE_ACCOUNT,
        account_type=AccountType.ASSET,
        description="Funds held by Stripe pending payout",
    ),
    STRIPE_FEES_ACCOUNT: LedgerAccount(
        name=STRIPE_FEES_ACCOUNT,
        account_type=AccountType.EXPENSE,
        description="Stripe processing fees",
    ),
    REFUND_EXPENSE_ACCOUNT: LedgerAccount(
        name=REFUND_EXPENSE_ACCOUNT,
        account_type=AccountType.EXPENSE,
        description="Refunds issued to guests",
    ),
    **{
        revenue_account(p): LedgerAccount(
            name=revenue_account(p),
            account_type=AccountType.REVENUE,
            description=f"Booking revenue for {p.value}",
        )
        for p in Property
    },
}


def estimate_processing_fee(amount: Money) -> Money:
    """Estimate Stripe's fee as 2.9% + 30 cents of the gross amount."""
    return amount.percentage(ESTIMATED_FEE_PERCENT) + Money.from_cents(
        ESTIMATED_FEE_FIXED_CENTS, amount.currency
    )


def transaction_balance(entries: list[LedgerEntry]) -> Decimal:
    """Sum of signed entry amounts (debits positive); zero when balanced."""
    return sum((e.signed_amount for e in entries), Decimal(0))


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16].upper()}"


class LedgerService:
    """Posts and reads payments, refunds and ledger entries."""

    PAYMENTS_TABLE = "payments"
    REFUNDS_TABLE = "refunds"
    TRANSACTIONS_TABLE = "ledger-transactions"
    ENTRIES_TABLE = "ledger-entries"
    IDEMPOTENCY_TABLE = "ledger-idempotency"

    def __init__(self, db: "DynamoDBService", clock: Clock = utc_now) -> None:
        """Initialize ledger service.

        Args:
            db: DynamoDB service instance
            clock: Source of the current time
        """
        self.db = db
        self.clock = clock

    # Posting

    def post_payment(
        self,
        *,
        user_id: str,
        amount: Money,
        entity_type: str,
        entity_id: str,
        external_payment_id: str,
        fee: Money | None = None,
        payment_method_id: str | None = None,
        property: Property,
        description: str = "",
    ) -> PostedPayment:
        """Record a successful payment with balanced ledger entries.

        Idempotent on external_payment_id: a second call returns the
        records written by the first with created=False.

        Args:
            user_id: Paying user
            amount: Gross amount charged
            entity_type: Kind of entity paid for ("booking")
            entity_id: ID of that entity
            external_payment_id: Stripe PaymentIntent ID
            fee: Processing fee (zero when None)
            payment_method_id: Stripe PaymentMethod ID if known
            property: Property whose revenue account is credited
            description: Free-text description for the transaction

        Returns:
            PostedPayment with the payment, transaction and entries

        Raises:
            BookingError: LEDGER_UNBALANCED if entries would not balance
        """
        existing = self.get_posted_payment(external_payment_id)
        if existing is not None:
            log_payment_operation(
                logger,
                "post_payment",
                payment_id=existing.payment.payment_id,
                booking_id=entity_id,
                status="duplicate",
                external_payment_id=external_payment_id,
            )
            return existing

        fee = fee if fee is not None else Money.zero(amount.currency)
        now = self.clock()
        payment_id = _new_id("PAY")
        transaction_id = _new_id("TXN")

        payment = Payment(
            payment_id=payment_id,
            reference=generate_reference(PAYMENT_PREFIX, now.date()),
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            amount=amount,
            fee=fee,
            external_payment_id=external_payment_id,
            payment_method_id=payment_method_id,
            status=PaymentStatus.COMPLETED,
            refunded_amount=Money.zero(amount.currency),
            transaction_id=transaction_id,
            created_at=now,
        )
        transaction = LedgerTransaction(
            transaction_id=transaction_id,
            transaction_type=TransactionType.PAYMENT,
            total_amount=amount,
            payment_id=payment_id,
            description=description or f"Payment for {entity_type} {entity_id}",
            created_at=now,
        )

        pairs = [
            (STRIPE_ACCOUNT, revenue_account(property), amount, "Booking payment"),
        ]
        if fee.is_positive:
            pairs.append((STRIPE_FEES_ACCOUNT, STRIPE_ACCOUNT, fee, "Stripe processing fee"))

        entries = self._build_entries(
            transaction_id, pairs, entity_type, entity_id, payment_id, now
        )
        self._ensure_balanced(transaction_id, entries)

        items = [
            self._marker_put(f"payment#{external_payment_id}", "payment", payment_id, now),
            self.db.tx_put(
                self.PAYMENTS_TABLE,
                self._payment_to_item(payment),
                condition_expression="attribute_not_exists(payment_id)",
            ),
            self.db.tx_put(self.TRANSACTIONS_TABLE, self._transaction_to_item(transaction)),
            *[self.db.tx_put(self.ENTRIES_TABLE, self._entry_to_item(e)) for e in entries],
        ]

        try:
            self.db.transact_write_or_raise(items)
        except TransactionCancelled:
            # Lost a race with a concurrent post of the same external ID
            existing = self.get_posted_payment(external_payment_id)
            if existing is not None:
                return existing
            raise

        log_payment_operation(
            logger,
            "post_payment",
            payment_id=payment_id,
            booking_id=entity_id,
            amount_cents=amount.to_cents(),
            status=PaymentStatus.COMPLETED.value,
            fee_cents=fee.to_cents(),
            external_payment_id=external_payment_id,
        )
        return PostedPayment(payment=payment, transaction=transaction, entries=entries)

    def post_refund(
        self,
        *,
        payment: Payment,
        amount: Money,
        external_refund_id: str,
        reason: str | None = None,
    ) -> PostedRefund:
        """Record a refund against a payment.

        Idempotent on external_refund_id. Cumulative refunds can never
        exceed the payment amount; the guard is part of the same atomic
        write that records the refund.

        Raises:
            BookingError: REFUND_EXCEEDS_PAYMENT or LEDGER_UNBALANCED
            ValueError: If amount is not positive
        """
        existing = self.get_posted_refund(external_refund_id)
        if existing is not None:
            return existing

        if not amount.is_positive:
            raise ValueError("Refund amount must be positive")
        if amount > payment.refundable_amount:
            raise BookingError(
                ErrorCode.REFUND_EXCEEDS_PAYMENT,
                {
                    "payment_id": payment.payment_id,
                    "requested": str(amount.amount),
                    "refundable": str(payment.refundable_amount.amount),
                },
            )

        now = self.clock()
        refund_id = _new_id("RFD")
        transaction_id = _new_id("TXN")

        refund = Refund(
            refund_id=refund_id,
            reference=generate_reference(REFUND_PREFIX, now.date()),
            payment_id=payment.payment_id,
            booking_id=payment.entity_id,
            amount=amount,
            reason=reason,
            external_refund_id=external_refund_id,
            transaction_id=transaction_id,
            created_at=now,
        )
        transaction = LedgerTransaction(
            transaction_id=transaction_id,
            transaction_type=TransactionType.REFUND,
            total_amount=amount,
            payment_id=payment.payment_id,
            refund_id=refund_id,
            description=reason or f"Refund for {payment.entity_type} {payment.entity_id}",
            created_at=now,
        )
        entries = self._build_entries(
            transaction_id,
            [(REFUND_EXPENSE_ACCOUNT, STRIPE_ACCOUNT, amount, "Booking refund")],
            payment.entity_type,
            payment.entity_id,
            payment.payment_id,
            now,
        )
        self._ensure_balanced(transaction_id, entries)

        new_refunded = payment.refunded_amount + amount
        new_status = (
            PaymentStatus.REFUNDED
            if new_refunded >= payment.amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        max_before = payment.amount - amount

        items = [
            self._marker_put(f"refund#{external_refund_id}", "refund", refund_id, now),
            self.db.tx_put(self.REFUNDS_TABLE, self._refund_to_item(refund)),
            self.db.tx_put(self.TRANSACTIONS_TABLE, self._transaction_to_item(transaction)),
            *[self.db.tx_put(self.ENTRIES_TABLE, self._entry_to_item(e)) for e in entries],
            self.db.tx_update(
                self.PAYMENTS_TABLE,
                {"payment_id": payment.payment_id},
                "SET refunded_cents = refunded_cents + :amt, #s = :status",
                condition_expression="refunded_cents <= :max_before",
                expression_attribute_names={"#s": "status"},
                expression_attribute_values={
                    ":amt": amount.to_cents(),
                    ":status": new_status.value,
                    ":max_before": max_before.to_cents(),
                },
            ),
        ]

        try:
            self.db.transact_write_or_raise(items)
        except TransactionCancelled as e:
            existing = self.get_posted_refund(external_refund_id)
            if existing is not None:
                return existing
            raise BookingError(
                ErrorCode.REFUND_EXCEEDS_PAYMENT,
                {"payment_id": payment.payment_id, "requested": str(amount.amount)},
            ) from e

        log_payment_operation(
            logger,
            "post_refund",
            payment_id=payment.payment_id,
            booking_id=payment.entity_id,
            amount_cents=amount.to_cents(),
            status=new_status.value,
            external_refund_id=external_refund_id,
        )
        return PostedRefund(refund=refund, transaction=transaction, entries=entries)

    # Reads

    def get_payment(self, payment_id: str) -> Payment | None:
        item = self.db.get_item(self.PAYMENTS_TABLE, {"payment_id": payment_id})
        return self._item_to_payment(item) if item else None

    def get_payment_by_external_id(self, external_payment_id: str) -> Payment | None:
        marker = self._get_marker(f"payment#{external_payment_id}")
        return self.get_payment(marker["record_id"]) if marker else None

    def get_booking_payment(self, booking_id: str) -> Payment | None:
        """Get the payment recorded for a booking, if any."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE, "entity-index", "entity_id", booking_id
        )
        payments = [
            self._item_to_payment(i) for i in items if i.get("entity_type") == "booking"
        ]
        payments.sort(key=lambda p: p.created_at)
        return payments[0] if payments else None

    def get_transaction(self, transaction_id: str) -> LedgerTransaction | None:
        item = self.db.get_item(self.TRANSACTIONS_TABLE, {"transaction_id": transaction_id})
        return self._item_to_transaction(item) if item else None

    def get_transaction_entries(self, transaction_id: str) -> list[LedgerEntry]:
        items = self.db.query_by_gsi(
            self.ENTRIES_TABLE, "transaction-index", "transaction_id", transaction_id
        )
        return [self._item_to_entry(i) for i in items]

    def get_posted_payment(self, external_payment_id: str) -> PostedPayment | None:
        payment = self.get_payment_by_external_id(external_payment_id)
        if payment is None:
            return None
        transaction = self.get_transaction(payment.transaction_id)
        if transaction is None:
            return None
        return PostedPayment(
            payment=payment,
            transaction=transaction,
            entries=self.get_transaction_entries(transaction.transaction_id),
            created=False,
        )

    def get_refund(self, refund_id: str) -> Refund | None:
        item = self.db.get_item(self.REFUNDS_TABLE, {"refund_id": refund_id})
        return self._item_to_refund(item) if item else None

    def list_payment_refunds(self, payment_id: str) -> list[Refund]:
        items = self.db.query_by_gsi(self.REFUNDS_TABLE, "payment-index", "payment_id", payment_id)
        return [self._item_to_refund(i) for i in items]

    def get_posted_refund(self, external_refund_id: str) -> PostedRefund | None:
        marker = self._get_marker(f"refund#{external_refund_id}")
        if marker is None:
            return None
        refund = self.get_refund(marker["record_id"])
        if refund is None:
            return None
        transaction = self.get_transaction(refund.transaction_id)
        if transaction is None:
            return None
        return PostedRefund(
            refund=refund,
            transaction=transaction,
            entries=self.get_transaction_entries(transaction.transaction_id),
            created=False,
        )

    # Audits

    def verify_transaction_balance(self, transaction_id: str) -> bool:
        entries = self.get_transaction_entries(transaction_id)
        return len(entries) >= 2 and transaction_balance(entries) == 0

    def find_unbalanced_transactions(self) -> list[str]:
        """Scan all entries and return IDs of transactions that do not sum to zero."""
        totals: dict[str, Decimal] = {}
        counts: dict[str, int] = {}
        for item in self.db.scan(self.ENTRIES_TABLE):
            entry = self._item_to_entry(item)
            totals[entry.transaction_id] = totals.get(entry.transaction_id, Decimal(0)) + entry.signed_amount
            counts[entry.transaction_id] = counts.get(entry.transaction_id, 0) + 1

        unbalanced = sorted(
            tid for tid, total in totals.items() if total != 0 or counts[tid] < 2
        )
        if unbalanced:
            logger.critical("Unbalanced ledger transactions: %s", ", ".join(unbalanced))
        return unbalanced

    # Helpers

    def _build_entries(
        self,
        transaction_id: str,
        pairs: list[tuple[str, str, Money, str]],
        entity_type: str,
        entity_id: str,
        payment_id: str,
        now: Any,
    ) -> list[LedgerEntry]:
        entries: list[LedgerEntry] = []
        for debit_account, credit_account, amount, description in pairs:
            for account, direction in (
                (debit_account, EntryDirection.DEBIT),
                (credit_account, EntryDirection.CREDIT),
            ):
                entries.append(
                    LedgerEntry(
                        entry_id=_new_id("ENT"),
                        transaction_id=transaction_id,
                        account=account,
                        direction=direction,
                        amount=amount,
                        related_entity_type=entity_type,
                        related_entity_id=entity_id,
                        payment_id=payment_id,
                        description=description,
                        created_at=now,
                    )
                )
        return entries

    def _ensure_balanced(self, transaction_id: str, entries: list[LedgerEntry]) -> None:
        balance = transaction_balance(entries)
        if balance != 0 or len(entries) < 2:
            logger.critical("Refusing to post unbalanced transaction %s (%s)", transaction_id, balance)
            raise BookingError(
                ErrorCode.LEDGER_UNBALANCED,
                {"transaction_id": transaction_id, "balance": str(balance)},
            )

    def _marker_put(self, key: str, record_type: str, record_id: str, now: Any) -> dict[str, Any]:
        return self.db.tx_put(
            self.IDEMPOTENCY_TABLE,
            {
                "idempotency_key": key,
                "record_type": record_type,
                "record_id": record_id,
                "created_at": to_iso(now),
            },
            condition_expression="attribute_not_exists(idempotency_key)",
        )

    def _get_marker(self, key: str) -> dict[str, Any] | None:
        return self.db.get_item(self.IDEMPOTENCY_TABLE, {"idempotency_key": key})

    def _payment_to_item(self, payment: Payment) -> dict[str, Any]:
        item: dict[str, Any] = {
            "payment_id": payment.payment_id,
            "reference": payment.reference,
            "user_id": payment.user_id,
            "entity_type": payment.entity_type,
            "entity_id": payment.entity_id,
            "amount_cents": payment.amount.to_cents(),
            "fee_cents": payment.fee.to_cents(),
            "refunded_cents": payment.refunded_amount.to_cents(),
            "currency": payment.amount.currency,
            "external_payment_id": payment.external_payment_id,
            "status": payment.status.value,
            "transaction_id": payment.transaction_id,
            "created_at": to_iso(payment.created_at),
        }
        if payment.payment_method_id:
            item["payment_method_id"] = payment.payment_method_id
        return item

    def _item_to_payment(self, item: dict[str, Any]) -> Payment:
        currency = item["currency"]
        return Payment(
            payment_id=item["payment_id"],
            reference=item["reference"],
            user_id=item["user_id"],
            entity_type=item["entity_type"],
            entity_id=item["entity_id"],
            amount=Money.from_cents(int(item["amount_cents"]), currency),
            fee=Money.from_cents(int(item["fee_cents"]), currency),
            refunded_amount=Money.from_cents(int(item.get("refunded_cents", 0)), currency),
            external_payment_id=item["external_payment_id"],
            payment_method_id=item.get("payment_method_id"),
            status=PaymentStatus(item["status"]),
            transaction_id=item["transaction_id"],
            created_at=from_iso(item["created_at"]),
        )

    def _transaction_to_item(self, txn: LedgerTransaction) -> dict[str, Any]:
        return {
            "transaction_id": txn.transaction_id,
            "transaction_type": txn.transaction_type.value,
            "total_cents": txn.total_amount.to_cents(),
            "currency": txn.total_amount.currency,
            "payment_id": txn.payment_id,
            "refund_id": txn.refund_id,
            "description": txn.description,
            "created_at": to_iso(txn.created_at),
        }

    def _item_to_transaction(self, item: dict[str, Any]) -> LedgerTransaction:
        return LedgerTransaction(
            transaction_id=item["transaction_id"],
            transaction_type=TransactionType(item["transaction_type"]),
            total_amount=Money.from_cents(int(item["total_cents"]), item["currency"]),
            payment_id=item.get("payment_id"),
            refund_id=item.get("refund_id"),
            description=item.get("description", ""),
            created_at=from_iso(item["created_at"]),
        )

    def _entry_to_item(self, entry: LedgerEntry) -> dict[str, Any]:
        return {
            "entry_id": entry.entry_id,
            "transaction_id": entry.transaction_id,
            "account": entry.account,
            "direction": entry.direction.value,
            "amount_cents": entry.amount.to_cents(),
            "currency": entry.amount.currency,
            "related_entity_type": entry.related_entity_type,
            "related_entity_id": entry.related_entity_id,
            "payment_id": entry.payment_id,
            "description": entry.description,
            "created_at": to_iso(entry.created_at),
        }

    def _item_to_entry(self, item: dict[str, Any]) -> LedgerEntry:
        return LedgerEntry(
            entry_id=item["entry_id"],
            transaction_id=item["transaction_id"],
            account=item["account"],
            direction=EntryDirection(item["direction"]),
            amount=Money.from_cents(int(item["amount_cents"]), item["currency"]),
            related_entity_type=item.get("related_entity_type"),
            related_entity_id=item.get("related_entity_id"),
            payment_id=item.get("payment_id"),
            description=item.get("description", ""),
            created_at=from_iso(item["created_at"]),
        )

    def _refund_to_item(self, refund: Refund) -> dict[str, Any]:
        return {
            "refund_id": refund.refund_id,
            "reference": refund.reference,
            "payment_id": refund.payment_id,
            "booking_id": refund.booking_id,
            "amount_cents": refund.amount.to_cents(),
            "currency": refund.amount.currency,
            "reason": refund.reason,
            "external_refund_id": refund.external_refund_id,
            "transaction_id": refund.transaction_id,
            "created_at": to_iso(refund.created_at),
        }

    def _item_to_refund(self, item: dict[str, Any]) -> Refund:
        return Refund(
            refund_id=item["refund_id"],
            reference=item["reference"],
            payment_id=item["payment_id"],
            booking_id=item.get("booking_id"),
            amount=Money.from_cents(int(item["amount_cents"]), item["currency"]),
            reason=item.get("reason"),
            external_refund_id=item["external_refund_id"],
            transaction_id=item["transaction_id"],
            created_at=from_iso(item["created_at"]),
        )
