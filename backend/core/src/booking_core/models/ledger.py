"""Payment and double-entry ledger models.

Amounts on entries are always positive; the direction says which side of
the posting they sit on. signed_amount (debit positive, credit negative)
sums to zero across every transaction.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import AccountType, EntryDirection, PaymentStatus, TransactionType
from .money import Money
from .refund import Refund


class LedgerAccount(BaseModel):
    """A named account in the chart of accounts."""

    model_config = ConfigDict(strict=True, frozen=True)

    name: str
    account_type: AccountType
    description: str = ""


class LedgerEntry(BaseModel):
    """One side of a posting. Never updated after it is written."""

    model_config = ConfigDict(strict=True, frozen=True)

    entry_id: str
    transaction_id: str
    account: str
    direction: EntryDirection
    amount: Money
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    payment_id: str | None = None
    description: str = ""
    created_at: dt.datetime

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == EntryDirection.DEBIT:
            return self.amount.amount
        return -self.amount.amount


class LedgerTransaction(BaseModel):
    """Groups the balanced entries of one payment or refund."""

    model_config = ConfigDict(strict=True)

    transaction_id: str
    transaction_type: TransactionType
    total_amount: Money
    payment_id: str | None = None
    refund_id: str | None = None
    description: str = ""
    created_at: dt.datetime


class Payment(BaseModel):
    """A successful charge recorded against a booking."""

    model_config = ConfigDict(strict=True)

    payment_id: str = Field(..., description="Unique payment ID")
    reference: str
    user_id: str
    entity_type: str = Field(default="booking")
    entity_id: str = Field(..., description="Booking ID the payment is for")
    amount: Money
    fee: Money
    external_payment_id: str = Field(
        ..., description="Stripe PaymentIntent ID (pi_xxx), unique per payment"
    )
    payment_method_id: str | None = None
    status: PaymentStatus = PaymentStatus.COMPLETED
    refunded_amount: Money
    transaction_id: str
    created_at: dt.datetime

    @property
    def refundable_amount(self) -> Money:
        return self.amount - self.refunded_amount


class PaymentMethodRecord(BaseModel):
    """A payment instrument synced from Stripe for display and reuse."""

    model_config = ConfigDict(strict=True)

    payment_method_id: str
    user_id: str
    type: str
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    updated_at: dt.datetime


class PostedPayment(BaseModel):
    """Everything written by one payment posting.

    created is False when the external payment ID had already been posted
    and the existing records were returned instead.
    """

    model_config = ConfigDict(strict=True)

    payment: Payment
    transaction: LedgerTransaction
    entries: list[LedgerEntry]
    created: bool = True


class PostedRefund(BaseModel):
    model_config = ConfigDict(strict=True)

    refund: Refund
    transaction: LedgerTransaction
    entries: list[LedgerEntry]
    created: bool = True

