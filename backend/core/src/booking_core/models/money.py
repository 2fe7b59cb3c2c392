"""Exact decimal money with an explicit currency tag.

Every amount is quantized to the currency's minor unit with ROUND_HALF_UP at
construction, so any division or percentage that is not exact rounds the
same way everywhere: $10.005 becomes $10.01 and $10.004 becomes $10.00.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .errors import BookingError, ErrorCode

DEFAULT_CURRENCY = "USD"

# Minor unit exponent per ISO 4217 currency; anything unlisted uses 2
MINOR_UNITS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "CAD": 2,
    "JPY": 0,
}


def _quantum(currency: str) -> Decimal:
    return Decimal(1).scaleb(-MINOR_UNITS.get(currency, 2))


class Money(BaseModel):
    """An immutable amount in a single currency."""

    model_config = ConfigDict(frozen=True)

    currency: str = Field(default=DEFAULT_CURRENCY, min_length=3, max_length=3)
    amount: Decimal = Field(..., description="Amount in major units, e.g. 45.00")

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("amount", mode="before")
    @classmethod
    def _reject_float(cls, value: Any) -> Any:
        if isinstance(value, float):
            raise ValueError("Money amounts must not be floats")
        return value

    @field_validator("amount")
    @classmethod
    def _quantize(cls, value: Decimal, info: ValidationInfo) -> Decimal:
        currency = info.data.get("currency", DEFAULT_CURRENCY)
        return value.quantize(_quantum(currency), rounding=ROUND_HALF_UP)

    # Constructors

    @classmethod
    def of(cls, amount: str | int | Decimal, currency: str = DEFAULT_CURRENCY) -> "Money":
        """Build Money from a string, int or Decimal amount."""
        return cls(amount=Decimal(str(amount)), currency=currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(amount=Decimal(0), currency=currency)

    @classmethod
    def from_cents(cls, cents: int, currency: str = DEFAULT_CURRENCY) -> "Money":
        """Build Money from an integer count of minor units."""
        exponent = MINOR_UNITS.get(currency.upper(), 2)
        return cls(amount=Decimal(int(cents)).scaleb(-exponent), currency=currency)

    def to_cents(self) -> int:
        """Amount as an integer count of minor units (Stripe/DynamoDB form)."""
        exponent = MINOR_UNITS.get(self.currency, 2)
        return int(self.amount.scaleb(exponent))

    # Arithmetic

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise BookingError(
                ErrorCode.CURRENCY_MISMATCH,
                {"left": self.currency, "right": other.currency},
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> "Money":
        return Money(amount=-self.amount, currency=self.currency)

    def __mul__(self, factor: int | Decimal) -> "Money":
        if isinstance(factor, float):
            raise TypeError("Money cannot be multiplied by a float")
        return Money(amount=self.amount * Decimal(factor), currency=self.currency)

    __rmul__ = __mul__

    def divide(self, divisor: int | Decimal) -> "Money":
        """Divide and round half-up to the minor unit.

        A zero divisor yields zero rather than raising, which is what the
        per-unit breakdown lines need when a stay has no nights or guests.
        """
        if divisor == 0:
            return Money.zero(self.currency)
        return Money(amount=self.amount / Decimal(divisor), currency=self.currency)

    def percentage(self, percent: int | Decimal) -> "Money":
        """Return ``percent`` percent of this amount (e.g. 50 -> half)."""
        return Money(
            amount=self.amount * Decimal(percent) / Decimal(100),
            currency=self.currency,
        )

    # Comparison

    def _compare_key(self, other: "Money") -> tuple[Decimal, Decimal]:
        self._check_currency(other)
        return self.amount, other.amount

    def __lt__(self, other: "Money") -> bool:
        left, right = self._compare_key(other)
        return left < right

    def __le__(self, other: "Money") -> bool:
        left, right = self._compare_key(other)
        return left <= right

    def __gt__(self, other: "Money") -> bool:
        left, right = self._compare_key(other)
        return left > right

    def __ge__(self, other: "Money") -> bool:
        left, right = self._compare_key(other)
        return left >= right

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


def sum_money(values: list[Money], currency: str = DEFAULT_CURRENCY) -> Money:
    """Sum a list of Money values (zero for an empty list)."""
    total = Money.zero(values[0].currency if values else currency)
    for value in values:
        total = total + value
    return total
