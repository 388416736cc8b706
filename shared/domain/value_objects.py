"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents non-negative monetary amounts with currency
- TimeRange: Represents a half-open rental interval [start, end)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from shared.domain.base import ValueObject
from shared.domain.exceptions import ValidationError

CENT = Decimal('0.01')

SUPPORTED_CURRENCIES = ('USD', 'EUR', 'GBP', 'KZT')


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to Decimal without float artefacts"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e


def quantize(value) -> Decimal:
    """Round to cents, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a monetary amount with currency.
    Immutable and supports arithmetic operations. Amounts are never negative;
    signed ledger entries (refunds) are plain Decimals on the payment itself.
    """
    amount: Decimal
    currency: str = 'USD'

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))
        # Validation
        if self.amount < 0:
            raise ValidationError("Amount cannot be negative", amount=str(self.amount))
        if not self.currency:
            raise ValidationError("Currency is required")
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValidationError(f"Unsupported currency: {self.currency}")

    @classmethod
    def zero(cls, currency: str = 'USD') -> 'Money':
        return cls(Decimal('0'), currency)

    def _check(self, other: 'Money', op: str):
        if not isinstance(other, Money):
            raise TypeError(f"Can only {op} Money and Money")
        if self.currency != other.currency:
            raise ValidationError(f"Cannot {op} different currencies: {self.currency} and {other.currency}")

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        self._check(other, 'add')
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        """Subtract two money objects"""
        self._check(other, 'subtract')
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply money by a factor"""
        if not isinstance(factor, (int, float, Decimal)):
            raise TypeError("Can only multiply Money by number")
        return Money(self.amount * to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __lt__(self, other: 'Money') -> bool:
        self._check(other, 'compare')
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other, 'compare')
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other, 'compare')
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other, 'compare')
        return self.amount >= other.amount

    def rounded(self) -> 'Money':
        return Money(quantize(self.amount), self.currency)

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class TimeRange(ValueObject):
    """
    Rental interval value object

    Represents a range from start (inclusive) to end (exclusive).
    Used for booking periods and availability checks.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start is None or self.end is None:
            raise ValidationError("Start and end are required")
        if (self.start.tzinfo is None) != (self.end.tzinfo is None):
            raise ValidationError("Start and end must both be timezone-aware or both naive")
        if self.end <= self.start:
            raise ValidationError(
                f"End ({self.end.isoformat()}) must be after start ({self.start.isoformat()})"
            )

    def overlaps_with(self, other: 'TimeRange') -> bool:
        """
        Check if this range overlaps with another

        end is exclusive, so a range ending exactly when the other starts
        does not overlap it.

        Examples:
            - [10:00, 12:00) overlaps with [11:00, 13:00) -> True
            - [10:00, 12:00) overlaps with [12:00, 14:00) -> False (adjacent)
        """
        if not isinstance(other, TimeRange):
            raise TypeError("Can only check overlap with another TimeRange")

        # Overlap formula: start1 < end2 AND start2 < end1
        return self.start < other.end and other.start < self.end

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def expanded(self, before: timedelta, after: timedelta) -> 'TimeRange':
        return TimeRange(self.start - before, self.end + after)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self):
        return f"{self.start.isoformat()} - {self.end.isoformat()}"
