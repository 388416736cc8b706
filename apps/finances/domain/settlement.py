"""
Booking payment status derivation

The booking's payment_status is a pure function of its payment records and
its total. Nothing else may decide it.

    paid     = sum of settled PAYMENT amounts
    refunded = |sum of completed REFUND amounts|
    net      = paid - refunded

A PAYMENT entry counts as settled once the gateway completed it, including
after refunds were taken against it (PARTIALLY_REFUNDED / REFUNDED): the
refund records carry the credit back.

    no settled entries   -> FAILED if some attempt failed and none is open,
                            otherwise PENDING
    net <= 0             -> REFUNDED
    net >= total         -> PAID
    otherwise            -> PARTIAL
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from apps.bookings.domain.entities import PaymentStatus
from apps.finances.domain.entities import (
    OPEN_STATUSES,
    Payment,
    PaymentType,
    TransactionStatus,
)

SETTLED_CHARGE_STATUSES = frozenset({
    TransactionStatus.COMPLETED,
    TransactionStatus.PARTIALLY_REFUNDED,
    TransactionStatus.REFUNDED,
})


@dataclass(frozen=True)
class Settlement:
    paid: Decimal
    refunded: Decimal
    has_settled_entries: bool
    has_failed_attempts: bool
    has_open_attempts: bool

    @property
    def net(self) -> Decimal:
        return self.paid - self.refunded


def summarize(payments: Iterable[Payment]) -> Settlement:
    paid = Decimal('0.00')
    refunded = Decimal('0.00')
    settled = failed = open_ = False

    for p in payments:
        if p.type is PaymentType.PAYMENT:
            if p.status in SETTLED_CHARGE_STATUSES:
                paid += p.amount
                settled = True
            elif p.status is TransactionStatus.FAILED:
                failed = True
            elif p.status in OPEN_STATUSES:
                open_ = True
        elif p.type is PaymentType.REFUND and p.status is TransactionStatus.COMPLETED:
            refunded += abs(p.amount)
            settled = True

    return Settlement(
        paid=paid,
        refunded=refunded,
        has_settled_entries=settled,
        has_failed_attempts=failed,
        has_open_attempts=open_,
    )


def derive_payment_status(payments: Iterable[Payment], booking_total: Decimal) -> PaymentStatus:
    s = summarize(payments)

    if not s.has_settled_entries:
        if s.has_failed_attempts and not s.has_open_attempts:
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING
    if s.net <= 0:
        return PaymentStatus.REFUNDED
    if s.net >= booking_total:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


def outstanding_balance(payments: Iterable[Payment], booking_total: Decimal) -> Decimal:
    """What the renter still owes, never negative"""
    return max(Decimal('0.00'), booking_total - summarize(payments).net)
