"""
Payment Domain Events

Published after the unit of work that produced them commits.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class PaymentRecorded(DomainEvent):
    """A payment attempt (or manual transfer) was written to the ledger"""
    payment_id: UUID
    booking_id: UUID
    transaction_id: str
    amount: Decimal
    gateway: str
    payment_type: str


@dataclass(kw_only=True)
class PaymentCompleted(DomainEvent):
    payment_id: UUID
    booking_id: UUID
    amount: Decimal
    gateway: str
    gateway_transaction_id: str = ''


@dataclass(kw_only=True)
class PaymentFailed(DomainEvent):
    payment_id: UUID
    booking_id: UUID
    gateway: str
    reason: str


@dataclass(kw_only=True)
class PaymentRefunded(DomainEvent):
    """
    A refund record was created against an original payment

    amount is positive; the refund record itself carries it negated.
    """
    payment_id: UUID
    refund_payment_id: UUID
    booking_id: UUID
    amount: Decimal
    fully_refunded: bool
