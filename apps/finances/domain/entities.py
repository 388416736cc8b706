"""
Payment Domain Entities

A Payment is one signed ledger entry of a booking: charges and deposits are
positive, refunds are negative. Payments never outlive their booking.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from shared.domain.base import Aggregate
from shared.domain.exceptions import InvalidStateTransition, ValidationError
from shared.domain.value_objects import quantize
from apps.finances.domain.events import PaymentCompleted, PaymentFailed, PaymentRecorded


class PaymentType(Enum):
    PAYMENT = 'payment'
    DEPOSIT = 'deposit'
    REFUND = 'refund'
    COMMISSION = 'commission'
    PENALTY = 'penalty'


class TransactionStatus(Enum):
    """
    Payment record status

    - PENDING -> PROCESSING -> COMPLETED | FAILED
    - PENDING -> COMPLETED | FAILED | CANCELLED
    - COMPLETED -> PARTIALLY_REFUNDED -> REFUNDED (through refunds only)
    """
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'
    PARTIALLY_REFUNDED = 'partially_refunded'


class PaymentMethod(Enum):
    CREDIT_CARD = 'credit_card'
    DEBIT_CARD = 'debit_card'
    PAYPAL = 'paypal'
    BANK_TRANSFER = 'bank_transfer'
    CASH = 'cash'
    WALLET = 'wallet'


OPEN_STATUSES = frozenset({TransactionStatus.PENDING, TransactionStatus.PROCESSING})

REFUNDABLE_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.PARTIALLY_REFUNDED})


@dataclass(kw_only=True, eq=False)
class Payment(Aggregate):
    """
    Payment Aggregate Root

    Key invariants:
    - refunds carry a negative amount, every other type a positive one
    - commission is amount x rate for PAYMENT entries and zero otherwise
    - refunded_amount never exceeds amount
    """

    transaction_id: str
    booking_id: UUID
    amount: Decimal
    currency: str = 'USD'
    type: PaymentType = PaymentType.PAYMENT
    status: TransactionStatus = TransactionStatus.PENDING
    method: PaymentMethod = PaymentMethod.CREDIT_CARD
    gateway: str = 'manual'

    # Gateway correlation
    correlation_id: str = ''
    gateway_transaction_id: str = ''
    gateway_payment_id: str = ''
    gateway_response: dict = field(default_factory=dict)
    failure_reason: str = ''

    # Commission split
    commission_amount: Decimal = Decimal('0.00')
    net_amount: Decimal = Decimal('0.00')

    # Refund tracking
    refunded_amount: Decimal = Decimal('0.00')
    original_payment_id: UUID | None = None

    description: str = ''

    paid_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None

    def __post_init__(self):
        super().__post_init__()
        self.amount = quantize(self.amount)
        if self.type is PaymentType.REFUND:
            if self.amount >= 0:
                raise ValidationError("Refund entries must carry a negative amount")
        elif self.amount <= 0:
            raise ValidationError(
                f"{self.type.value} amount must be positive",
                amount=str(self.amount),
            )

    @classmethod
    def record(cls, *, commission_rate: Decimal, **kwargs) -> 'Payment':
        """
        New ledger entry with its commission split computed immediately

        Events: PaymentRecorded
        """
        payment = cls(**kwargs)
        payment.calculate_amounts(commission_rate)
        payment.add_event(PaymentRecorded(
            aggregate_id=payment.id,
            payment_id=payment.id,
            booking_id=payment.booking_id,
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            gateway=payment.gateway,
            payment_type=payment.type.value,
        ))
        return payment

    def calculate_amounts(self, commission_rate: Decimal):
        if self.type is PaymentType.PAYMENT:
            self.commission_amount = quantize(self.amount * commission_rate)
        else:
            # Refunds, deposits, etc. carry no commission
            self.commission_amount = Decimal('0.00')
        self.net_amount = self.amount - self.commission_amount

    def _require_open(self, action: str):
        if self.status not in OPEN_STATUSES:
            raise InvalidStateTransition(
                f"Cannot {action} payment {self.transaction_id} from status {self.status.value}",
                payment_id=str(self.id),
                status=self.status.value,
                action=action,
            )

    def _store_gateway_data(self, gateway_data: dict | None):
        if not gateway_data:
            return
        self.gateway_response = dict(gateway_data)
        if gateway_data.get('transaction_id'):
            self.gateway_transaction_id = str(gateway_data['transaction_id'])
        if gateway_data.get('payment_id'):
            self.gateway_payment_id = str(gateway_data['payment_id'])

    def mark_processing(self, at: datetime):
        if self.status is not TransactionStatus.PENDING:
            raise InvalidStateTransition(
                f"Only pending payments can move to processing, {self.transaction_id} is {self.status.value}",
                payment_id=str(self.id),
                status=self.status.value,
            )
        self.status = TransactionStatus.PROCESSING
        self.touch(at)

    def mark_completed(self, at: datetime, gateway_data: dict | None = None):
        self._require_open('complete')

        self.status = TransactionStatus.COMPLETED
        self.paid_at = at
        self.failure_reason = ''
        self._store_gateway_data(gateway_data)
        self.touch(at)

        self.add_event(PaymentCompleted(
            aggregate_id=self.id,
            payment_id=self.id,
            booking_id=self.booking_id,
            amount=self.amount,
            gateway=self.gateway,
            gateway_transaction_id=self.gateway_transaction_id,
        ))

    def mark_failed(self, at: datetime, reason: str = '', gateway_data: dict | None = None):
        self._require_open('fail')

        self.status = TransactionStatus.FAILED
        self.failed_at = at
        self.failure_reason = reason or 'unknown'
        self._store_gateway_data(gateway_data)
        self.touch(at)

        self.add_event(PaymentFailed(
            aggregate_id=self.id,
            payment_id=self.id,
            booking_id=self.booking_id,
            gateway=self.gateway,
            reason=self.failure_reason,
        ))

    def cancel(self, at: datetime, reason: str = ''):
        """Withdraw an attempt that never reached the gateway (e.g. an unconfirmed transfer)"""
        self._require_open('cancel')
        self.status = TransactionStatus.CANCELLED
        self.failure_reason = reason
        self.touch(at)

    # ===== Refunds =====

    def can_be_refunded(self) -> bool:
        return (
            self.type is PaymentType.PAYMENT
            and self.status in REFUNDABLE_STATUSES
            and self.refunded_amount < self.amount
        )

    @property
    def refundable_amount(self) -> Decimal:
        """Original amount minus what was already refunded against it"""
        if not self.can_be_refunded():
            return Decimal('0.00')
        return self.amount - self.refunded_amount

    def register_refund(self, amount: Decimal, at: datetime) -> bool:
        """
        Account for a refund against this payment

        The caller has checked amount <= refundable_amount. Returns True when
        the payment is now fully refunded.
        """
        self.refunded_amount = quantize(self.refunded_amount + amount)
        self.refunded_at = at
        fully = self.refunded_amount >= self.amount
        self.status = TransactionStatus.REFUNDED if fully else TransactionStatus.PARTIALLY_REFUNDED
        self.touch(at)
        return fully

    @property
    def is_successful(self) -> bool:
        return self.status is TransactionStatus.COMPLETED

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def __str__(self):
        return f"Payment {self.transaction_id} {self.amount} {self.currency} ({self.status.value})"
