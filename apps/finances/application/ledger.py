"""
Payment Ledger

Append-mostly ledger of payment records per booking. Every mutation takes
the booking lock and ends with a recomputation of the booking's
payment_status, in the same unit of work.

Public methods open their own unit of work. The *_within helpers run
inside a unit of work the caller already holds (with the booking locked),
which is how booking cancellation issues refunds atomically.
"""

from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional
import logging

from shared.domain.base import utcnow
from shared.domain.exceptions import (
    InvalidStateTransition,
    NotFound,
    RefundExceedsAvailable,
    ValidationError,
)
from shared.domain.value_objects import SUPPORTED_CURRENCIES, quantize, to_decimal
from shared.infrastructure.identifiers import IdGenerator, allocate_unique, coerce_uuid
from apps.bookings.domain.entities import Booking, PaymentStatus
from apps.finances.domain.entities import (
    REFUNDABLE_STATUSES,
    Payment,
    PaymentMethod,
    PaymentType,
    TransactionStatus,
)
from apps.finances.domain.events import PaymentRefunded
from apps.finances.domain.queries import PaymentQuery
from apps.finances.domain.settlement import derive_payment_status, outstanding_balance

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_RATE = Decimal('0.03')


def coerce_enum(enum_cls: type[Enum], value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Unknown {name}: {value!r}", **{name: str(value)}) from e


class PaymentLedger:
    """
    Records payment attempts and refunds and keeps the booking's
    payment_status derived from them.
    """

    def __init__(
        self,
        uow_factory: Callable,
        *,
        clock: Callable = utcnow,
        ids: Optional[IdGenerator] = None,
        commission_rate=DEFAULT_COMMISSION_RATE,
    ):
        self.uow_factory = uow_factory
        self.clock = clock
        self.ids = ids or IdGenerator()
        self.commission_rate = to_decimal(commission_rate)

    # ===== Helpers =====

    def _locked_booking(self, uow, booking_id) -> Booking:
        booking_id = coerce_uuid(booking_id, 'booking_id')
        booking = uow.bookings.get(booking_id, lock=True)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found", booking_id=str(booking_id))
        return booking

    def _load_for_write(self, uow, payment_id):
        """Lock the owning booking first, then re-read the payment under it"""
        payment_id = coerce_uuid(payment_id, 'payment_id')
        payment = uow.payments.get(payment_id)
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found", payment_id=str(payment_id))
        booking = self._locked_booking(uow, payment.booking_id)
        payment = uow.payments.get(payment_id, lock=True)
        return booking, payment

    def _allocate_transaction_id(self, uow, at) -> str:
        return allocate_unique(
            lambda: self.ids.transaction_id(at),
            uow.payments.transaction_id_exists,
        )

    def _save(self, uow, *aggregates):
        for aggregate in aggregates:
            uow.collect_events(aggregate)
            if isinstance(aggregate, Payment):
                uow.payments.save(aggregate)
            else:
                uow.bookings.save(aggregate)

    # ===== Writes =====

    def record_attempt(
        self,
        booking_id,
        amount,
        method=PaymentMethod.CREDIT_CARD,
        gateway: str = 'manual',
        type=PaymentType.PAYMENT,
        currency: Optional[str] = None,
        correlation_id: str = '',
        description: str = '',
        gateway_response: Optional[dict] = None,
    ) -> Payment:
        """Write a pending ledger entry for the booking"""
        with self.uow_factory() as uow:
            booking = self._locked_booking(uow, booking_id)
            payment = self.record_within(
                uow, booking, amount,
                method=method,
                gateway=gateway,
                type=type,
                currency=currency,
                correlation_id=correlation_id,
                description=description,
                gateway_response=gateway_response,
            )
            self.recompute_within(uow, booking)

        logger.info(
            f"Recorded {payment.type.value} {payment.transaction_id} for booking "
            f"{booking.booking_number}: {payment.amount} {payment.currency} via {payment.gateway}"
        )
        return payment

    def record_within(
        self,
        uow,
        booking: Booking,
        amount,
        *,
        method=PaymentMethod.CREDIT_CARD,
        gateway: str = 'manual',
        type=PaymentType.PAYMENT,
        currency: Optional[str] = None,
        correlation_id: str = '',
        description: str = '',
        gateway_response: Optional[dict] = None,
    ) -> Payment:
        method = coerce_enum(PaymentMethod, method, 'method')
        type = coerce_enum(PaymentType, type, 'type')
        if type is PaymentType.REFUND:
            raise ValidationError("Refunds are issued through refund(), not recorded directly")

        amount = quantize(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", amount=str(amount))

        currency = currency or booking.currency
        if currency not in SUPPORTED_CURRENCIES:
            raise ValidationError(f"Unsupported currency: {currency}", currency=currency)
        if currency != booking.currency:
            raise ValidationError(
                f"Booking {booking.booking_number} is billed in {booking.currency}, not {currency}",
                currency=currency,
            )

        at = self.clock()
        payment = Payment.record(
            commission_rate=self.commission_rate,
            created_at=at,
            updated_at=at,
            transaction_id=self._allocate_transaction_id(uow, at),
            booking_id=booking.id,
            amount=amount,
            currency=currency,
            type=type,
            status=TransactionStatus.PENDING,
            method=method,
            gateway=gateway,
            correlation_id=correlation_id,
            gateway_response=dict(gateway_response or {}),
            description=description,
        )
        self._save(uow, payment)
        return payment

    def mark_processing(self, payment_id) -> Payment:
        with self.uow_factory() as uow:
            booking, payment = self._load_for_write(uow, payment_id)
            payment.mark_processing(self.clock())
            self._save(uow, payment)
            self.recompute_within(uow, booking)
        return payment

    def mark_completed(self, payment_id, gateway_data: Optional[dict] = None) -> Payment:
        """Gateway (or an operator, for bank transfers) confirmed the money arrived"""
        with self.uow_factory() as uow:
            booking, payment = self._load_for_write(uow, payment_id)
            payment.mark_completed(self.clock(), gateway_data)
            self._save(uow, payment)
            self.recompute_within(uow, booking)

        logger.info(f"Payment {payment.transaction_id} completed via {payment.gateway}")
        return payment

    def mark_failed(self, payment_id, reason: str = '', gateway_data: Optional[dict] = None) -> Payment:
        with self.uow_factory() as uow:
            booking, payment = self._load_for_write(uow, payment_id)
            payment.mark_failed(self.clock(), reason, gateway_data)
            self._save(uow, payment)
            self.recompute_within(uow, booking)

        logger.info(f"Payment {payment.transaction_id} failed via {payment.gateway}: {payment.failure_reason}")
        return payment

    def cancel_attempt(self, payment_id, reason: str = '') -> Payment:
        """Withdraw a pending attempt, e.g. a bank transfer that never arrived"""
        with self.uow_factory() as uow:
            booking, payment = self._load_for_write(uow, payment_id)
            payment.cancel(self.clock(), reason)
            self._save(uow, payment)
            self.recompute_within(uow, booking)
        return payment

    def refund(self, payment_id, amount=None, reason: str = '') -> Payment:
        """
        Refund all or part of a completed payment

        Returns the new refund record. Raises RefundExceedsAvailable, with
        nothing written, when amount is larger than what is left.
        """
        with self.uow_factory() as uow:
            booking, payment = self._load_for_write(uow, payment_id)
            refund = self.refund_within(uow, booking, payment, amount, reason)
            self.recompute_within(uow, booking)

        logger.info(
            f"Refunded {abs(refund.amount)} {refund.currency} of payment {payment.transaction_id} "
            f"(booking {booking.booking_number})"
        )
        return refund

    def refund_within(self, uow, booking: Booking, payment: Payment, amount=None, reason: str = '') -> Payment:
        if payment.type is not PaymentType.PAYMENT or payment.status not in REFUNDABLE_STATUSES:
            raise InvalidStateTransition(
                f"Payment {payment.transaction_id} cannot be refunded "
                f"(type {payment.type.value}, status {payment.status.value})",
                payment_id=str(payment.id),
                status=payment.status.value,
            )

        available = payment.refundable_amount
        amount = available if amount is None else quantize(amount)
        if amount <= 0:
            raise ValidationError("Refund amount must be positive", amount=str(amount))
        if amount > available:
            raise RefundExceedsAvailable(
                f"Refund of {amount} exceeds the {available} still refundable on {payment.transaction_id}",
                payment_id=str(payment.id),
                requested=str(amount),
                available=str(available),
            )

        at = self.clock()
        refund = Payment.record(
            commission_rate=self.commission_rate,
            created_at=at,
            updated_at=at,
            transaction_id=self._allocate_transaction_id(uow, at),
            booking_id=payment.booking_id,
            amount=-amount,
            currency=payment.currency,
            type=PaymentType.REFUND,
            status=TransactionStatus.COMPLETED,
            method=payment.method,
            gateway=payment.gateway,
            original_payment_id=payment.id,
            description=reason or f"Refund for {payment.transaction_id}",
            paid_at=at,
        )
        fully_refunded = payment.register_refund(amount, at)
        payment.add_event(PaymentRefunded(
            aggregate_id=payment.id,
            payment_id=payment.id,
            refund_payment_id=refund.id,
            booking_id=payment.booking_id,
            amount=amount,
            fully_refunded=fully_refunded,
        ))

        self._save(uow, payment, refund)
        return refund

    def refund_for_cancellation(self, uow, booking: Booking, amount, at=None) -> Decimal:
        """
        Spread a cancellation refund over the booking's completed payments

        Oldest payment first. The refund is capped by what is still
        refundable; the amount actually refunded is returned.
        """
        remaining = quantize(amount)
        refunded = Decimal('0.00')
        if remaining <= 0:
            return refunded

        payments = uow.payments.find(PaymentQuery(
            booking_id=booking.id,
            types={PaymentType.PAYMENT},
            statuses=REFUNDABLE_STATUSES,
        ))
        for payment in payments:
            if remaining <= 0:
                break
            share = min(remaining, payment.refundable_amount)
            if share <= 0:
                continue
            self.refund_within(uow, booking, payment, share, reason=f"Cancellation of {booking.booking_number}")
            remaining -= share
            refunded += share

        if remaining > 0:
            logger.info(
                f"Booking {booking.booking_number}: {remaining} of the cancellation refund "
                f"exceeded the refundable payments and was not issued"
            )
        self.recompute_within(uow, booking)
        return refunded

    # ===== Derivation =====

    def recompute_booking_payment_status(self, booking_id) -> PaymentStatus:
        """Derive payment_status from the ledger and store it if it changed"""
        with self.uow_factory() as uow:
            booking = self._locked_booking(uow, booking_id)
            return self.recompute_within(uow, booking)

    def recompute_within(self, uow, booking: Booking) -> PaymentStatus:
        payments = uow.payments.find(PaymentQuery(booking_id=booking.id))
        status = derive_payment_status(payments, booking.total_amount.amount)

        old_status = booking.payment_status
        if booking.record_payment_status(status, self.clock()):
            self._save(uow, booking)
            logger.info(
                f"Booking {booking.booking_number} payment status {old_status.value} -> {status.value}"
            )
        return status

    # ===== Reads =====

    def refundable_amount(self, payment_id) -> Decimal:
        payment_id = coerce_uuid(payment_id, 'payment_id')
        with self.uow_factory() as uow:
            payment = uow.payments.get(payment_id)
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found", payment_id=str(payment_id))
        return payment.refundable_amount

    def payments_for(self, query: PaymentQuery) -> List[Payment]:
        with self.uow_factory() as uow:
            return uow.payments.find(query)

    def outstanding_within(self, uow, booking: Booking) -> Decimal:
        payments = uow.payments.find(PaymentQuery(booking_id=booking.id))
        return outstanding_balance(payments, booking.total_amount.amount)

    def get_payment(self, payment_id) -> Payment:
        payment_id = coerce_uuid(payment_id, 'payment_id')
        with self.uow_factory() as uow:
            payment = uow.payments.get(payment_id)
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found", payment_id=str(payment_id))
        return payment
