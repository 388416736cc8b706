"""
Payment repositories

Same contract as the booking repositories: detached copies out, explicit
save() in, usable only inside the unit of work that created them.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from apps.finances.domain.entities import Payment, PaymentMethod, PaymentType, TransactionStatus
from apps.finances.domain.queries import PaymentQuery

TABLE = 'payments'


class PaymentRepository(ABC):

    @abstractmethod
    def get(self, payment_id: UUID, lock: bool = False) -> Optional[Payment]:
        pass

    @abstractmethod
    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    def save(self, payment: Payment):
        pass

    @abstractmethod
    def find(self, query: PaymentQuery) -> List[Payment]:
        """Payments matching the query, oldest first"""

    def transaction_id_exists(self, transaction_id: str) -> bool:
        return self.get_by_transaction_id(transaction_id) is not None

    def for_booking(self, booking_id: UUID) -> List[Payment]:
        return self.find(PaymentQuery(booking_id=booking_id))


# ===== Django =====

def payment_to_domain(model) -> Payment:
    return Payment(
        id=model.id,
        created_at=model.created_at,
        updated_at=model.updated_at,
        transaction_id=model.transaction_id,
        booking_id=model.booking_id,
        amount=model.amount,
        currency=model.currency,
        type=PaymentType(model.type),
        status=TransactionStatus(model.status),
        method=PaymentMethod(model.method),
        gateway=model.gateway,
        correlation_id=model.correlation_id,
        gateway_transaction_id=model.gateway_transaction_id,
        gateway_payment_id=model.gateway_payment_id,
        gateway_response=model.gateway_response or {},
        failure_reason=model.failure_reason,
        commission_amount=model.commission_amount,
        net_amount=model.net_amount,
        refunded_amount=model.refunded_amount,
        original_payment_id=model.original_payment_id,
        description=model.description,
        paid_at=model.paid_at,
        failed_at=model.failed_at,
        refunded_at=model.refunded_at,
    )


def payment_to_row(payment: Payment) -> dict:
    return {
        'transaction_id': payment.transaction_id,
        'booking_id': payment.booking_id,
        'amount': payment.amount,
        'currency': payment.currency,
        'type': payment.type.value,
        'status': payment.status.value,
        'method': payment.method.value,
        'gateway': payment.gateway,
        'correlation_id': payment.correlation_id,
        'gateway_transaction_id': payment.gateway_transaction_id,
        'gateway_payment_id': payment.gateway_payment_id,
        'gateway_response': payment.gateway_response,
        'failure_reason': payment.failure_reason,
        'commission_amount': payment.commission_amount,
        'net_amount': payment.net_amount,
        'refunded_amount': payment.refunded_amount,
        'original_payment_id': payment.original_payment_id,
        'description': payment.description,
        'paid_at': payment.paid_at,
        'failed_at': payment.failed_at,
        'refunded_at': payment.refunded_at,
        'created_at': payment.created_at,
        'updated_at': payment.updated_at,
    }


class DjangoPaymentRepository(PaymentRepository):

    def __init__(self):
        from apps.finances.models import Payment as PaymentModel

        self.model = PaymentModel

    def get(self, payment_id: UUID, lock: bool = False) -> Optional[Payment]:
        qs = self.model.objects.all()
        if lock:
            qs = qs.select_for_update()
        instance = qs.filter(pk=payment_id).first()
        return payment_to_domain(instance) if instance else None

    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        instance = self.model.objects.filter(transaction_id=transaction_id).first()
        return payment_to_domain(instance) if instance else None

    def transaction_id_exists(self, transaction_id: str) -> bool:
        return self.model.objects.filter(transaction_id=transaction_id).exists()

    def save(self, payment: Payment):
        self.model.objects.update_or_create(pk=payment.id, defaults=payment_to_row(payment))

    def find(self, query: PaymentQuery) -> List[Payment]:
        qs = self.model.objects.all()
        if query.booking_id is not None:
            qs = qs.filter(booking_id=query.booking_id)
        if query.types:
            qs = qs.filter(type__in=[t.value for t in query.types])
        if query.statuses:
            qs = qs.filter(status__in=[s.value for s in query.statuses])
        if query.gateway is not None:
            qs = qs.filter(gateway=query.gateway)
        if query.original_payment_id is not None:
            qs = qs.filter(original_payment_id=query.original_payment_id)
        return [payment_to_domain(m) for m in qs.order_by('created_at', 'transaction_id')]


# ===== In-memory =====

class InMemoryPaymentRepository(PaymentRepository):

    def __init__(self, uow):
        self.uow = uow

    def get(self, payment_id: UUID, lock: bool = False) -> Optional[Payment]:
        # Payment writes serialize on the booking lock, taken by the ledger
        return self.uow.read(TABLE, payment_id)

    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        for payment in self.uow.read_all(TABLE):
            if payment.transaction_id == transaction_id:
                return payment
        return None

    def save(self, payment: Payment):
        self.uow.stage(TABLE, payment.id, payment)

    def find(self, query: PaymentQuery) -> List[Payment]:
        matches = [p for p in self.uow.read_all(TABLE) if query.matches(p)]
        matches.sort(key=lambda p: p.created_at)
        return matches
