"""Payment query parameters accepted by payment repositories."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from shared.domain.exceptions import ValidationError
from apps.finances.domain.entities import Payment, PaymentType, TransactionStatus


def _coerce(values, enum_cls: type[Enum]) -> frozenset:
    result = set()
    for value in values or ():
        if isinstance(value, enum_cls):
            result.add(value)
            continue
        try:
            result.add(enum_cls(value))
        except ValueError as e:
            raise ValidationError(f"Unknown {enum_cls.__name__}: {value!r}") from e
    return frozenset(result)


@dataclass(frozen=True)
class PaymentQuery:
    booking_id: UUID | None = None
    types: frozenset = field(default_factory=frozenset)
    statuses: frozenset = field(default_factory=frozenset)
    gateway: str | None = None
    original_payment_id: UUID | None = None

    def __post_init__(self):
        object.__setattr__(self, 'types', _coerce(self.types, PaymentType))
        object.__setattr__(self, 'statuses', _coerce(self.statuses, TransactionStatus))

    def matches(self, payment: Payment) -> bool:
        if self.booking_id is not None and payment.booking_id != self.booking_id:
            return False
        if self.types and payment.type not in self.types:
            return False
        if self.statuses and payment.status not in self.statuses:
            return False
        if self.gateway is not None and payment.gateway != self.gateway:
            return False
        if self.original_payment_id is not None and payment.original_payment_id != self.original_payment_id:
            return False
        return True
