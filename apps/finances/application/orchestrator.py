"""
Payment Orchestrator

Charges a booking across the configured gateways in order:

    card gateway -> alternate processor -> manual bank transfer

Each gateway gets exactly one attempt, recorded on the payment ledger
before the call and settled (completed or failed) after it. When every
gateway fails, a pending bank transfer is recorded and the renter is
expected to pay manually. Gateway failures never escape; storage failures
always do.

Attempts run one after another in the caller's thread. The attempt
timeout travels with the ChargeRequest and is enforced by the gateway
client, so the next gateway is only tried once the previous call has
really ended.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
from uuid import UUID
import logging

from shared.domain.exceptions import (
    ExternalServiceError,
    NotFound,
    PaymentError,
    StorageError,
    ValidationError,
)
from shared.domain.value_objects import quantize
from shared.infrastructure.identifiers import IdGenerator, coerce_uuid
from apps.bookings.domain.entities import Booking, BookingStatus
from apps.finances.application.ledger import PaymentLedger, coerce_enum
from apps.finances.domain.entities import Payment, PaymentMethod
from apps.finances.gateways import BankTransferGateway, ChargeRequest, GatewayResult, PaymentGateway

logger = logging.getLogger(__name__)

CHARGEABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

DEFAULT_ATTEMPT_TIMEOUT = 10.0


@dataclass
class ChargeBookingCommand:
    """Command to collect money for a booking; amount defaults to what is still owed"""
    booking_id: UUID
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    method: PaymentMethod = PaymentMethod.CREDIT_CARD
    payment_details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AttemptRecord:
    gateway: str
    correlation_id: str
    payment_id: UUID
    succeeded: bool
    failure_reason: str = ''


@dataclass
class ChargeOutcome:
    booking_id: UUID
    payment: Payment
    attempts: List[AttemptRecord] = field(default_factory=list)
    manual: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.manual

    def to_dict(self) -> dict:
        return {
            'booking_id': str(self.booking_id),
            'payment_id': str(self.payment.id),
            'transaction_id': self.payment.transaction_id,
            'status': self.payment.status.value,
            'gateway': self.payment.gateway,
            'manual': self.manual,
            'attempts': [
                {
                    'gateway': a.gateway,
                    'correlation_id': a.correlation_id,
                    'succeeded': a.succeeded,
                    'failure_reason': a.failure_reason,
                }
                for a in self.attempts
            ],
        }


class PaymentOrchestrator:
    """Handler for ChargeBookingCommand"""

    def __init__(
        self,
        uow_factory: Callable,
        ledger: PaymentLedger,
        gateways: Sequence[PaymentGateway],
        bank: Optional[BankTransferGateway] = None,
        *,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        ids: Optional[IdGenerator] = None,
    ):
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.gateways = list(gateways)
        self.bank = bank or BankTransferGateway()
        self.attempt_timeout = attempt_timeout
        self.ids = ids or IdGenerator()

    def handle(self, command: ChargeBookingCommand) -> ChargeOutcome:
        return self.charge(command)

    def _prepare(self, command: ChargeBookingCommand):
        booking_id = coerce_uuid(command.booking_id, 'booking_id')
        method = coerce_enum(PaymentMethod, command.method, 'method')

        with self.uow_factory() as uow:
            booking: Booking = uow.bookings.get(booking_id)
            if booking is None:
                raise NotFound(f"Booking {booking_id} not found", booking_id=str(booking_id))
            booking.require_status(*CHARGEABLE_STATUSES, action='charge')

            if command.amount is None:
                amount = self.ledger.outstanding_within(uow, booking)
            else:
                amount = quantize(command.amount)

        if amount <= 0:
            raise ValidationError(
                f"Nothing to charge for booking {booking.booking_number}",
                booking_id=str(booking_id),
                amount=str(amount),
            )
        currency = command.currency or booking.currency
        return booking, method, amount, currency

    def _call(self, gateway: PaymentGateway, request: ChargeRequest) -> GatewayResult:
        """Run one attempt; anything but a storage failure becomes a PaymentError"""
        try:
            return gateway.charge(request)
        except (PaymentError, StorageError):
            raise
        except Exception as e:
            logger.exception(f"Gateway {gateway.name} crashed (correlation {request.correlation_id})")
            raise ExternalServiceError(
                f"{gateway.name} failed unexpectedly: {e.__class__.__name__}: {e}",
                gateway=gateway.name,
            ) from e

    def charge(self, command: ChargeBookingCommand) -> ChargeOutcome:
        booking, method, amount, currency = self._prepare(command)
        attempts: List[AttemptRecord] = []

        logger.info(
            f"Charging booking {booking.booking_number}: {amount} {currency}, "
            f"chain {[g.name for g in self.gateways]}"
        )

        for gateway in self.gateways:
            correlation_id = self.ids.correlation_id()
            attempt_method = gateway.method_for(method)
            payment = self.ledger.record_attempt(
                booking.id,
                amount,
                method=attempt_method,
                gateway=gateway.name,
                currency=currency,
                correlation_id=correlation_id,
                description=f"Booking {booking.booking_number}",
            )
            self.ledger.mark_processing(payment.id)

            request = ChargeRequest(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                amount=amount,
                currency=currency,
                correlation_id=correlation_id,
                method=attempt_method,
                payment_details=dict(command.payment_details),
                description=f"Booking {booking.booking_number}",
                timeout=self.attempt_timeout,
            )

            try:
                result = self._call(gateway, request)
            except PaymentError as e:
                reason = str(e) or e.__class__.__name__
                self.ledger.mark_failed(payment.id, reason=reason, gateway_data=e.response)
                attempts.append(AttemptRecord(
                    gateway=gateway.name,
                    correlation_id=correlation_id,
                    payment_id=payment.id,
                    succeeded=False,
                    failure_reason=reason,
                ))
                logger.warning(
                    f"Payment attempt for booking {booking.booking_number} via {gateway.name} failed "
                    f"(correlation {correlation_id}): {reason}"
                )
                continue

            payment = self.ledger.mark_completed(payment.id, result.as_gateway_data())
            attempts.append(AttemptRecord(
                gateway=gateway.name,
                correlation_id=correlation_id,
                payment_id=payment.id,
                succeeded=True,
            ))
            logger.info(
                f"Booking {booking.booking_number} charged via {gateway.name} "
                f"(correlation {correlation_id}, transaction {payment.transaction_id})"
            )
            return ChargeOutcome(booking_id=booking.id, payment=payment, attempts=attempts)

        return self._fall_back_to_transfer(booking, amount, currency, attempts)

    def _fall_back_to_transfer(self, booking: Booking, amount: Decimal, currency: str,
                               attempts: List[AttemptRecord]) -> ChargeOutcome:
        correlation_id = self.ids.correlation_id()
        payment = self.ledger.record_attempt(
            booking.id,
            amount,
            method=PaymentMethod.BANK_TRANSFER,
            gateway=self.bank.name,
            currency=currency,
            correlation_id=correlation_id,
            description=f"Bank transfer for booking {booking.booking_number}",
            gateway_response=self.bank.instructions(booking.booking_number, amount, currency),
        )
        logger.warning(
            f"All {len(attempts)} gateway attempts failed for booking {booking.booking_number}; "
            f"awaiting bank transfer {payment.transaction_id} (correlation {correlation_id})"
        )
        return ChargeOutcome(booking_id=booking.id, payment=payment, attempts=attempts, manual=True)
