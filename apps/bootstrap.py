"""
Composition root

Builds the message bus, registers the command handlers and event
subscribers, and returns a RentalCore facade exposing every operation.

    core = in_memory_core(vehicles, drivers)           # tests, local runs
    core = get_core()                                  # Django-backed default

    booking = core.create_booking(vehicle_id='v1', renter_id='r1', start=..., end=...)
    core.confirm_booking(booking.id)
    outcome = core.charge(booking.id)
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
import logging
import threading

from django.conf import settings
from django.utils.module_loading import import_string

from shared.application.message_bus import MessageBus
from shared.application.uow import DjangoUnitOfWork, InMemoryStore, InMemoryUnitOfWork
from shared.domain.base import utcnow
from shared.domain.value_objects import Money
from shared.infrastructure.identifiers import IdGenerator
from apps.bookings.application.command_handlers import (
    AssignDriverCommand,
    AssignDriverHandler,
    CancelBookingCommand,
    CancelBookingHandler,
    CompleteBookingCommand,
    CompleteBookingHandler,
    ConfirmBookingCommand,
    ConfirmBookingHandler,
    CreateBookingCommand,
    CreateBookingHandler,
    MarkNoShowCommand,
    MarkNoShowHandler,
    StartTripCommand,
    StartTripHandler,
)
from apps.bookings.application.queries import BookingQueries, ConflictChecker
from apps.bookings.application.subscribers import DriverStatusUpdater, VehicleStatisticsRefresher
from apps.bookings.domain.entities import Booking, DurationUnit, PaymentStatus
from apps.bookings.domain.events import BookingCompleted, BookingStatusChanged
from apps.bookings.domain.policies import CancellationPolicy
from apps.bookings.domain.queries import BookingQuery
from apps.finances.application.ledger import PaymentLedger
from apps.finances.application.orchestrator import ChargeBookingCommand, ChargeOutcome, PaymentOrchestrator
from apps.finances.domain.entities import Payment, PaymentMethod
from apps.finances.domain.queries import PaymentQuery
from apps.finances.gateways import BankTransferGateway, PaymentGateway, build_gateway_chain
from apps.fleet.ports import DriverDirectory, VehicleDirectory

logger = logging.getLogger(__name__)


def _setting(name: str, default):
    return getattr(settings, name, default)


@dataclass
class RentalCore:
    """Facade over the bus, the payment ledger and the read side"""

    bus: MessageBus
    uow_factory: Callable
    ledger: PaymentLedger
    orchestrator: PaymentOrchestrator
    bookings: BookingQueries
    conflicts: ConflictChecker

    def handle(self, command):
        return self.bus.handle_command(command)

    # ===== Booking ledger =====

    def create_booking(self, **kwargs) -> Booking:
        return self.handle(CreateBookingCommand(**kwargs))

    def confirm_booking(self, booking_id) -> Booking:
        return self.handle(ConfirmBookingCommand(booking_id=booking_id))

    def start_trip(self, booking_id, **trip) -> Booking:
        return self.handle(StartTripCommand(booking_id=booking_id, **trip))

    def complete_booking(self, booking_id, **trip) -> Booking:
        return self.handle(CompleteBookingCommand(booking_id=booking_id, **trip))

    def cancel_booking(self, booking_id, reason: str, want_refund: bool = False) -> Booking:
        return self.handle(CancelBookingCommand(booking_id=booking_id, reason=reason, want_refund=want_refund))

    def mark_no_show(self, booking_id) -> Booking:
        return self.handle(MarkNoShowCommand(booking_id=booking_id))

    def assign_driver(self, booking_id, driver_id: str) -> Booking:
        return self.handle(AssignDriverCommand(booking_id=booking_id, driver_id=driver_id))

    # ===== Payments =====

    def charge(self, booking_id, amount=None, currency: Optional[str] = None,
               method=PaymentMethod.CREDIT_CARD, payment_details: Optional[dict] = None) -> ChargeOutcome:
        return self.handle(ChargeBookingCommand(
            booking_id=booking_id,
            amount=amount,
            currency=currency,
            method=method,
            payment_details=payment_details or {},
        ))

    def record_attempt(self, booking_id, amount, **kwargs) -> Payment:
        return self.ledger.record_attempt(booking_id, amount, **kwargs)

    def mark_processing(self, payment_id) -> Payment:
        return self.ledger.mark_processing(payment_id)

    def mark_completed(self, payment_id, gateway_data: Optional[dict] = None) -> Payment:
        return self.ledger.mark_completed(payment_id, gateway_data)

    def mark_failed(self, payment_id, reason: str = '', gateway_data: Optional[dict] = None) -> Payment:
        return self.ledger.mark_failed(payment_id, reason, gateway_data)

    def refund(self, payment_id, amount=None, reason: str = '') -> Payment:
        return self.ledger.refund(payment_id, amount, reason)

    # ===== Reads =====

    def has_conflict(self, vehicle_id: str, start, end, exclude_booking_id=None) -> bool:
        return self.conflicts.has_conflict(vehicle_id, start, end, exclude_booking_id)

    def recompute_booking_payment_status(self, booking_id) -> PaymentStatus:
        return self.ledger.recompute_booking_payment_status(booking_id)

    def refundable_amount(self, payment_id) -> Decimal:
        return self.ledger.refundable_amount(payment_id)

    def get_booking(self, booking_id) -> Booking:
        return self.bookings.get_booking(booking_id)

    def find_bookings(self, query: BookingQuery) -> List[Booking]:
        return self.bookings.find_bookings(query)

    def payments_for(self, query: PaymentQuery) -> List[Payment]:
        return self.ledger.payments_for(query)

    def suggest_price(self, vehicle_id: str, start, end, unit=DurationUnit.DAY) -> Money:
        return self.bookings.suggest_price(vehicle_id, start, end, unit)


def bootstrap(
    make_uow: Callable,
    vehicles: VehicleDirectory,
    drivers: DriverDirectory,
    *,
    gateways: Optional[Sequence[PaymentGateway]] = None,
    bank: Optional[BankTransferGateway] = None,
    policy: Optional[CancellationPolicy] = None,
    clock: Callable = utcnow,
    ids: Optional[IdGenerator] = None,
    tax_rate=None,
    commission_rate=None,
    payment_commission_rate=None,
    attempt_timeout: Optional[float] = None,
) -> RentalCore:
    """
    Wire the core

    make_uow(publish) must return a fresh unit of work that hands committed
    events to publish. Unset rates and timeouts come from Django settings.
    """
    bus = MessageBus()

    def uow_factory():
        return make_uow(bus.publish_events)

    ids = ids or IdGenerator()
    if policy is None:
        policy = CancellationPolicy(deadline_hours=_setting('RENTAL_CANCELLATION_DEADLINE_HOURS', 24))
    if gateways is None:
        gateways = build_gateway_chain()
    if attempt_timeout is None:
        attempt_timeout = float(_setting('PAYMENT_GATEWAY_TIMEOUT', 10))

    ledger = PaymentLedger(
        uow_factory,
        clock=clock,
        ids=ids,
        commission_rate=payment_commission_rate
        if payment_commission_rate is not None else _setting('PAYMENT_COMMISSION_RATE', '0.03'),
    )
    orchestrator = PaymentOrchestrator(
        uow_factory,
        ledger,
        gateways,
        bank or BankTransferGateway.from_settings(),
        attempt_timeout=attempt_timeout,
        ids=ids,
    )

    bus.register_command_handler(CreateBookingCommand, CreateBookingHandler(
        uow_factory,
        vehicles,
        drivers,
        tax_rate=tax_rate if tax_rate is not None else _setting('RENTAL_TAX_RATE', '0.10'),
        commission_rate=commission_rate
        if commission_rate is not None else _setting('RENTAL_COMMISSION_RATE', '0.03'),
        clock=clock,
        ids=ids,
    ).handle)
    bus.register_command_handler(ConfirmBookingCommand, ConfirmBookingHandler(uow_factory, clock=clock).handle)
    bus.register_command_handler(StartTripCommand, StartTripHandler(uow_factory, clock=clock).handle)
    bus.register_command_handler(CompleteBookingCommand, CompleteBookingHandler(uow_factory, clock=clock).handle)
    bus.register_command_handler(CancelBookingCommand, CancelBookingHandler(
        uow_factory, ledger, policy=policy, clock=clock,
    ).handle)
    bus.register_command_handler(MarkNoShowCommand, MarkNoShowHandler(uow_factory, clock=clock).handle)
    bus.register_command_handler(AssignDriverCommand, AssignDriverHandler(
        uow_factory, drivers, clock=clock,
    ).handle)
    bus.register_command_handler(ChargeBookingCommand, orchestrator.handle)

    bus.register_event_handler(BookingStatusChanged, DriverStatusUpdater(drivers))
    bus.register_event_handler(BookingCompleted, VehicleStatisticsRefresher(uow_factory, vehicles))

    logger.debug(f"Rental core wired with gateways {[g.name for g in gateways]}")

    return RentalCore(
        bus=bus,
        uow_factory=uow_factory,
        ledger=ledger,
        orchestrator=orchestrator,
        bookings=BookingQueries(uow_factory, vehicles),
        conflicts=ConflictChecker(uow_factory),
    )


def in_memory_core(vehicles: VehicleDirectory, drivers: DriverDirectory,
                   store: Optional[InMemoryStore] = None, **kwargs) -> RentalCore:
    store = store or InMemoryStore()
    return bootstrap(lambda publish: InMemoryUnitOfWork(store, publish), vehicles, drivers, **kwargs)


def django_core(vehicles: VehicleDirectory, drivers: DriverDirectory, **kwargs) -> RentalCore:
    return bootstrap(lambda publish: DjangoUnitOfWork(publish), vehicles, drivers, **kwargs)


_core: Optional[RentalCore] = None
_core_lock = threading.Lock()


def get_core() -> RentalCore:
    """
    Process-wide Django-backed core

    Directories are loaded from RENTAL_VEHICLE_DIRECTORY and
    RENTAL_DRIVER_DIRECTORY (dotted paths to classes).
    """
    global _core
    with _core_lock:
        if _core is None:
            vehicles = import_string(_setting(
                'RENTAL_VEHICLE_DIRECTORY', 'apps.fleet.memory.InMemoryVehicleDirectory'))()
            drivers = import_string(_setting(
                'RENTAL_DRIVER_DIRECTORY', 'apps.fleet.memory.InMemoryDriverDirectory'))()
            _core = django_core(vehicles, drivers)
            logger.info("Rental core initialised")
        return _core
