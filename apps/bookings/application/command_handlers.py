"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate domain operations within transactions.

Commands:
- CreateBookingCommand: Create a new pending booking
- ConfirmBookingCommand: Confirm a booking, re-checking the vehicle schedule
- StartTripCommand: Hand the vehicle over
- CompleteBookingCommand: Vehicle returned
- CancelBookingCommand: Cancel a booking, optionally refunding per policy
- MarkNoShowCommand: Renter never picked the vehicle up
- AssignDriverCommand: Attach a driver to a booking

Every handler returns the updated Booking or raises a RentalError; a
failed command commits nothing.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID
import logging

from shared.domain.base import utcnow
from shared.domain.exceptions import ConflictError, DriverUnavailable, NotFound, ValidationError
from shared.domain.value_objects import Money, TimeRange, to_decimal
from shared.infrastructure.identifiers import IdGenerator, allocate_unique, coerce_uuid
from apps.bookings.domain.conflicts import VehicleSchedule
from apps.bookings.domain.entities import ACTIVE_STATUSES, Booking, BookingStatus, DurationUnit
from apps.bookings.domain.policies import CancellationPolicy
from apps.bookings.domain.pricing import quote, suggested_price
from apps.bookings.domain.queries import BookingQuery, nearby_bookings_query
from apps.fleet.ports import DriverDirectory, VehicleDirectory

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    """
    Command to create a new booking

    This is the primary entry point for creating bookings.
    """
    vehicle_id: str
    renter_id: str
    start: datetime
    end: datetime
    duration_unit: DurationUnit = DurationUnit.DAY
    discount: Decimal = Decimal('0')
    driver_id: Optional[str] = None
    notes: str = ''
    special_requests: str = ''


@dataclass
class ConfirmBookingCommand:
    booking_id: UUID


@dataclass
class StartTripCommand:
    """Command to hand the vehicle over to the renter"""
    booking_id: UUID
    fuel_level: Optional[Decimal] = None
    odometer: Optional[int] = None
    pickup_location: str = ''


@dataclass
class CompleteBookingCommand:
    """Command to complete a booking (vehicle returned)"""
    booking_id: UUID
    fuel_level: Optional[Decimal] = None
    odometer: Optional[int] = None
    distance: Optional[Decimal] = None
    damage_report: str = ''
    dropoff_location: str = ''


@dataclass
class CancelBookingCommand:
    """Command to cancel a booking"""
    booking_id: UUID
    reason: str
    want_refund: bool = False


@dataclass
class MarkNoShowCommand:
    booking_id: UUID


@dataclass
class AssignDriverCommand:
    booking_id: UUID
    driver_id: str


# ===== Helpers =====

def _load(uow, booking_id, lock: bool = False) -> Booking:
    booking_id = coerce_uuid(booking_id, 'booking_id')
    booking = uow.bookings.get(booking_id, lock=lock)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found", booking_id=str(booking_id))
    return booking


def _schedule(uow, vehicle_id: str, period: TimeRange, exclude_booking_id=None) -> VehicleSchedule:
    """Active bookings of the vehicle overlapping period; call under the vehicle lock"""
    active = uow.bookings.find(BookingQuery(
        vehicle_id=vehicle_id,
        statuses=ACTIVE_STATUSES,
        overlapping=period,
        exclude_booking_id=exclude_booking_id,
    ))
    return VehicleSchedule.from_bookings(vehicle_id, active)


def _save(uow, booking: Booking):
    uow.collect_events(booking)
    uow.bookings.save(booking)


# ===== Command Handlers =====

class CreateBookingHandler:
    """
    Handler for CreateBooking command

    This implements the critical business logic for creating bookings
    with double booking prevention.

    Strategy:
    1. Validate the request and the vehicle outside the transaction
    2. Start the unit of work and take the vehicle lock
    3. Check the vehicle schedule (only confirmed/in_progress bookings block)
    4. Price the booking and compute the advisory suggested price
    5. Allocate a unique booking number
    6. Create the PENDING Booking aggregate, collect events, save
    7. Commit, then publish events
    """

    def __init__(
        self,
        uow_factory: Callable,
        vehicles: VehicleDirectory,
        drivers: Optional[DriverDirectory] = None,
        *,
        tax_rate=Decimal('0.10'),
        commission_rate=Decimal('0.03'),
        clock: Callable = utcnow,
        ids: Optional[IdGenerator] = None,
    ):
        self.uow_factory = uow_factory
        self.vehicles = vehicles
        self.drivers = drivers
        self.tax_rate = to_decimal(tax_rate)
        self.commission_rate = to_decimal(commission_rate)
        self.clock = clock
        self.ids = ids or IdGenerator()

    def _validate(self, command: CreateBookingCommand, at: datetime):
        if not command.vehicle_id:
            raise ValidationError("Vehicle id is required")
        if not command.renter_id:
            raise ValidationError("Renter id is required")
        if command.start is None or command.end is None:
            raise ValidationError("Start and end are required")
        if command.start.tzinfo is None or command.end.tzinfo is None:
            raise ValidationError("Start and end must be timezone-aware")

        period = TimeRange(command.start, command.end)
        if period.start < at:
            raise ValidationError(
                f"Start ({period.start.isoformat()}) is in the past",
                start=period.start.isoformat(),
            )

        try:
            unit = DurationUnit(command.duration_unit)
        except ValueError as e:
            raise ValidationError(f"Unknown duration unit: {command.duration_unit!r}") from e
        return period, unit

    def handle(self, command: CreateBookingCommand) -> Booking:
        """
        Handle booking creation

        Returns: Created Booking aggregate

        Raises:
            ValidationError: malformed request or pricing input
            NotFound: unknown vehicle or driver
            ConflictError: vehicle not operational or already booked
            DriverUnavailable: requested driver cannot be assigned
        """
        at = self.clock()
        period, unit = self._validate(command, at)

        logger.info(
            f"Creating booking for vehicle {command.vehicle_id}, "
            f"renter {command.renter_id}, period {period}"
        )

        vehicle = self.vehicles.get(command.vehicle_id)
        if vehicle is None:
            raise NotFound(f"Vehicle {command.vehicle_id} not found", vehicle_id=command.vehicle_id)
        if not vehicle.is_operational:
            raise ConflictError(
                f"Vehicle {vehicle.id} is not available for rental (status {vehicle.status.value})",
                vehicle_id=vehicle.id,
                status=vehicle.status.value,
            )

        if command.driver_id:
            self._check_driver(command.driver_id)

        with self.uow_factory() as uow:
            # Held until commit so no confirm can slip in between
            uow.lock_vehicle(vehicle.id)
            _schedule(uow, vehicle.id, period).ensure_available(period)

            price = quote(
                vehicle.rates,
                period,
                unit,
                discount=command.discount,
                tax_rate=self.tax_rate,
                commission_rate=self.commission_rate,
            )
            suggestion = suggested_price(
                vehicle.rates,
                period,
                nearby_bookings=uow.bookings.count(nearby_bookings_query(vehicle.id, period)),
                average_rating=vehicle.average_rating,
                total_bookings=vehicle.total_bookings,
                unit=unit,
            )

            booking_number = allocate_unique(
                lambda: self.ids.booking_number(at),
                uow.bookings.number_exists,
            )

            booking = Booking.create(
                created_at=at,
                updated_at=at,
                booking_number=booking_number,
                vehicle_id=vehicle.id,
                renter_id=command.renter_id,
                driver_id=command.driver_id or None,
                period=period,
                duration_unit=unit,
                base_amount=price.base,
                discount_amount=price.discount,
                tax_amount=price.tax,
                commission_amount=price.commission,
                total_amount=price.total,
                suggested_price=suggestion,
                notes=command.notes,
                special_requests=command.special_requests,
            )
            _save(uow, booking)

        logger.info(
            f"Booking created successfully: {booking.booking_number} "
            f"(ID: {booking.id}, total {booking.total_amount})"
        )

        return booking

    def _check_driver(self, driver_id: str):
        if self.drivers is None:
            raise DriverUnavailable("No driver directory configured", driver_id=driver_id)
        driver = self.drivers.get(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found", driver_id=driver_id)
        if not driver.is_assignable:
            raise DriverUnavailable(
                f"Driver {driver_id} is not available (status {driver.status.value})",
                driver_id=driver_id,
                status=driver.status.value,
            )


class ConfirmBookingHandler:
    """
    Handler for confirming a pending booking

    The vehicle schedule is re-checked under the vehicle lock: two pending
    bookings for overlapping periods may both exist, only one can be
    confirmed.
    """

    def __init__(self, uow_factory: Callable, *, clock: Callable = utcnow):
        self.uow_factory = uow_factory
        self.clock = clock

    def handle(self, command: ConfirmBookingCommand) -> Booking:
        logger.info(f"Confirming booking {command.booking_id}")

        with self.uow_factory() as uow:
            # Vehicle lock first, booking lock second
            vehicle_id = _load(uow, command.booking_id).vehicle_id
            uow.lock_vehicle(vehicle_id)
            booking = _load(uow, command.booking_id, lock=True)

            booking.require_status(BookingStatus.PENDING, action='confirm')
            _schedule(uow, booking.vehicle_id, booking.period, booking.id).ensure_available(
                booking.period, exclude_booking_id=booking.id,
            )

            booking.confirm(self.clock())
            _save(uow, booking)
            # Events: BookingStatusChanged, BookingConfirmed

        logger.info(f"Booking {booking.booking_number} confirmed successfully")
        return booking


class StartTripHandler:
    """Handler for handing the vehicle over"""

    def __init__(self, uow_factory: Callable, *, clock: Callable = utcnow):
        self.uow_factory = uow_factory
        self.clock = clock

    def handle(self, command: StartTripCommand) -> Booking:
        logger.info(f"Starting trip for booking {command.booking_id}")

        with self.uow_factory() as uow:
            booking = _load(uow, command.booking_id, lock=True)

            # FSM transition CONFIRMED -> IN_PROGRESS
            booking.start_trip(
                self.clock(),
                fuel_level=command.fuel_level,
                odometer=command.odometer,
                pickup_location=command.pickup_location,
            )
            _save(uow, booking)
            # Events: BookingStatusChanged, BookingTripStarted

        logger.info(f"Booking {booking.booking_number} trip started")
        return booking


class CompleteBookingHandler:
    """Handler for completing booking (vehicle returned)"""

    def __init__(self, uow_factory: Callable, *, clock: Callable = utcnow):
        self.uow_factory = uow_factory
        self.clock = clock

    def handle(self, command: CompleteBookingCommand) -> Booking:
        logger.info(f"Completing booking {command.booking_id}")

        with self.uow_factory() as uow:
            booking = _load(uow, command.booking_id, lock=True)

            # FSM transition IN_PROGRESS -> COMPLETED
            booking.complete(
                self.clock(),
                fuel_level=command.fuel_level,
                odometer=command.odometer,
                distance=command.distance,
                damage_report=command.damage_report,
                dropoff_location=command.dropoff_location,
            )
            _save(uow, booking)
            # Events: BookingStatusChanged, BookingCompleted

        logger.info(f"Booking {booking.booking_number} completed successfully")
        return booking


class CancelBookingHandler:
    """
    Handler for cancelling booking

    With want_refund the policy share of the total is refunded through the
    payment ledger, inside the same unit of work as the status change.
    """

    def __init__(self, uow_factory: Callable, ledger, *,
                 policy: Optional[CancellationPolicy] = None, clock: Callable = utcnow):
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.policy = policy or CancellationPolicy()
        self.clock = clock

    def handle(self, command: CancelBookingCommand) -> Booking:
        """Cancel booking and refund per cancellation policy"""
        logger.info(f"Cancelling booking {command.booking_id}, reason: {command.reason}")

        with self.uow_factory() as uow:
            booking = _load(uow, command.booking_id, lock=True)
            at = self.clock()

            # Nothing may be refunded for a cancellation that will be refused
            booking.check_cancellation(at, command.reason, self.policy)

            refund_amount = None
            if command.want_refund:
                due = self.policy.refund_for(booking.total_amount, booking.period.start, at)
                refunded = self.ledger.refund_for_cancellation(uow, booking, due.amount, at)
                refund_amount = Money(refunded, booking.currency)
                logger.info(
                    f"Booking {booking.booking_number}: policy refund {due}, refunded {refund_amount}"
                )

            booking.cancel(at, command.reason, self.policy, refund_amount)
            _save(uow, booking)
            # Events: BookingStatusChanged, BookingCancelled

        logger.info(f"Booking {booking.booking_number} cancelled successfully")
        return booking


class MarkNoShowHandler:

    def __init__(self, uow_factory: Callable, *, clock: Callable = utcnow):
        self.uow_factory = uow_factory
        self.clock = clock

    def handle(self, command: MarkNoShowCommand) -> Booking:
        with self.uow_factory() as uow:
            booking = _load(uow, command.booking_id, lock=True)
            booking.mark_no_show(self.clock())
            _save(uow, booking)

        logger.info(f"Booking {booking.booking_number} marked as no-show")
        return booking


class AssignDriverHandler:
    """Handler for attaching a driver; the driver must be active and available"""

    def __init__(self, uow_factory: Callable, drivers: DriverDirectory, *, clock: Callable = utcnow):
        self.uow_factory = uow_factory
        self.drivers = drivers
        self.clock = clock

    def handle(self, command: AssignDriverCommand) -> Booking:
        logger.info(f"Assigning driver {command.driver_id} to booking {command.booking_id}")

        if not command.driver_id:
            raise ValidationError("Driver id is required")
        driver = self.drivers.get(command.driver_id)
        if driver is None:
            raise NotFound(f"Driver {command.driver_id} not found", driver_id=command.driver_id)
        if not driver.is_assignable:
            raise DriverUnavailable(
                f"Driver {driver.id} is not available (status {driver.status.value})",
                driver_id=driver.id,
                status=driver.status.value,
            )

        with self.uow_factory() as uow:
            booking = _load(uow, command.booking_id, lock=True)
            booking.assign_driver(driver.id, self.clock())
            _save(uow, booking)
            # Event: DriverAssigned

        logger.info(f"Driver {driver.id} assigned to booking {booking.booking_number}")
        return booking
