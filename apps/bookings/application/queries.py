"""
Booking read side

Nothing here takes locks or writes. Answers may be stale by the time the
caller acts on them; create and confirm re-check under the vehicle lock.
"""

from datetime import datetime
from typing import Callable, List, Optional
import logging

from shared.domain.exceptions import NotFound, ValidationError
from shared.domain.value_objects import Money, TimeRange
from shared.infrastructure.identifiers import coerce_uuid
from apps.bookings.domain.conflicts import Reservation, VehicleSchedule, find_conflicts
from apps.bookings.domain.entities import ACTIVE_STATUSES, Booking, DurationUnit
from apps.bookings.domain.pricing import suggested_price
from apps.bookings.domain.queries import BookingQuery, nearby_bookings_query
from apps.fleet.ports import VehicleDirectory

logger = logging.getLogger(__name__)


class ConflictChecker:
    """Speculative conflict checks against stored bookings"""

    def __init__(self, uow_factory: Callable):
        self.uow_factory = uow_factory

    def schedule(self, vehicle_id: str, period: TimeRange) -> VehicleSchedule:
        with self.uow_factory() as uow:
            active = uow.bookings.find(BookingQuery(
                vehicle_id=vehicle_id,
                statuses=ACTIVE_STATUSES,
                overlapping=period,
            ))
        return VehicleSchedule.from_bookings(vehicle_id, active)

    def find_conflicts(self, vehicle_id: str, start: datetime, end: datetime,
                       exclude_booking_id=None) -> List[Reservation]:
        period = TimeRange(start, end)
        if exclude_booking_id is not None:
            exclude_booking_id = coerce_uuid(exclude_booking_id, 'exclude_booking_id')
        return find_conflicts(self.schedule(vehicle_id, period).reservations, period, exclude_booking_id)

    def has_conflict(self, vehicle_id: str, start: datetime, end: datetime,
                     exclude_booking_id=None) -> bool:
        return bool(self.find_conflicts(vehicle_id, start, end, exclude_booking_id))


class BookingQueries:

    def __init__(self, uow_factory: Callable, vehicles: Optional[VehicleDirectory] = None):
        self.uow_factory = uow_factory
        self.vehicles = vehicles

    def get_booking(self, booking_id) -> Booking:
        booking_id = coerce_uuid(booking_id, 'booking_id')
        with self.uow_factory() as uow:
            booking = uow.bookings.get(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found", booking_id=str(booking_id))
        return booking

    def get_by_number(self, booking_number: str) -> Booking:
        with self.uow_factory() as uow:
            booking = uow.bookings.get_by_number(booking_number)
        if booking is None:
            raise NotFound(f"Booking {booking_number} not found", booking_number=booking_number)
        return booking

    def find_bookings(self, query: BookingQuery) -> List[Booking]:
        if not isinstance(query, BookingQuery):
            raise ValidationError("find_bookings expects a BookingQuery")
        with self.uow_factory() as uow:
            return uow.bookings.find(query)

    def suggest_price(self, vehicle_id: str, start: datetime, end: datetime,
                      unit: DurationUnit = DurationUnit.DAY) -> Money:
        """Advisory dynamic price for a prospective booking"""
        if self.vehicles is None:
            raise ValidationError("No vehicle directory configured")
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} not found", vehicle_id=vehicle_id)

        period = TimeRange(start, end)
        with self.uow_factory() as uow:
            nearby = uow.bookings.count(nearby_bookings_query(vehicle_id, period))

        return suggested_price(
            vehicle.rates,
            period,
            nearby_bookings=nearby,
            average_rating=vehicle.average_rating,
            total_bookings=vehicle.total_bookings,
            unit=DurationUnit(unit),
        )
