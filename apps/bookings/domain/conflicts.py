"""
Interval Conflict Checker

This is the CRITICAL piece for preventing double bookings.

Intervals are half-open [start, end): a booking that ends exactly when the
next one starts does not conflict with it. Only CONFIRMED and IN_PROGRESS
bookings hold the vehicle; PENDING and terminal bookings never block.

The functions here are pure. Callers that act on the answer (create,
confirm) must evaluate them under the vehicle lock, inside the same unit of
work that writes the booking status.
"""

from dataclasses import dataclass, field
from typing import Iterable, List
from uuid import UUID

from shared.domain.exceptions import ConflictError
from shared.domain.value_objects import TimeRange
from apps.bookings.domain.entities import ACTIVE_STATUSES, Booking, BookingStatus


@dataclass(frozen=True)
class Reservation:
    """A booked interval of one vehicle, as seen by the conflict checker"""
    booking_id: UUID
    period: TimeRange
    status: BookingStatus

    @classmethod
    def from_booking(cls, booking: Booking) -> 'Reservation':
        return cls(booking_id=booking.id, period=booking.period, status=booking.status)

    @property
    def blocks(self) -> bool:
        return self.status in ACTIVE_STATUSES


def intervals_overlap(a: TimeRange, b: TimeRange) -> bool:
    """a.start < b.end and b.start < a.end"""
    return a.overlaps_with(b)


def find_conflicts(
    reservations: Iterable[Reservation],
    proposed: TimeRange,
    exclude_booking_id: UUID | None = None,
) -> List[Reservation]:
    return [
        r for r in reservations
        if r.blocks
        and r.booking_id != exclude_booking_id
        and intervals_overlap(r.period, proposed)
    ]


def has_conflict(
    reservations: Iterable[Reservation],
    proposed: TimeRange,
    exclude_booking_id: UUID | None = None,
) -> bool:
    return bool(find_conflicts(reservations, proposed, exclude_booking_id))


@dataclass
class VehicleSchedule:
    """
    Reservations of one vehicle

    Loaded under the vehicle lock so that the check and the following
    status write form one critical section.

    Usage:
        uow.lock_vehicle(vehicle_id)
        schedule = VehicleSchedule.from_bookings(vehicle_id, bookings)
        schedule.ensure_available(period, exclude_booking_id=booking.id)
        booking.confirm(now)
    """

    vehicle_id: str
    reservations: List[Reservation] = field(default_factory=list)

    @classmethod
    def from_bookings(cls, vehicle_id: str, bookings: Iterable[Booking]) -> 'VehicleSchedule':
        return cls(
            vehicle_id=vehicle_id,
            reservations=[Reservation.from_booking(b) for b in bookings if b.vehicle_id == vehicle_id],
        )

    def can_allocate(self, period: TimeRange, exclude_booking_id: UUID | None = None) -> bool:
        return not has_conflict(self.reservations, period, exclude_booking_id)

    def ensure_available(self, period: TimeRange, exclude_booking_id: UUID | None = None):
        """
        Raise ConflictError if period overlaps an active reservation

        The message names the first overlapping booking to help support.
        """
        conflicts = find_conflicts(self.reservations, period, exclude_booking_id)
        if conflicts:
            raise ConflictError(
                f"Vehicle {self.vehicle_id} is not available for {period}. "
                f"Overlaps with booking {conflicts[0].booking_id}",
                vehicle_id=self.vehicle_id,
                conflicting_booking_ids=[str(c.booking_id) for c in conflicts],
            )

    def __str__(self):
        return f"VehicleSchedule(vehicle={self.vehicle_id}, reservations={len(self.reservations)})"
