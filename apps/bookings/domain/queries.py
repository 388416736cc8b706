"""
Booking query parameters

Repositories accept these structs instead of free-form filters. Every field
is optional; set fields are ANDed together.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import TimeRange
from apps.bookings.domain.entities import Booking, BookingStatus
from apps.bookings.domain.pricing import demand_window


def _coerce_statuses(values) -> frozenset:
    statuses = set()
    for value in values or ():
        if isinstance(value, BookingStatus):
            statuses.add(value)
            continue
        try:
            statuses.add(BookingStatus(value))
        except ValueError as e:
            raise ValidationError(f"Unknown booking status: {value!r}") from e
    return frozenset(statuses)


@dataclass(frozen=True)
class BookingQuery:
    vehicle_id: str | None = None
    renter_id: str | None = None
    driver_id: str | None = None
    statuses: frozenset = field(default_factory=frozenset)
    overlapping: TimeRange | None = None
    starts_from: datetime | None = None
    starts_before: datetime | None = None
    exclude_booking_id: UUID | None = None
    limit: int | None = None

    def __post_init__(self):
        object.__setattr__(self, 'statuses', _coerce_statuses(self.statuses))
        if self.overlapping is not None and not isinstance(self.overlapping, TimeRange):
            raise ValidationError("overlapping must be a TimeRange")
        if self.starts_from and self.starts_before and self.starts_before <= self.starts_from:
            raise ValidationError("starts_before must be after starts_from")
        if self.limit is not None and self.limit < 1:
            raise ValidationError("limit must be positive")

    def matches(self, booking: Booking) -> bool:
        if self.vehicle_id is not None and booking.vehicle_id != self.vehicle_id:
            return False
        if self.renter_id is not None and booking.renter_id != self.renter_id:
            return False
        if self.driver_id is not None and booking.driver_id != self.driver_id:
            return False
        if self.statuses and booking.status not in self.statuses:
            return False
        if self.overlapping is not None and not booking.period.overlaps_with(self.overlapping):
            return False
        if self.starts_from is not None and booking.period.start < self.starts_from:
            return False
        if self.starts_before is not None and booking.period.start >= self.starts_before:
            return False
        if self.exclude_booking_id is not None and booking.id == self.exclude_booking_id:
            return False
        return True


def nearby_bookings_query(vehicle_id: str, period: TimeRange) -> BookingQuery:
    """Bookings of the vehicle, any status, starting within a week of period"""
    window = demand_window(period)
    return BookingQuery(vehicle_id=vehicle_id, starts_from=window.start, starts_before=window.end)
