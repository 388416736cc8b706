"""
Booking repositories

Repositories are created by the unit of work and only used inside it.
They hand out detached copies: mutating a returned Booking changes nothing
until save() is called in the same unit of work.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from shared.domain.value_objects import Money, TimeRange
from apps.bookings.domain.entities import Booking, BookingStatus, DurationUnit, PaymentStatus
from apps.bookings.domain.queries import BookingQuery

TABLE = 'bookings'


class BookingRepository(ABC):

    @abstractmethod
    def get(self, booking_id: UUID, lock: bool = False) -> Optional[Booking]:
        """Load a booking; with lock=True hold its row lock until the unit ends"""

    @abstractmethod
    def get_by_number(self, booking_number: str) -> Optional[Booking]:
        pass

    @abstractmethod
    def save(self, booking: Booking):
        pass

    @abstractmethod
    def find(self, query: BookingQuery) -> List[Booking]:
        """Bookings matching every set field of the query, earliest start first"""

    def number_exists(self, booking_number: str) -> bool:
        return self.get_by_number(booking_number) is not None

    def count(self, query: BookingQuery) -> int:
        return len(self.find(query))


# ===== Django =====

def _money(amount, currency) -> Money | None:
    if amount is None:
        return None
    return Money(amount, currency)


def booking_to_domain(model) -> Booking:
    currency = model.currency
    return Booking(
        id=model.id,
        created_at=model.created_at,
        updated_at=model.updated_at,
        booking_number=model.booking_number,
        vehicle_id=model.vehicle_id,
        renter_id=model.renter_id,
        driver_id=model.driver_id,
        period=TimeRange(model.start_at, model.end_at),
        duration_unit=DurationUnit(model.duration_unit),
        base_amount=Money(model.base_amount, currency),
        discount_amount=Money(model.discount_amount, currency),
        tax_amount=Money(model.tax_amount, currency),
        commission_amount=Money(model.commission_amount, currency),
        total_amount=Money(model.total_amount, currency),
        suggested_price=_money(model.suggested_price, currency),
        status=BookingStatus(model.status),
        payment_status=PaymentStatus(model.payment_status),
        notes=model.notes,
        special_requests=model.special_requests,
        cancellation_reason=model.cancellation_reason,
        cancelled_at=model.cancelled_at,
        refund_amount=_money(model.refund_amount, currency),
        confirmed_at=model.confirmed_at,
        completed_at=model.completed_at,
        no_show_at=model.no_show_at,
        pickup_time=model.pickup_time,
        dropoff_time=model.dropoff_time,
        pickup_location=model.pickup_location,
        dropoff_location=model.dropoff_location,
        fuel_level_start=model.fuel_level_start,
        fuel_level_end=model.fuel_level_end,
        odometer_start=model.odometer_start,
        odometer_end=model.odometer_end,
        actual_distance=model.actual_distance,
        damage_report=model.damage_report,
    )


def booking_to_row(booking: Booking) -> dict:
    return {
        'booking_number': booking.booking_number,
        'vehicle_id': booking.vehicle_id,
        'renter_id': booking.renter_id,
        'driver_id': booking.driver_id,
        'start_at': booking.period.start,
        'end_at': booking.period.end,
        'duration_unit': booking.duration_unit.value,
        'currency': booking.currency,
        'base_amount': booking.base_amount.amount,
        'discount_amount': booking.discount_amount.amount,
        'tax_amount': booking.tax_amount.amount,
        'commission_amount': booking.commission_amount.amount,
        'total_amount': booking.total_amount.amount,
        'suggested_price': booking.suggested_price.amount if booking.suggested_price else None,
        'status': booking.status.value,
        'payment_status': booking.payment_status.value,
        'notes': booking.notes,
        'special_requests': booking.special_requests,
        'cancellation_reason': booking.cancellation_reason,
        'cancelled_at': booking.cancelled_at,
        'refund_amount': booking.refund_amount.amount if booking.refund_amount else None,
        'confirmed_at': booking.confirmed_at,
        'completed_at': booking.completed_at,
        'no_show_at': booking.no_show_at,
        'pickup_time': booking.pickup_time,
        'dropoff_time': booking.dropoff_time,
        'pickup_location': booking.pickup_location,
        'dropoff_location': booking.dropoff_location,
        'fuel_level_start': booking.fuel_level_start,
        'fuel_level_end': booking.fuel_level_end,
        'odometer_start': booking.odometer_start,
        'odometer_end': booking.odometer_end,
        'actual_distance': booking.actual_distance,
        'damage_report': booking.damage_report,
        'created_at': booking.created_at,
        'updated_at': booking.updated_at,
    }


class DjangoBookingRepository(BookingRepository):
    """Booking storage on the Django ORM; row locks via SELECT ... FOR UPDATE"""

    def __init__(self):
        from apps.bookings.models import Booking as BookingModel

        self.model = BookingModel

    def get(self, booking_id: UUID, lock: bool = False) -> Optional[Booking]:
        qs = self.model.objects.all()
        if lock:
            qs = qs.select_for_update()
        instance = qs.filter(pk=booking_id).first()
        return booking_to_domain(instance) if instance else None

    def get_by_number(self, booking_number: str) -> Optional[Booking]:
        instance = self.model.objects.filter(booking_number=booking_number).first()
        return booking_to_domain(instance) if instance else None

    def number_exists(self, booking_number: str) -> bool:
        return self.model.objects.filter(booking_number=booking_number).exists()

    def save(self, booking: Booking):
        self.model.objects.update_or_create(pk=booking.id, defaults=booking_to_row(booking))

    def _queryset(self, query: BookingQuery):
        qs = self.model.objects.all()
        if query.vehicle_id is not None:
            qs = qs.filter(vehicle_id=query.vehicle_id)
        if query.renter_id is not None:
            qs = qs.filter(renter_id=query.renter_id)
        if query.driver_id is not None:
            qs = qs.filter(driver_id=query.driver_id)
        if query.statuses:
            qs = qs.filter(status__in=[s.value for s in query.statuses])
        if query.overlapping is not None:
            # Half-open overlap: start < other.end and other.start < end
            qs = qs.filter(start_at__lt=query.overlapping.end, end_at__gt=query.overlapping.start)
        if query.starts_from is not None:
            qs = qs.filter(start_at__gte=query.starts_from)
        if query.starts_before is not None:
            qs = qs.filter(start_at__lt=query.starts_before)
        if query.exclude_booking_id is not None:
            qs = qs.exclude(pk=query.exclude_booking_id)
        return qs.order_by('start_at', 'created_at')

    def find(self, query: BookingQuery) -> List[Booking]:
        qs = self._queryset(query)
        if query.limit is not None:
            qs = qs[:query.limit]
        return [booking_to_domain(m) for m in qs]

    def count(self, query: BookingQuery) -> int:
        qs = self._queryset(query)
        if query.limit is not None:
            return min(qs.count(), query.limit)
        return qs.count()


# ===== In-memory =====

class InMemoryBookingRepository(BookingRepository):
    """Booking storage backed by an InMemoryUnitOfWork"""

    def __init__(self, uow):
        self.uow = uow

    def get(self, booking_id: UUID, lock: bool = False) -> Optional[Booking]:
        if lock:
            self.uow.lock_booking(booking_id)
        return self.uow.read(TABLE, booking_id)

    def get_by_number(self, booking_number: str) -> Optional[Booking]:
        for booking in self.uow.read_all(TABLE):
            if booking.booking_number == booking_number:
                return booking
        return None

    def save(self, booking: Booking):
        self.uow.stage(TABLE, booking.id, booking)

    def find(self, query: BookingQuery) -> List[Booking]:
        matches = [b for b in self.uow.read_all(TABLE) if query.matches(b)]
        matches.sort(key=lambda b: (b.period.start, b.created_at))
        if query.limit is not None:
            matches = matches[:query.limit]
        return matches
