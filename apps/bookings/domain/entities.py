"""
Booking Domain Entities

Core business entities for the booking domain:
- Booking: Main aggregate representing a vehicle rental
- BookingStatus: FSM states for booking lifecycle
- PaymentStatus: Payment state derived from the payment ledger
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from shared.domain.base import Aggregate, utcnow
from shared.domain.exceptions import InvalidStateTransition, ValidationError
from shared.domain.value_objects import Money, TimeRange
from apps.bookings.domain.events import (
    BookingCancelled,
    BookingCompleted,
    BookingConfirmed,
    BookingCreated,
    BookingMarkedNoShow,
    BookingPaymentStatusChanged,
    BookingStatusChanged,
    BookingTripStarted,
    DriverAssigned,
)
from apps.bookings.domain.policies import CancellationPolicy


class BookingStatus(Enum):
    """
    Booking Status Finite State Machine

    State transitions:
    - PENDING -> CONFIRMED (explicit confirmation, vehicle re-checked)
    - PENDING -> CANCELLED
    - CONFIRMED -> IN_PROGRESS (trip started)
    - CONFIRMED -> CANCELLED (before the cancellation deadline)
    - CONFIRMED -> NO_SHOW (renter never showed up)
    - IN_PROGRESS -> COMPLETED (trip ended)
    """
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'


class PaymentStatus(Enum):
    """Booking level payment status, always derived from the payment ledger"""
    PENDING = 'pending'
    PARTIAL = 'partial'
    PAID = 'paid'
    REFUNDED = 'refunded'
    FAILED = 'failed'


class DurationUnit(Enum):
    HOUR = 'hour'
    DAY = 'day'
    WEEK = 'week'
    MONTH = 'month'


# Only these statuses hold the vehicle
ACTIVE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})

TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
})

CANCELLABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


@dataclass(kw_only=True, eq=False)
class Booking(Aggregate):
    """
    Booking Aggregate Root

    Represents a renter's reservation of a vehicle for a time range.

    Key invariants:
    - period.end is strictly after period.start (TimeRange enforces it)
    - total = base - discount + tax, all amounts non-negative
    - payment_status only changes through record_payment_status(), which the
      payment ledger calls after recomputing it from the payments
    - every lifecycle method checks the source status before touching state
    """

    # Booking identification
    booking_number: str  # Human-readable booking number (e.g., BK2026004217)

    # References (owned by external collaborators)
    vehicle_id: str
    renter_id: str
    driver_id: str | None = None

    period: TimeRange
    duration_unit: DurationUnit = DurationUnit.DAY

    # Pricing, fixed at creation time
    base_amount: Money
    discount_amount: Money
    tax_amount: Money
    commission_amount: Money
    total_amount: Money
    suggested_price: Money | None = None

    # Status tracking
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING

    notes: str = ''
    special_requests: str = ''

    # Cancellation details
    cancellation_reason: str = ''
    cancelled_at: datetime | None = None
    refund_amount: Money | None = None

    # Timestamps
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    no_show_at: datetime | None = None

    # Trip data (informational)
    pickup_time: datetime | None = None
    dropoff_time: datetime | None = None
    pickup_location: str = ''
    dropoff_location: str = ''
    fuel_level_start: Decimal | None = None
    fuel_level_end: Decimal | None = None
    odometer_start: int | None = None
    odometer_end: int | None = None
    actual_distance: Decimal | None = None
    damage_report: str = ''

    def __post_init__(self):
        super().__post_init__()

        amounts = (self.base_amount, self.discount_amount, self.tax_amount,
                   self.commission_amount, self.total_amount)
        if len({m.currency for m in amounts}) != 1:
            raise ValidationError("All booking amounts must share one currency")
        if self.discount_amount > self.base_amount:
            raise ValidationError(
                "Discount cannot exceed the base amount",
                base=str(self.base_amount.amount),
                discount=str(self.discount_amount.amount),
            )
        expected = self.base_amount - self.discount_amount + self.tax_amount
        if expected.amount != self.total_amount.amount:
            raise ValidationError(
                "Total must equal base - discount + tax",
                expected=str(expected.amount),
                total=str(self.total_amount.amount),
            )

    @classmethod
    def create(cls, **kwargs) -> 'Booking':
        """Build a new PENDING booking and record BookingCreated"""
        booking = cls(status=BookingStatus.PENDING, payment_status=PaymentStatus.PENDING, **kwargs)
        booking.add_event(BookingCreated(
            aggregate_id=booking.id,
            booking_id=booking.id,
            booking_number=booking.booking_number,
            vehicle_id=booking.vehicle_id,
            renter_id=booking.renter_id,
            period=booking.period,
            total_amount=booking.total_amount,
        ))
        return booking

    @property
    def currency(self) -> str:
        return self.total_amount.currency

    # ===== Guards =====

    def require_status(self, *allowed: BookingStatus, action: str):
        """Raise InvalidStateTransition unless the booking is in one of `allowed`"""
        if self.status not in allowed:
            raise InvalidStateTransition(
                f"Cannot {action} booking {self.booking_number} from status {self.status.value}. "
                f"Allowed: {', '.join(s.value for s in allowed)}",
                booking_id=str(self.id),
                status=self.status.value,
                action=action,
            )

    def _transition(self, new_status: BookingStatus, at: datetime):
        old_status = self.status
        self.status = new_status
        self.touch(at)
        self.add_event(BookingStatusChanged(
            aggregate_id=self.id,
            booking_id=self.id,
            vehicle_id=self.vehicle_id,
            driver_id=self.driver_id,
            old_status=old_status.value,
            new_status=new_status.value,
        ))
        return old_status

    # ===== Lifecycle =====

    def confirm(self, at: datetime):
        """
        Confirm booking (PENDING -> CONFIRMED)

        The caller must have re-checked the vehicle schedule under the
        vehicle lock before calling this.
        Events: BookingConfirmed
        """
        self.require_status(BookingStatus.PENDING, action='confirm')

        self._transition(BookingStatus.CONFIRMED, at)
        self.confirmed_at = at

        self.add_event(BookingConfirmed(
            aggregate_id=self.id,
            booking_id=self.id,
            vehicle_id=self.vehicle_id,
            period=self.period,
        ))

    def start_trip(self, at: datetime, *, fuel_level: Decimal | None = None,
                   odometer: int | None = None, pickup_location: str = ''):
        """
        Hand the vehicle over (CONFIRMED -> IN_PROGRESS)

        Events: BookingTripStarted
        """
        self.require_status(BookingStatus.CONFIRMED, action='start trip for')
        if odometer is not None and odometer < 0:
            raise ValidationError("Odometer reading cannot be negative")

        self._transition(BookingStatus.IN_PROGRESS, at)
        self.pickup_time = at
        if fuel_level is not None:
            self.fuel_level_start = fuel_level
        if odometer is not None:
            self.odometer_start = odometer
        if pickup_location:
            self.pickup_location = pickup_location

        self.add_event(BookingTripStarted(
            aggregate_id=self.id,
            booking_id=self.id,
            vehicle_id=self.vehicle_id,
            pickup_time=at,
        ))

    def complete(self, at: datetime, *, fuel_level: Decimal | None = None,
                 odometer: int | None = None, distance: Decimal | None = None,
                 damage_report: str = '', dropoff_location: str = ''):
        """
        Vehicle returned (IN_PROGRESS -> COMPLETED)

        Distance falls back to the odometer difference when both readings
        are known.
        Events: BookingCompleted
        """
        self.require_status(BookingStatus.IN_PROGRESS, action='complete')
        if odometer is not None and self.odometer_start is not None and odometer < self.odometer_start:
            raise ValidationError(
                "Odometer at return is lower than at pickup",
                odometer_start=self.odometer_start,
                odometer_end=odometer,
            )
        if distance is not None and distance < 0:
            raise ValidationError("Distance cannot be negative")

        self._transition(BookingStatus.COMPLETED, at)
        self.dropoff_time = at
        self.completed_at = at
        if fuel_level is not None:
            self.fuel_level_end = fuel_level
        if odometer is not None:
            self.odometer_end = odometer
        if distance is not None:
            self.actual_distance = distance
        elif self.odometer_start is not None and self.odometer_end is not None:
            self.actual_distance = Decimal(self.odometer_end - self.odometer_start)
        if damage_report:
            self.damage_report = damage_report
        if dropoff_location:
            self.dropoff_location = dropoff_location

        self.add_event(BookingCompleted(
            aggregate_id=self.id,
            booking_id=self.id,
            vehicle_id=self.vehicle_id,
            renter_id=self.renter_id,
            actual_distance=self.actual_distance,
        ))

    def can_be_cancelled(self, at: datetime, policy: CancellationPolicy) -> bool:
        """Cancellable from PENDING/CONFIRMED and only before start - deadline"""
        if self.status not in CANCELLABLE_STATUSES:
            return False
        return at < self.period.start - policy.deadline

    def check_cancellation(self, at: datetime, reason: str, policy: CancellationPolicy):
        """Raise unless cancel() with these arguments would succeed"""
        self.require_status(*CANCELLABLE_STATUSES, action='cancel')
        if not self.can_be_cancelled(at, policy):
            deadline = self.period.start - policy.deadline
            raise InvalidStateTransition(
                f"Cancellation window for booking {self.booking_number} closed at {deadline.isoformat()}",
                booking_id=str(self.id),
                status=self.status.value,
                deadline=deadline.isoformat(),
            )
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")

    def cancel(self, at: datetime, reason: str, policy: CancellationPolicy,
               refund_amount: Money | None = None):
        """
        Cancel booking

        refund_amount is the amount the payment ledger actually credited
        back; the booking only records it.
        Events: BookingCancelled
        """
        self.check_cancellation(at, reason, policy)

        old_status = self._transition(BookingStatus.CANCELLED, at)
        self.cancellation_reason = reason.strip()
        self.cancelled_at = at
        self.refund_amount = refund_amount

        self.add_event(BookingCancelled(
            aggregate_id=self.id,
            booking_id=self.id,
            vehicle_id=self.vehicle_id,
            reason=self.cancellation_reason,
            refund_amount=refund_amount,
            old_status=old_status.value,
        ))

    def mark_no_show(self, at: datetime):
        """
        Renter did not pick up the vehicle (CONFIRMED -> NO_SHOW)

        Only once the rental period has started.
        """
        self.require_status(BookingStatus.CONFIRMED, action='mark no-show for')
        if at < self.period.start:
            raise InvalidStateTransition(
                f"Booking {self.booking_number} has not started yet",
                booking_id=str(self.id),
                status=self.status.value,
            )

        self._transition(BookingStatus.NO_SHOW, at)
        self.no_show_at = at

        self.add_event(BookingMarkedNoShow(
            aggregate_id=self.id,
            booking_id=self.id,
            vehicle_id=self.vehicle_id,
        ))

    def assign_driver(self, driver_id: str, at: datetime):
        """Attach a driver while the booking has not started"""
        self.require_status(BookingStatus.PENDING, BookingStatus.CONFIRMED, action='assign driver to')
        if not driver_id:
            raise ValidationError("Driver id is required")

        previous = self.driver_id
        self.driver_id = driver_id
        self.touch(at)
        self.add_event(DriverAssigned(
            aggregate_id=self.id,
            booking_id=self.id,
            driver_id=driver_id,
            previous_driver_id=previous,
        ))

    def record_payment_status(self, new_status: PaymentStatus, at: datetime | None = None) -> bool:
        """
        Store a payment status recomputed from the payment ledger

        Reserved for the payment ledger's recomputation. Returns False and
        changes nothing when the status is already current.
        """
        if new_status == self.payment_status:
            return False

        old_status = self.payment_status
        self.payment_status = new_status
        self.touch(at)
        self.add_event(BookingPaymentStatusChanged(
            aggregate_id=self.id,
            booking_id=self.id,
            old_status=old_status.value,
            new_status=new_status.value,
        ))
        return True

    # ===== Queries =====

    def blocks_vehicle(self) -> bool:
        """
        Check if this booking holds the vehicle

        Only CONFIRMED and IN_PROGRESS bookings block; PENDING ones do not.
        """
        return self.status in ACTIVE_STATUSES

    def is_upcoming(self, at: datetime | None = None) -> bool:
        at = at or utcnow()
        return self.status in CANCELLABLE_STATUSES and self.period.start > at

    def is_overdue(self, at: datetime | None = None) -> bool:
        """Past the end date but never completed"""
        at = at or utcnow()
        return self.status in ACTIVE_STATUSES and self.period.end < at

    def can_be_modified(self, at: datetime, policy: CancellationPolicy) -> bool:
        if self.status not in CANCELLABLE_STATUSES:
            return False
        return at < self.period.start - policy.modification_deadline

    @property
    def duration_days(self) -> int:
        return max(1, self.period.duration // timedelta(days=1))

    @property
    def duration_hours(self) -> int:
        return max(1, self.period.duration // timedelta(hours=1))

    def __str__(self):
        return f"Booking {self.booking_number} ({self.status.value})"

    def __repr__(self):
        return (
            f"Booking(id={self.id}, booking_number={self.booking_number}, "
            f"status={self.status.value}, period={self.period})"
        )
