"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money, TimeRange


@dataclass(kw_only=True)
class BookingCreated(DomainEvent):
    """
    Event: A new booking was created in PENDING status

    Triggers:
    - Renter notification (outside the core)
    """
    booking_id: UUID
    booking_number: str
    vehicle_id: str
    renter_id: str
    period: TimeRange
    total_amount: Money


@dataclass(kw_only=True)
class BookingStatusChanged(DomainEvent):
    """
    Event: Lifecycle status moved from old_status to new_status

    Emitted on every transition, next to the specific event below.
    The driver status updater subscribes to this one.
    """
    booking_id: UUID
    vehicle_id: str
    driver_id: str | None
    old_status: str
    new_status: str


@dataclass(kw_only=True)
class BookingConfirmed(DomainEvent):
    """Event: PENDING -> CONFIRMED"""
    booking_id: UUID
    vehicle_id: str
    period: TimeRange


@dataclass(kw_only=True)
class BookingTripStarted(DomainEvent):
    """Event: CONFIRMED -> IN_PROGRESS (vehicle handed over)"""
    booking_id: UUID
    vehicle_id: str
    pickup_time: datetime


@dataclass(kw_only=True)
class BookingCompleted(DomainEvent):
    """
    Event: IN_PROGRESS -> COMPLETED (vehicle returned)

    Triggers:
    - Vehicle statistics refresh (booking count, rating)
    """
    booking_id: UUID
    vehicle_id: str
    renter_id: str
    actual_distance: Decimal | None = None


@dataclass(kw_only=True)
class BookingCancelled(DomainEvent):
    """
    Event: Booking was cancelled

    refund_amount is what was actually credited back through the
    payment ledger, not what the policy offered.
    """
    booking_id: UUID
    vehicle_id: str
    reason: str
    refund_amount: Money | None
    old_status: str


@dataclass(kw_only=True)
class BookingMarkedNoShow(DomainEvent):
    """Event: CONFIRMED -> NO_SHOW (renter never picked the vehicle up)"""
    booking_id: UUID
    vehicle_id: str


@dataclass(kw_only=True)
class DriverAssigned(DomainEvent):
    booking_id: UUID
    driver_id: str
    previous_driver_id: str | None = None


@dataclass(kw_only=True)
class BookingPaymentStatusChanged(DomainEvent):
    """Event: derived payment status was recomputed to a new value"""
    booking_id: UUID
    old_status: str
    new_status: str
