from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.bootstrap import django_core
from apps.bookings.domain.entities import BookingStatus, PaymentStatus
from apps.bookings.domain.policies import CancellationPolicy
from apps.bookings.domain.queries import BookingQuery
from apps.bookings.models import Booking as BookingRow
from apps.bookings.models import VehicleLock
from apps.bookings.repositories import DjangoBookingRepository
from apps.finances.domain.entities import PaymentType, TransactionStatus
from apps.finances.domain.queries import PaymentQuery
from apps.finances.models import Payment as PaymentRow
from apps.fleet.ports import DriverStatus
from conftest import NOW
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import ConflictError, StorageError
from shared.domain.value_objects import Money

pytestmark = pytest.mark.django_db


@pytest.fixture
def db_core(vehicles, drivers, clock, gateways, bank):
    return django_core(
        vehicles,
        drivers,
        gateways=gateways,
        bank=bank,
        clock=clock,
        policy=CancellationPolicy(deadline_hours=24),
        tax_rate="0.10",
        commission_rate="0.03",
        payment_commission_rate="0.03",
        attempt_timeout=1.0,
    )


def create(core, hours=48, days=3, **kwargs):
    start = NOW + timedelta(hours=hours)
    return core.create_booking(vehicle_id="v1", renter_id=kwargs.pop("renter_id", "r1"),
                               start=start, end=start + timedelta(days=days), **kwargs)


def test_booking_round_trips_through_the_database(db_core):
    booking = create(db_core)

    row = BookingRow.objects.get(pk=booking.id)
    assert row.booking_number == booking.booking_number
    assert row.total_amount == Decimal("165.00")
    assert row.commission_amount == Decimal("4.50")
    assert row.status == "pending"

    loaded = db_core.get_booking(booking.id)
    assert loaded.snapshot() == booking.snapshot()
    assert db_core.bookings.get_by_number(booking.booking_number).id == booking.id


def test_confirm_takes_the_vehicle_lock_and_blocks_overlaps(db_core):
    first = create(db_core)
    second = create(db_core, hours=72, renter_id="r2")

    db_core.confirm_booking(first.id)

    assert VehicleLock.objects.filter(vehicle_id="v1").exists()
    with pytest.raises(ConflictError):
        db_core.confirm_booking(second.id)
    assert BookingRow.objects.get(pk=second.id).status == "pending"


def test_overlap_query_is_half_open(db_core):
    booking = create(db_core, hours=48, days=2)
    db_core.confirm_booking(booking.id)
    end = booking.period.end

    assert not db_core.has_conflict("v1", end, end + timedelta(hours=3))
    assert db_core.has_conflict("v1", end - timedelta(minutes=1), end + timedelta(hours=3))


def test_find_bookings_filters_and_orders_by_start(db_core):
    later = create(db_core, hours=200, days=1)
    earlier = create(db_core, hours=48, days=1, renter_id="r2")
    db_core.confirm_booking(earlier.id)

    everything = db_core.find_bookings(BookingQuery(vehicle_id="v1"))
    confirmed = db_core.find_bookings(BookingQuery(statuses={"confirmed"}))
    by_renter = db_core.find_bookings(BookingQuery(renter_id="r1"))

    assert [b.id for b in everything] == [earlier.id, later.id]
    assert [b.id for b in confirmed] == [earlier.id]
    assert [b.id for b in by_renter] == [later.id]


def test_charge_and_cancellation_refund_are_persisted(db_core):
    booking = create(db_core, hours=30)
    db_core.confirm_booking(booking.id)
    outcome = db_core.charge(booking.id)

    assert PaymentRow.objects.get(pk=outcome.payment.id).status == "completed"
    assert BookingRow.objects.get(pk=booking.id).payment_status == "paid"

    cancelled = db_core.cancel_booking(booking.id, reason="Flight cancelled", want_refund=True)

    assert cancelled.refund_amount == Money(Decimal("165.00"))
    row = BookingRow.objects.get(pk=booking.id)
    assert row.status == BookingStatus.CANCELLED.value
    assert row.payment_status == PaymentStatus.REFUNDED.value
    assert row.refund_amount == Decimal("165.00")

    refunds = db_core.payments_for(PaymentQuery(booking_id=booking.id, types={PaymentType.REFUND}))
    assert [r.amount for r in refunds] == [Decimal("-165.00")]
    assert refunds[0].original_payment_id == outcome.payment.id
    assert PaymentRow.objects.get(pk=outcome.payment.id).status == TransactionStatus.REFUNDED.value


def test_events_are_published_only_after_commit(db_core, drivers, clock, django_capture_on_commit_callbacks):
    booking = create(db_core, driver_id="d1")
    db_core.confirm_booking(booking.id)
    clock.advance(hours=48)

    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        db_core.start_trip(booking.id)
    assert drivers.get("d1").status is DriverStatus.AVAILABLE

    for callback in callbacks:
        callback()
    assert drivers.get("d1").status is DriverStatus.ON_TRIP


def test_database_errors_surface_as_storage_error(db_core):
    booking = create(db_core)
    clash = db_core.get_booking(booking.id)
    clash.id = uuid4()

    with pytest.raises(StorageError):
        with DjangoUnitOfWork() as uow:
            uow.bookings.save(clash)

    assert BookingRow.objects.count() == 1


def test_repository_count_respects_limit(db_core):
    for hours in (48, 120, 200):
        create(db_core, hours=hours, days=1)

    repository = DjangoBookingRepository()

    assert repository.count(BookingQuery(vehicle_id="v1")) == 3
    assert repository.count(BookingQuery(vehicle_id="v1", limit=2)) == 2
