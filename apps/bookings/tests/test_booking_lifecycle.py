import re
from datetime import timedelta
from decimal import Decimal

import pytest

from apps.bookings.domain.entities import BookingStatus, DurationUnit, PaymentStatus
from apps.bookings.domain.events import BookingConfirmed
from apps.bookings.domain.policies import CancellationPolicy
from apps.fleet.ports import DriverStatus
from conftest import NOW
from shared.domain.exceptions import (
    ConflictError,
    DriverUnavailable,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from shared.domain.value_objects import Money


class TestCreateBooking:

    def test_new_booking_is_pending_and_priced(self, core, book):
        booking = book(hours=48, days=3)

        assert booking.status is BookingStatus.PENDING
        assert booking.payment_status is PaymentStatus.PENDING
        assert re.fullmatch(r"BK2026\d{6}", booking.booking_number)
        assert booking.base_amount == Money(Decimal("150.00"))
        assert booking.tax_amount == Money(Decimal("15.00"))
        assert booking.total_amount == Money(Decimal("165.00"))
        assert booking.commission_amount == Money(Decimal("4.50"))
        assert booking.suggested_price is not None

        stored = core.get_booking(booking.id)
        assert stored.snapshot() == booking.snapshot()

    def test_suggested_price_counts_nearby_bookings(self, core, book):
        first = book(hours=48, days=3)
        second = book(hours=72, days=3, renter_id="r2")

        # v1 is unrated: 150 x 0.7, then +10% for the one nearby booking
        assert first.suggested_price == Money(Decimal("105.00"))
        assert second.suggested_price == Money(Decimal("115.50"))

    def test_end_not_after_start_is_rejected(self, core):
        with pytest.raises(ValidationError):
            core.create_booking(vehicle_id="v1", renter_id="r1", start=NOW + timedelta(days=1),
                                end=NOW + timedelta(days=1))

    def test_naive_datetimes_are_rejected(self, core):
        start = (NOW + timedelta(days=1)).replace(tzinfo=None)

        with pytest.raises(ValidationError):
            core.create_booking(vehicle_id="v1", renter_id="r1", start=start, end=start + timedelta(days=1))

    def test_start_in_the_past_is_rejected(self, core):
        with pytest.raises(ValidationError):
            core.create_booking(vehicle_id="v1", renter_id="r1", start=NOW - timedelta(hours=1),
                                end=NOW + timedelta(days=1))

    def test_unknown_vehicle(self, book):
        with pytest.raises(NotFound):
            book(vehicle_id="missing")

    def test_vehicle_in_maintenance_cannot_be_booked(self, book):
        with pytest.raises(ConflictError):
            book(vehicle_id="v-maintenance")

    def test_overlap_with_confirmed_booking_is_rejected(self, core, book):
        core.confirm_booking(book(hours=48, days=3).id)

        with pytest.raises(ConflictError):
            book(hours=60, days=1)

    def test_pending_bookings_do_not_block_creation(self, book):
        first = book(hours=48, days=3)
        second = book(hours=48, days=3, renter_id="r2")

        assert first.id != second.id
        assert first.booking_number != second.booking_number

    def test_unavailable_driver_is_rejected(self, book):
        with pytest.raises(DriverUnavailable):
            book(driver_id="d-offline")

    def test_unknown_duration_unit(self, book):
        with pytest.raises(ValidationError):
            book(duration_unit="fortnight")

    def test_weekly_unit(self, book):
        booking = book(days=14, duration_unit=DurationUnit.WEEK)

        assert booking.base_amount == Money(Decimal("600.00"))


class TestConfirmBooking:

    def test_confirm_pending_booking(self, core, book, clock):
        booking = book()
        clock.advance(minutes=5)

        confirmed = core.confirm_booking(booking.id)

        assert confirmed.status is BookingStatus.CONFIRMED
        assert confirmed.confirmed_at == NOW + timedelta(minutes=5)
        assert core.get_booking(booking.id).status is BookingStatus.CONFIRMED

    def test_second_overlapping_confirmation_fails(self, core, book):
        first = book(hours=48, days=3)
        second = book(hours=72, days=3, renter_id="r2")
        core.confirm_booking(first.id)

        with pytest.raises(ConflictError):
            core.confirm_booking(second.id)

        assert core.get_booking(second.id).status is BookingStatus.PENDING

    @pytest.mark.parametrize("target", ["confirmed", "in_progress", "completed", "cancelled", "no_show"])
    def test_confirm_from_any_other_status_changes_nothing(self, core, book, clock, target):
        booking = book(hours=48, days=3)
        if target == "cancelled":
            core.cancel_booking(booking.id, reason="plans changed")
        else:
            core.confirm_booking(booking.id)
        if target in ("in_progress", "completed", "no_show"):
            clock.advance(hours=49)
            if target == "no_show":
                core.mark_no_show(booking.id)
            else:
                core.start_trip(booking.id)
        if target == "completed":
            core.complete_booking(booking.id)

        before = core.get_booking(booking.id).snapshot()
        assert before["status"].value == target

        with pytest.raises(InvalidStateTransition):
            core.confirm_booking(booking.id)

        assert core.get_booking(booking.id).snapshot() == before

    def test_unknown_booking(self, core):
        with pytest.raises(NotFound):
            core.confirm_booking("00000000-0000-0000-0000-000000000000")

    def test_malformed_booking_id(self, core):
        with pytest.raises(ValidationError):
            core.confirm_booking("not-a-uuid")

    def test_failing_subscriber_does_not_undo_confirmation(self, core, book):
        def broken(event):
            raise RuntimeError("notification service down")

        core.bus.register_event_handler(BookingConfirmed, broken)
        booking = book()

        core.confirm_booking(booking.id)

        assert core.get_booking(booking.id).status is BookingStatus.CONFIRMED


class TestTrip:

    def test_full_trip(self, core, book, clock, vehicles):
        booking = book(hours=48, days=3)
        core.confirm_booking(booking.id)
        clock.advance(hours=48)

        started = core.start_trip(booking.id, fuel_level=Decimal("90"), odometer=12000, pickup_location="Airport")
        assert started.status is BookingStatus.IN_PROGRESS
        assert started.pickup_time == clock()

        clock.advance(days=3)
        done = core.complete_booking(booking.id, fuel_level=Decimal("40"), odometer=12480, dropoff_location="Airport")

        assert done.status is BookingStatus.COMPLETED
        assert done.completed_at == clock()
        assert done.actual_distance == Decimal("480")
        assert vehicles.refreshed == [("v1", 1)]
        assert vehicles.get("v1").total_bookings == 1

    def test_odometer_cannot_go_backwards(self, core, book, clock):
        booking = book()
        core.confirm_booking(booking.id)
        core.start_trip(booking.id, odometer=500)

        with pytest.raises(ValidationError):
            core.complete_booking(booking.id, odometer=499)

        assert core.get_booking(booking.id).status is BookingStatus.IN_PROGRESS

    def test_cannot_start_pending_booking(self, core, book):
        with pytest.raises(InvalidStateTransition):
            core.start_trip(book().id)

    def test_cannot_complete_confirmed_booking(self, core, book):
        booking = book()
        core.confirm_booking(booking.id)

        with pytest.raises(InvalidStateTransition):
            core.complete_booking(booking.id)


class TestNoShow:

    def test_no_show_only_after_start(self, core, book, clock):
        booking = book(hours=48)
        core.confirm_booking(booking.id)

        with pytest.raises(InvalidStateTransition):
            core.mark_no_show(booking.id)

        clock.advance(hours=50)
        marked = core.mark_no_show(booking.id)

        assert marked.status is BookingStatus.NO_SHOW
        assert marked.no_show_at == clock()

    def test_no_show_frees_the_vehicle(self, core, book, clock):
        booking = book(hours=48, days=3)
        core.confirm_booking(booking.id)
        clock.advance(hours=50)
        core.mark_no_show(booking.id)

        assert not core.has_conflict("v1", NOW + timedelta(hours=60), NOW + timedelta(hours=70))


class TestSchedulePredicates:

    def test_windows_close_in_order(self, book):
        booking = book(hours=48, days=3)
        policy = CancellationPolicy(deadline_hours=24, modification_deadline_hours=4)

        assert booking.is_upcoming(NOW)
        assert booking.can_be_cancelled(NOW, policy)
        assert booking.can_be_modified(NOW, policy)

        later = NOW + timedelta(hours=30)
        assert not booking.can_be_cancelled(later, policy)
        assert booking.can_be_modified(later, policy)
        assert not booking.can_be_modified(NOW + timedelta(hours=45), policy)

    def test_overdue_once_the_end_passes_without_completion(self, core, book):
        booking = core.confirm_booking(book(hours=48, days=3).id)

        assert not booking.is_overdue(NOW)
        assert booking.is_overdue(NOW + timedelta(days=6))

    def test_cancelled_booking_is_neither_upcoming_nor_cancellable(self, core, book):
        booking = core.cancel_booking(book().id, reason="Plans changed")

        assert not booking.is_upcoming(NOW)
        assert not booking.can_be_cancelled(NOW, CancellationPolicy())
        assert not booking.is_overdue(NOW + timedelta(days=6))


class TestCancelBooking:

    def test_cancel_with_full_refund_well_before_start(self, core, book):
        booking = book(hours=30, days=3)
        core.confirm_booking(booking.id)
        core.charge(booking.id)
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PAID

        cancelled = core.cancel_booking(booking.id, reason="Flight cancelled", want_refund=True)

        assert cancelled.status is BookingStatus.CANCELLED
        assert cancelled.refund_amount == Money(Decimal("165.00"))
        assert cancelled.cancellation_reason == "Flight cancelled"
        assert cancelled.payment_status is PaymentStatus.REFUNDED
        assert core.get_booking(booking.id).payment_status is PaymentStatus.REFUNDED

    def test_cancel_with_half_refund_under_a_shorter_deadline(self, make_core, clock):
        core = make_core(policy=CancellationPolicy(deadline_hours=12))
        start = NOW + timedelta(hours=18)
        booking = core.create_booking(vehicle_id="v1", renter_id="r1", start=start, end=start + timedelta(days=3))
        core.confirm_booking(booking.id)
        core.charge(booking.id)

        cancelled = core.cancel_booking(booking.id, reason="Change of plans", want_refund=True)

        assert cancelled.refund_amount == Money(Decimal("82.50"))
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PARTIAL

    def test_cancel_inside_deadline_is_refused_and_refunds_nothing(self, core, book):
        booking = book(hours=18, days=3)
        core.confirm_booking(booking.id)
        payment = core.charge(booking.id).payment

        with pytest.raises(InvalidStateTransition):
            core.cancel_booking(booking.id, reason="Too late", want_refund=True)

        assert core.get_booking(booking.id).status is BookingStatus.CONFIRMED
        assert core.get_booking(booking.id).payment_status is PaymentStatus.PAID
        assert core.refundable_amount(payment.id) == Decimal("165.00")

    def test_cancel_without_refund_request_keeps_payments(self, core, book):
        booking = book(hours=48)
        core.charge(booking.id)

        cancelled = core.cancel_booking(booking.id, reason="No longer needed")

        assert cancelled.refund_amount is None
        assert cancelled.payment_status is PaymentStatus.PAID

    def test_refund_request_without_payments_refunds_zero(self, core, book):
        cancelled = core.cancel_booking(book().id, reason="No longer needed", want_refund=True)

        assert cancelled.refund_amount == Money(Decimal("0.00"))
        assert cancelled.payment_status is PaymentStatus.PENDING

    def test_reason_is_required(self, core, book):
        booking = book()

        with pytest.raises(ValidationError):
            core.cancel_booking(booking.id, reason="   ")

        assert core.get_booking(booking.id).status is BookingStatus.PENDING

    def test_in_progress_booking_cannot_be_cancelled(self, core, book, clock):
        booking = book(hours=48)
        core.confirm_booking(booking.id)
        clock.advance(hours=48)
        core.start_trip(booking.id)

        with pytest.raises(InvalidStateTransition):
            core.cancel_booking(booking.id, reason="Changed mind")

    def test_cancelled_booking_frees_the_vehicle(self, core, book):
        booking = book(hours=48, days=3)
        core.confirm_booking(booking.id)
        core.cancel_booking(booking.id, reason="Changed mind")

        other = book(hours=48, days=3, renter_id="r2")
        core.confirm_booking(other.id)

        assert core.get_booking(other.id).status is BookingStatus.CONFIRMED


class TestDrivers:

    def test_driver_follows_the_trip(self, core, book, clock, drivers):
        booking = book(hours=48)
        core.assign_driver(booking.id, "d1")
        core.confirm_booking(booking.id)
        assert drivers.get("d1").status is DriverStatus.AVAILABLE

        clock.advance(hours=48)
        core.start_trip(booking.id)
        assert drivers.get("d1").status is DriverStatus.ON_TRIP

        core.complete_booking(booking.id)
        assert drivers.get("d1").status is DriverStatus.AVAILABLE

    def test_cancellation_releases_the_driver(self, core, book, drivers):
        booking = book(hours=48, driver_id="d1")
        drivers.set_status("d1", DriverStatus.BUSY)

        core.cancel_booking(booking.id, reason="Changed mind")

        assert drivers.get("d1").status is DriverStatus.AVAILABLE

    def test_assign_unknown_driver(self, core, book):
        with pytest.raises(NotFound):
            core.assign_driver(book().id, "ghost")

    def test_assign_unavailable_driver(self, core, book, drivers):
        booking = book()
        drivers.set_status("d1", DriverStatus.ON_TRIP)

        with pytest.raises(DriverUnavailable):
            core.assign_driver(booking.id, "d1")

        assert core.get_booking(booking.id).driver_id is None

    def test_cannot_assign_driver_after_trip_started(self, core, book, clock):
        booking = book(hours=48)
        core.confirm_booking(booking.id)
        clock.advance(hours=48)
        core.start_trip(booking.id)

        with pytest.raises(InvalidStateTransition):
            core.assign_driver(booking.id, "d1")
