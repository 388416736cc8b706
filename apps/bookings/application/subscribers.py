"""
Booking event subscribers

Run after the booking's unit of work committed. A failing subscriber is
logged by the message bus and never undoes the booking change.
"""

from typing import Callable
import logging

from apps.bookings.domain.entities import BookingStatus
from apps.bookings.domain.events import BookingCompleted, BookingStatusChanged
from apps.bookings.domain.queries import BookingQuery
from apps.fleet.ports import DriverDirectory, DriverStatus, VehicleDirectory

logger = logging.getLogger(__name__)


class DriverStatusUpdater:
    """
    Mirror the booking lifecycle onto the assigned driver

    - in_progress -> driver on_trip
    - completed / cancelled -> driver available
    """

    STATUS_MAP = {
        BookingStatus.IN_PROGRESS.value: DriverStatus.ON_TRIP,
        BookingStatus.COMPLETED.value: DriverStatus.AVAILABLE,
        BookingStatus.CANCELLED.value: DriverStatus.AVAILABLE,
    }

    def __init__(self, drivers: DriverDirectory):
        self.drivers = drivers

    def __call__(self, event: BookingStatusChanged):
        if not event.driver_id:
            return
        driver_status = self.STATUS_MAP.get(event.new_status)
        if driver_status is None:
            return

        logger.info(
            f"Booking {event.booking_id} is {event.new_status}, "
            f"setting driver {event.driver_id} to {driver_status.value}"
        )
        self.drivers.set_status(event.driver_id, driver_status)


class VehicleStatisticsRefresher:
    """Tell the vehicle directory how many trips the vehicle has completed"""

    def __init__(self, uow_factory: Callable, vehicles: VehicleDirectory):
        self.uow_factory = uow_factory
        self.vehicles = vehicles

    def __call__(self, event: BookingCompleted):
        with self.uow_factory() as uow:
            completed = uow.bookings.count(BookingQuery(
                vehicle_id=event.vehicle_id,
                statuses={BookingStatus.COMPLETED},
            ))

        logger.info(f"Vehicle {event.vehicle_id} has {completed} completed bookings")
        self.vehicles.refresh_statistics(event.vehicle_id, completed_bookings=completed)
