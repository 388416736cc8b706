"""In-process fleet directories, used by tests and local runs."""

import dataclasses
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from apps.fleet.ports import (
    DriverDirectory,
    DriverSnapshot,
    DriverStatus,
    VehicleDirectory,
    VehicleSnapshot,
)

logger = logging.getLogger(__name__)


class InMemoryVehicleDirectory(VehicleDirectory):

    def __init__(self, vehicles: Iterable[VehicleSnapshot] = ()):
        self._lock = threading.Lock()
        self._vehicles: Dict[str, VehicleSnapshot] = {v.id: v for v in vehicles}
        self.refreshed: List[Tuple[str, int]] = []

    def add(self, vehicle: VehicleSnapshot):
        with self._lock:
            self._vehicles[vehicle.id] = vehicle

    def get(self, vehicle_id: str) -> Optional[VehicleSnapshot]:
        with self._lock:
            return self._vehicles.get(vehicle_id)

    def refresh_statistics(self, vehicle_id: str, completed_bookings: int):
        with self._lock:
            vehicle = self._vehicles.get(vehicle_id)
            if vehicle is None:
                logger.warning(f"Statistics refresh for unknown vehicle {vehicle_id}")
                return
            self._vehicles[vehicle_id] = dataclasses.replace(vehicle, total_bookings=completed_bookings)
            self.refreshed.append((vehicle_id, completed_bookings))


class InMemoryDriverDirectory(DriverDirectory):

    def __init__(self, drivers: Iterable[DriverSnapshot] = ()):
        self._lock = threading.Lock()
        self._drivers: Dict[str, DriverSnapshot] = {d.id: d for d in drivers}

    def add(self, driver: DriverSnapshot):
        with self._lock:
            self._drivers[driver.id] = driver

    def get(self, driver_id: str) -> Optional[DriverSnapshot]:
        with self._lock:
            return self._drivers.get(driver_id)

    def set_status(self, driver_id: str, status: DriverStatus):
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                logger.warning(f"Status update for unknown driver {driver_id}")
                return
            self._drivers[driver_id] = dataclasses.replace(driver, status=status)
        logger.info(f"Driver {driver_id} is now {status.value}")
