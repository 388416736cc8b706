"""
Vehicle and driver directory ports

Snapshots are read-only views of the collaborator's records at the time of
the call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from apps.bookings.domain.pricing import VehicleRates


class VehicleStatus(Enum):
    ACTIVE = 'active'
    MAINTENANCE = 'maintenance'
    UNAVAILABLE = 'unavailable'
    RETIRED = 'retired'


class DriverStatus(Enum):
    AVAILABLE = 'available'
    BUSY = 'busy'
    OFFLINE = 'offline'
    ON_TRIP = 'on_trip'


@dataclass(frozen=True)
class VehicleSnapshot:
    id: str
    rates: VehicleRates = field(default_factory=VehicleRates)
    status: VehicleStatus = VehicleStatus.ACTIVE
    is_available: bool = True
    average_rating: Optional[Decimal] = None
    total_bookings: int = 0

    @property
    def is_operational(self) -> bool:
        """Listed as available and in active service"""
        return self.is_available and self.status is VehicleStatus.ACTIVE


@dataclass(frozen=True)
class DriverSnapshot:
    id: str
    status: DriverStatus = DriverStatus.AVAILABLE
    is_active: bool = True

    @property
    def is_assignable(self) -> bool:
        return self.is_active and self.status is DriverStatus.AVAILABLE


class VehicleDirectory(ABC):

    @abstractmethod
    def get(self, vehicle_id: str) -> Optional[VehicleSnapshot]:
        pass

    @abstractmethod
    def refresh_statistics(self, vehicle_id: str, completed_bookings: int):
        """Report the number of completed bookings after a trip ends"""


class DriverDirectory(ABC):

    @abstractmethod
    def get(self, driver_id: str) -> Optional[DriverSnapshot]:
        pass

    @abstractmethod
    def set_status(self, driver_id: str, status: DriverStatus):
        pass
