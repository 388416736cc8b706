"""Shared fixtures: a frozen clock, in-memory fleet, fake gateways and cores."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.bootstrap import in_memory_core
from apps.bookings.domain.policies import CancellationPolicy
from apps.bookings.domain.pricing import VehicleRates
from apps.finances.gateways import BankTransferGateway, GatewayResult, PaymentGateway
from apps.fleet.memory import InMemoryDriverDirectory, InMemoryVehicleDirectory
from apps.fleet.ports import DriverSnapshot, VehicleSnapshot, VehicleStatus
from shared.domain.exceptions import ExternalServiceError, PaymentDeclined

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeGateway(PaymentGateway):
    """Scripted gateway: 'succeed', 'decline', 'error' or 'crash', optionally slow.

    A delay longer than request.timeout behaves like an HTTP client timeout:
    the call is abandoned at the deadline and never settles.
    """

    def __init__(self, name: str, outcome: str = "succeed", delay: float = 0.0):
        self.name = name
        self.outcome = outcome
        self.delay = delay
        self.requests = []
        self.settled = []
        self._lock = threading.Lock()

    def charge(self, request):
        with self._lock:
            self.requests.append(request)
            n = len(self.requests)
        if self.delay:
            if request.timeout is not None and self.delay > request.timeout:
                time.sleep(request.timeout)
                raise ExternalServiceError(f"{self.name} did not answer within {request.timeout}s",
                                           gateway=self.name)
            time.sleep(self.delay)
        if self.outcome == "decline":
            raise PaymentDeclined(f"{self.name} declined the card", gateway=self.name,
                                  response={"status": "declined"})
        if self.outcome == "error":
            raise ExternalServiceError(f"{self.name} unavailable", gateway=self.name)
        if self.outcome == "crash":
            raise RuntimeError("unexpected field in provider response")
        with self._lock:
            self.settled.append(request)
        return GatewayResult(
            transaction_id=f"{self.name}-txn-{n}",
            payment_id=f"{self.name}-pay-{n}",
            raw={"status": "succeeded"},
        )


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def vehicles():
    return InMemoryVehicleDirectory([
        VehicleSnapshot(
            id="v1",
            rates=VehicleRates(daily=Decimal("50.00"), hourly=Decimal("8.00"), weekly=Decimal("300.00")),
        ),
        VehicleSnapshot(
            id="v2",
            rates=VehicleRates(daily=Decimal("80.00")),
            average_rating=Decimal("4.5"),
            total_bookings=12,
        ),
        VehicleSnapshot(
            id="v-maintenance",
            rates=VehicleRates(daily=Decimal("40.00")),
            status=VehicleStatus.MAINTENANCE,
        ),
    ])


@pytest.fixture
def drivers():
    return InMemoryDriverDirectory([
        DriverSnapshot(id="d1"),
        DriverSnapshot(id="d-offline", is_active=False),
    ])


@pytest.fixture
def gateways():
    return [FakeGateway("stripe"), FakeGateway("paypal")]


@pytest.fixture
def bank():
    return BankTransferGateway(account_name="Rental Fleet Ltd", iban="GB33BUKB20201555555555", bank_name="Test Bank")


@pytest.fixture
def make_core(vehicles, drivers, clock, gateways, bank):
    def _make(**overrides):
        options = dict(
            gateways=gateways,
            bank=bank,
            clock=clock,
            policy=CancellationPolicy(deadline_hours=24),
            tax_rate="0.10",
            commission_rate="0.03",
            payment_commission_rate="0.03",
            attempt_timeout=1.0,
        )
        options.update(overrides)
        return in_memory_core(vehicles, drivers, **options)

    return _make


@pytest.fixture
def core(make_core):
    return make_core()


@pytest.fixture
def book(core):
    """Create a booking for vehicle v1 starting `hours` after NOW."""

    def _book(hours: float = 48, days: int = 3, vehicle_id: str = "v1", **kwargs):
        start = NOW + timedelta(hours=hours)
        return core.create_booking(
            vehicle_id=vehicle_id,
            renter_id=kwargs.pop("renter_id", "r1"),
            start=start,
            end=start + timedelta(days=days),
            **kwargs,
        )

    return _book
