from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from apps.bookings.domain.entities import DurationUnit
from apps.bookings.domain.pricing import (
    VehicleRates,
    base_price,
    billable_units,
    demand_multiplier,
    popularity_multiplier,
    quote,
    seasonal_multiplier,
    suggested_price,
)
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import Money, TimeRange

START = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
RATES = VehicleRates(
    daily=Decimal("50.00"),
    hourly=Decimal("8.00"),
    weekly=Decimal("300.00"),
    monthly=Decimal("1000.00"),
)


def period(**delta):
    return TimeRange(START, START + timedelta(**delta))


def test_three_day_quote_adds_tax_and_computes_commission_on_subtotal():
    price = quote(RATES, period(days=3), tax_rate="0.10", commission_rate="0.03")

    assert price.units == 3
    assert price.base == Money(Decimal("150.00"))
    assert price.discount == Money(Decimal("0.00"))
    assert price.tax == Money(Decimal("15.00"))
    assert price.total == Money(Decimal("165.00"))
    assert price.commission == Money(Decimal("4.50"))


def test_discount_is_taken_before_tax():
    price = quote(RATES, period(days=3), discount="20", tax_rate="0.10", commission_rate="0.03")

    assert price.subtotal == Money(Decimal("130.00"))
    assert price.tax == Money(Decimal("13.00"))
    assert price.total == Money(Decimal("143.00"))
    assert price.commission == Money(Decimal("3.90"))


def test_discount_larger_than_base_is_rejected():
    with pytest.raises(ValidationError):
        quote(RATES, period(days=1), discount="50.01")


def test_negative_tax_rate_is_rejected():
    with pytest.raises(ValidationError):
        quote(RATES, period(days=1), tax_rate="-0.1")


def test_missing_unit_rate_is_rejected():
    with pytest.raises(ValidationError):
        quote(VehicleRates(daily=Decimal("50")), period(hours=5), DurationUnit.HOUR)


@pytest.mark.parametrize(
    "delta, unit, expected",
    [
        ({"hours": 2}, DurationUnit.DAY, 1),
        ({"days": 2, "hours": 23}, DurationUnit.DAY, 2),
        ({"hours": 5, "minutes": 30}, DurationUnit.HOUR, 5),
        ({"minutes": 10}, DurationUnit.HOUR, 1),
        ({"days": 15}, DurationUnit.WEEK, 2),
        ({"days": 3}, DurationUnit.WEEK, 1),
    ],
)
def test_billable_units_are_whole_units_with_a_minimum_of_one(delta, unit, expected):
    assert billable_units(period(**delta), unit) == expected


def test_months_count_only_reached_anniversaries():
    jan = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)

    assert billable_units(TimeRange(jan, datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)), DurationUnit.MONTH) == 1
    assert billable_units(TimeRange(jan, datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)), DurationUnit.MONTH) == 2
    assert billable_units(TimeRange(jan, datetime(2026, 2, 10, tzinfo=timezone.utc)), DurationUnit.MONTH) == 1



def test_months_across_time_zones_are_counted_in_the_start_zone():
    start = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)
    berlin = ZoneInfo("Europe/Berlin")

    # 12:00 CEST is 10:00 UTC, past the anniversary; 10:30 CEST is 08:30 UTC, short of it
    assert billable_units(TimeRange(start, datetime(2026, 7, 1, 12, 0, tzinfo=berlin)), DurationUnit.MONTH) == 2
    assert billable_units(TimeRange(start, datetime(2026, 7, 1, 10, 30, tzinfo=berlin)), DurationUnit.MONTH) == 1

    price = quote(RATES, TimeRange(start, datetime(2026, 7, 1, 12, 0, tzinfo=berlin)), DurationUnit.MONTH,
                  tax_rate="0", commission_rate="0")
    assert price.base == Money(Decimal("2000.00"))

def test_base_price_is_rate_times_billable_units():
    assert base_price(RATES, period(days=3)) == Money(Decimal("150.00"))
    assert base_price(RATES, period(days=10), DurationUnit.WEEK) == Money(Decimal("300.00"))
    assert base_price(RATES, period(minutes=20), DurationUnit.HOUR) == Money(Decimal("8.00"))


def test_hourly_quote_uses_hourly_rate():
    price = quote(RATES, period(hours=5, minutes=30), DurationUnit.HOUR, tax_rate="0", commission_rate="0")

    assert price.base == Money(Decimal("40.00"))
    assert price.total == Money(Decimal("40.00"))


def test_demand_adds_ten_percent_per_nearby_booking():
    assert demand_multiplier(0) == Decimal("1.0")
    assert demand_multiplier(3) == Decimal("1.3")


@pytest.mark.parametrize(
    "month, expected",
    [(7, Decimal("1.2")), (12, Decimal("1.15")), (1, Decimal("1.15")), (3, Decimal("1.0"))],
)
def test_seasonal_multiplier(month, expected):
    assert seasonal_multiplier(datetime(2026, month, 5, tzinfo=timezone.utc)) == expected


def test_popularity_bonus_is_capped_and_unrated_counts_as_zero():
    assert popularity_multiplier(None, 100) == Decimal("0.7") * Decimal("1.5")
    assert popularity_multiplier(Decimal("3"), 0) == Decimal("1")


def test_suggested_price_combines_all_multipliers():
    july = TimeRange(
        datetime(2026, 7, 1, 10, 0, tzinfo=timezone.utc),
        datetime(2026, 7, 4, 10, 0, tzinfo=timezone.utc),
    )

    price = suggested_price(RATES, july, nearby_bookings=2, average_rating=Decimal("4"), total_bookings=10)

    # 150 x 1.2 demand x 1.2 summer x 1.1 rating x 1.1 bookings
    assert price == Money(Decimal("261.36"))


def test_suggested_price_for_quiet_march_and_neutral_vehicle_is_base():
    price = suggested_price(RATES, period(days=3), nearby_bookings=0, average_rating=Decimal("3"))

    assert price == Money(Decimal("150.00"))
