"""
Pricing Calculator

Stateless functions that turn vehicle rates and a rental period into the
amounts stored on a booking. Nothing here reads or writes storage.

    base       = billable units x unit rate
    subtotal   = base - discount
    tax        = subtotal x tax rate
    total      = subtotal + tax
    commission = subtotal x commission rate   (platform share, not added)

The suggested price is advisory and never replaces the charged total.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import Money, TimeRange, to_decimal
from apps.bookings.domain.entities import DurationUnit

DEMAND_WINDOW = timedelta(days=7)
DEMAND_STEP = Decimal('0.1')

SUMMER_MONTHS = frozenset({6, 7, 8})
HOLIDAY_MONTHS = frozenset({12, 1})
SUMMER_MULTIPLIER = Decimal('1.2')
HOLIDAY_MULTIPLIER = Decimal('1.15')

RATING_STEP = Decimal('0.1')
NEUTRAL_RATING = Decimal('3')
BOOKINGS_STEP = Decimal('0.01')
MAX_POPULARITY_BONUS = Decimal('0.5')


@dataclass(frozen=True)
class VehicleRates:
    """Per-unit prices of a vehicle; a missing rate means the unit is not offered"""
    daily: Decimal | None = None
    hourly: Decimal | None = None
    weekly: Decimal | None = None
    monthly: Decimal | None = None
    currency: str = 'USD'

    def for_unit(self, unit: DurationUnit) -> Decimal:
        rate = {
            DurationUnit.HOUR: self.hourly,
            DurationUnit.DAY: self.daily,
            DurationUnit.WEEK: self.weekly,
            DurationUnit.MONTH: self.monthly,
        }[unit]
        if rate is None or to_decimal(rate) <= 0:
            raise ValidationError(f"Vehicle has no {unit.value} rate", unit=unit.value)
        return to_decimal(rate)


@dataclass(frozen=True)
class PriceQuote:
    units: int
    unit: DurationUnit
    base: Money
    discount: Money
    tax: Money
    commission: Money
    total: Money

    @property
    def subtotal(self) -> Money:
        return self.base - self.discount


def _whole_months(start: datetime, end: datetime) -> int:
    # Calendar fields are compared in the start's zone
    if start.tzinfo is not None:
        end = end.astimezone(start.tzinfo)
    months = (end.year - start.year) * 12 + (end.month - start.month)
    # The last month only counts once its anniversary has been reached
    if (end.day, end.time()) < (start.day, start.time()):
        months -= 1
    return months


def billable_units(period: TimeRange, unit: DurationUnit) -> int:
    """Whole units between start and end, never less than one"""
    if unit is DurationUnit.MONTH:
        units = _whole_months(period.start, period.end)
    else:
        step = {
            DurationUnit.HOUR: timedelta(hours=1),
            DurationUnit.DAY: timedelta(days=1),
            DurationUnit.WEEK: timedelta(weeks=1),
        }[unit]
        units = period.duration // step
    return max(1, units)


def base_price(rates: VehicleRates, period: TimeRange, unit: DurationUnit = DurationUnit.DAY) -> Money:
    return Money(rates.for_unit(unit) * billable_units(period, unit), rates.currency).rounded()


def quote(
    rates: VehicleRates,
    period: TimeRange,
    unit: DurationUnit = DurationUnit.DAY,
    *,
    discount=Decimal('0'),
    tax_rate=Decimal('0.10'),
    commission_rate=Decimal('0.03'),
) -> PriceQuote:
    tax_rate = to_decimal(tax_rate)
    commission_rate = to_decimal(commission_rate)
    if tax_rate < 0 or commission_rate < 0:
        raise ValidationError("Rates cannot be negative")

    base = base_price(rates, period, unit)
    discount = Money(discount, rates.currency).rounded()
    if discount > base:
        raise ValidationError(
            "Discount cannot exceed the base amount",
            base=str(base.amount),
            discount=str(discount.amount),
        )
    subtotal = base - discount
    tax = (subtotal * tax_rate).rounded()
    commission = (subtotal * commission_rate).rounded()

    return PriceQuote(
        units=billable_units(period, unit),
        unit=unit,
        base=base,
        discount=discount,
        tax=tax,
        commission=commission,
        total=subtotal + tax,
    )


def demand_multiplier(nearby_bookings: int) -> Decimal:
    """+10% per other booking starting within a week of the requested period"""
    return 1 + DEMAND_STEP * max(0, nearby_bookings)


def demand_window(period: TimeRange) -> TimeRange:
    return period.expanded(DEMAND_WINDOW, DEMAND_WINDOW)


def seasonal_multiplier(moment: datetime) -> Decimal:
    if moment.month in SUMMER_MONTHS:
        return SUMMER_MULTIPLIER
    if moment.month in HOLIDAY_MONTHS:
        return HOLIDAY_MULTIPLIER
    return Decimal('1.0')


def popularity_multiplier(average_rating, total_bookings: int) -> Decimal:
    """
    Rating above or below 3 moves the price 10% per star; every completed
    booking adds 1%, capped at +50%. An unrated vehicle counts as rating 0.
    """
    rating = to_decimal(average_rating or 0)
    rating_factor = 1 + (rating - NEUTRAL_RATING) * RATING_STEP
    bookings_factor = 1 + min(BOOKINGS_STEP * max(0, total_bookings or 0), MAX_POPULARITY_BONUS)
    return rating_factor * bookings_factor


def suggested_price(
    rates: VehicleRates,
    period: TimeRange,
    *,
    nearby_bookings: int,
    average_rating=None,
    total_bookings: int = 0,
    unit: DurationUnit = DurationUnit.DAY,
) -> Money:
    base = base_price(rates, period, unit)
    factor = (
        demand_multiplier(nearby_bookings)
        * seasonal_multiplier(period.start)
        * popularity_multiplier(average_rating, total_bookings)
    )
    return (base * factor).rounded()
