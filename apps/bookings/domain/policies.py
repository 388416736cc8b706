"""Cancellation and modification windows for bookings."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from shared.domain.value_objects import Money


@dataclass(frozen=True)
class RefundTier:
    """Refund share granted when cancelling at least `hours_before` hours ahead."""
    hours_before: int
    share: Decimal


DEFAULT_REFUND_TIERS = (
    RefundTier(24, Decimal('1.00')),
    RefundTier(12, Decimal('0.50')),
)


@dataclass(frozen=True)
class CancellationPolicy:
    """
    Rules for cancelling a booking

    deadline_hours: cancellation is refused once the start is closer
    than this. refund_tiers: checked from the longest notice down; the first
    tier whose notice is met decides the share of the total refunded.
    Anything below the last tier refunds nothing.
    """
    deadline_hours: int = 24
    modification_deadline_hours: int = 4
    refund_tiers: tuple = field(default=DEFAULT_REFUND_TIERS)

    @property
    def deadline(self) -> timedelta:
        return timedelta(hours=self.deadline_hours)

    @property
    def modification_deadline(self) -> timedelta:
        return timedelta(hours=self.modification_deadline_hours)

    def refund_share(self, start: datetime, at: datetime) -> Decimal:
        notice = start - at
        for tier in sorted(self.refund_tiers, key=lambda t: t.hours_before, reverse=True):
            if notice >= timedelta(hours=tier.hours_before):
                return tier.share
        return Decimal('0')

    def refund_for(self, total: Money, start: datetime, at: datetime) -> Money:
        return (total * self.refund_share(start, at)).rounded()
