"""Booking persistence models for the rental core."""

from __future__ import annotations

from decimal import Decimal

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.bookings.domain.entities import BookingStatus, DurationUnit, PaymentStatus


def _choices(enum_cls) -> list[tuple[str, str]]:
    return [(member.value, member.value.replace('_', ' ').capitalize()) for member in enum_cls]


class Booking(models.Model):
    """Rental of one vehicle for a half-open time range."""

    id = models.UUIDField(primary_key=True, editable=False)
    booking_number = models.CharField(max_length=20, unique=True, editable=False)

    # Collaborator references, not foreign keys: vehicles, renters and
    # drivers live outside this service.
    vehicle_id = models.CharField(max_length=64, db_index=True)
    renter_id = models.CharField(max_length=64, db_index=True)
    driver_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)

    start_at = models.DateTimeField()
    end_at = models.DateTimeField()
    duration_unit = models.CharField(
        max_length=10,
        choices=_choices(DurationUnit),
        default=DurationUnit.DAY.value,
    )

    currency = models.CharField(max_length=3, default="USD")
    base_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    commission_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=_("Platform share of the subtotal. Tracked, never added to the total."),
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    suggested_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Advisory dynamic price at creation time."),
    )

    status = models.CharField(
        max_length=20,
        choices=_choices(BookingStatus),
        default=BookingStatus.PENDING.value,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=_choices(PaymentStatus),
        default=PaymentStatus.PENDING.value,
        help_text=_("Derived from the payment ledger."),
    )

    notes = models.TextField(blank=True)
    special_requests = models.TextField(blank=True)

    cancellation_reason = models.CharField(max_length=255, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    no_show_at = models.DateTimeField(null=True, blank=True)

    pickup_time = models.DateTimeField(null=True, blank=True)
    dropoff_time = models.DateTimeField(null=True, blank=True)
    pickup_location = models.CharField(max_length=255, blank=True)
    dropoff_location = models.CharField(max_length=255, blank=True)
    fuel_level_start = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    fuel_level_end = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    odometer_start = models.PositiveIntegerField(null=True, blank=True)
    odometer_end = models.PositiveIntegerField(null=True, blank=True)
    actual_distance = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    damage_report = models.TextField(blank=True)

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["start_at", "created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_at__gt=models.F("start_at")),
                name="booking_valid_period",
            ),
        ]
        indexes = [
            models.Index(fields=["vehicle_id", "status", "start_at", "end_at"]),
            models.Index(fields=["status"]),
        ]

    def __str__(self) -> str:
        return f"Booking {self.booking_number} for vehicle {self.vehicle_id}"


class VehicleLock(models.Model):
    """
    One row per vehicle, locked with SELECT ... FOR UPDATE

    Serializes conflict check and status write of create/confirm for a
    vehicle. Vehicles themselves are not stored here.
    """

    vehicle_id = models.CharField(max_length=64, primary_key=True)

    class Meta:
        verbose_name = _("Vehicle lock")
        verbose_name_plural = _("Vehicle locks")

    def __str__(self) -> str:
        return f"Lock for vehicle {self.vehicle_id}"
