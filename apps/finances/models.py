"""Payment ledger persistence models for the rental core."""

from __future__ import annotations

from decimal import Decimal

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.finances.domain.entities import PaymentMethod, PaymentType, TransactionStatus


def _choices(enum_cls) -> list[tuple[str, str]]:
    return [(member.value, member.value.replace('_', ' ').capitalize()) for member in enum_cls]


class Payment(models.Model):
    """Signed ledger entry of a booking. Refunds carry a negative amount."""

    class Gateway(models.TextChoices):
        STRIPE = "stripe", _("Stripe")
        PAYPAL = "paypal", _("PayPal")
        BANK = "bank", _("Bank transfer")
        MANUAL = "manual", _("Manual")

    id = models.UUIDField(primary_key=True, editable=False)
    transaction_id = models.CharField(max_length=32, unique=True, editable=False)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="payments",
    )

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    type = models.CharField(
        max_length=20,
        choices=_choices(PaymentType),
        default=PaymentType.PAYMENT.value,
    )
    status = models.CharField(
        max_length=20,
        choices=_choices(TransactionStatus),
        default=TransactionStatus.PENDING.value,
    )
    method = models.CharField(
        max_length=20,
        choices=_choices(PaymentMethod),
        default=PaymentMethod.CREDIT_CARD.value,
    )
    gateway = models.CharField(max_length=20, choices=Gateway.choices, default=Gateway.MANUAL)

    correlation_id = models.CharField(max_length=64, blank=True, db_index=True)
    gateway_transaction_id = models.CharField(max_length=128, blank=True)
    gateway_payment_id = models.CharField(max_length=128, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)
    failure_reason = models.TextField(blank=True)

    commission_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    refunded_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    original_payment = models.ForeignKey(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="refunds",
    )

    description = models.CharField(max_length=255, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["booking", "type", "status"]),
        ]

    def __str__(self) -> str:
        return f"Payment {self.transaction_id} ({self.status})"
