"""Celery tasks for the finances domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from apps.bootstrap import get_core
from shared.domain.exceptions import RentalError, StorageError
from shared.domain.value_objects import to_decimal

logger = logging.getLogger(__name__)


@shared_task(name="finances.charge_booking")
def charge_booking(booking_id: str, amount: str | None = None, method: str = "credit_card",
                   payment_details: dict | None = None) -> dict:
    """
    Charge a booking through the gateway fallback chain.

    Rejected requests (unknown booking, wrong status, nothing owed) are
    reported in the result; storage failures propagate so the worker
    records the task as failed.
    """
    core = get_core()
    try:
        outcome = core.charge(
            booking_id,
            amount=to_decimal(amount) if amount is not None else None,
            method=method,
            payment_details=payment_details or {},
        )
    except StorageError:
        raise
    except RentalError as exc:
        logger.warning("Charge for booking %s rejected: %s", booking_id, exc)
        return {"booking_id": str(booking_id), "error": exc.__class__.__name__, "message": str(exc)}

    logger.info(
        "Charge for booking %s finished: %s via %s",
        booking_id,
        outcome.payment.status.value,
        outcome.payment.gateway,
    )
    return outcome.to_dict()
