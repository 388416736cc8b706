"""
Identifier generation

Human readable numbers for bookings and payments plus opaque correlation
ids for gateway calls. Uniqueness is checked against storage by the caller
through allocate_unique().
"""

import logging
import secrets
from datetime import datetime
from typing import Callable
from uuid import UUID, uuid4

from shared.domain.base import utcnow
from shared.domain.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ALLOCATION_ATTEMPTS = 20


class IdGenerator:
    """
    Random identifiers in the platform formats

    - booking number: BK + 4-digit year + 6-digit zero-padded random
    - transaction id: TXN + YYYYMMDD + 6-digit zero-padded random
    - correlation id: uuid4 hex, sent to gateways as the idempotency key
    """

    def _six_digits(self) -> str:
        return f"{secrets.randbelow(1_000_000):06d}"

    def booking_number(self, at: datetime | None = None) -> str:
        at = at or utcnow()
        return f"BK{at.year:04d}{self._six_digits()}"

    def transaction_id(self, at: datetime | None = None) -> str:
        at = at or utcnow()
        return f"TXN{at:%Y%m%d}{self._six_digits()}"

    def correlation_id(self) -> str:
        return uuid4().hex


def allocate_unique(
    generate: Callable[[], str],
    exists: Callable[[str], bool],
    attempts: int = DEFAULT_ALLOCATION_ATTEMPTS,
) -> str:
    """
    Draw identifiers until one is not taken

    Raises StorageError when every attempt collides, which only happens
    when the number space is close to exhausted.
    """
    for attempt in range(1, attempts + 1):
        candidate = generate()
        if not exists(candidate):
            return candidate
        logger.debug(f"Identifier {candidate} already taken (attempt {attempt}/{attempts})")

    raise StorageError(
        f"Could not allocate a unique identifier after {attempts} attempts",
        attempts=attempts,
    )


def coerce_uuid(value, name: str = 'id') -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid {name}: {value!r}", **{name: str(value)}) from e
