import re
from datetime import datetime, timezone
from itertools import count
from uuid import UUID

import pytest

from shared.domain.exceptions import StorageError, ValidationError
from shared.infrastructure.identifiers import IdGenerator, allocate_unique, coerce_uuid

AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_identifier_formats():
    ids = IdGenerator()

    assert re.fullmatch(r"BK2026\d{6}", ids.booking_number(AT))
    assert re.fullmatch(r"TXN20260302\d{6}", ids.transaction_id(AT))
    assert re.fullmatch(r"[0-9a-f]{32}", ids.correlation_id())
    assert ids.correlation_id() != ids.correlation_id()


def test_allocate_unique_skips_taken_identifiers():
    sequence = count(1)
    taken = {"BK2026000001", "BK2026000002"}

    allocated = allocate_unique(lambda: f"BK2026{next(sequence):06d}", taken.__contains__)

    assert allocated == "BK2026000003"


def test_allocate_unique_gives_up():
    with pytest.raises(StorageError):
        allocate_unique(lambda: "BK2026000001", lambda candidate: True, attempts=3)


def test_coerce_uuid():
    value = "6f1c1c1e-7a8e-4a5c-9a51-0d7f2f3b9c11"

    assert coerce_uuid(value) == UUID(value)
    assert coerce_uuid(UUID(value)) == UUID(value)
    with pytest.raises(ValidationError):
        coerce_uuid("BK2026000001", "booking_id")
    with pytest.raises(ValidationError):
        coerce_uuid(None)
