"""
Domain building blocks shared by bookings and payments

Bookings and payments are aggregates: identified by a UUID, stamped in
UTC, and carrying the events they raise until the unit of work that
saved them commits. Money and time ranges are value objects.
"""

import copy
from abc import ABC
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import List
from uuid import UUID, uuid4

from shared.domain.exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(kw_only=True)
class Entity(ABC):
    """Identity is the UUID; two loads of the same row compare equal"""
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        for name in ('created_at', 'updated_at'):
            if getattr(self, name).tzinfo is None:
                raise ValidationError(f"{type(self).__name__}.{name} must be timezone-aware")

    def __eq__(self, other):
        return isinstance(other, self.__class__) and self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def snapshot(self) -> dict:
        """
        Deep copy of every public field

        Used where identity equality is not enough, e.g. to prove a refused
        command left a booking untouched.
        """
        return {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(self)
            if not f.name.startswith('_')
        }

    def touch(self, at: datetime | None = None):
        self.updated_at = at or utcnow()


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable, compared field by field"""


@dataclass(kw_only=True, eq=False)
class Aggregate(Entity):
    """Entity that records events for publishing after commit"""
    _events: List['DomainEvent'] = field(default_factory=list, repr=False, init=False, compare=False)

    def add_event(self, event: 'DomainEvent'):
        self._events.append(event)

    def clear_events(self):
        self._events.clear()

    @property
    def events(self) -> List['DomainEvent']:
        return list(self._events)

    def __deepcopy__(self, memo):
        # Copies handed out by repositories start with no pending events
        clone = copy.copy(self)
        for f in fields(self):
            if f.name != '_events':
                object.__setattr__(clone, f.name, copy.deepcopy(getattr(self, f.name), memo))
        object.__setattr__(clone, '_events', [])
        return clone


@dataclass(kw_only=True)
class DomainEvent:
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)
    aggregate_id: UUID | None = None

    def to_dict(self) -> dict:
        """Log-friendly header of the event; subclasses add their payload"""
        return {
            'event_id': str(self.event_id),
            'event_type': type(self).__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id else None,
        }
