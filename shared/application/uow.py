"""
Unit of Work Pattern

Manages transactions, exclusive locks and ensures that domain events are
published only after a successful commit.

Two implementations share one contract:
- DjangoUnitOfWork: transaction.atomic() plus SELECT ... FOR UPDATE
- InMemoryUnitOfWork: staged writes plus per-key threading.RLock

Lock order is vehicle before booking. Every lock is held until the unit of
work ends.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional
import copy
import logging
import threading

from django.db import DatabaseError, transaction

from shared.domain.base import DomainEvent
from shared.domain.exceptions import StorageError

logger = logging.getLogger(__name__)

EventPublisher = Callable[[List[DomainEvent]], None]


class AbstractUnitOfWork(ABC):
    """
    Abstract Unit of Work pattern

    Repositories are available as ``uow.bookings`` and ``uow.payments``
    while the unit of work is open.
    """

    bookings: Any
    payments: Any

    def __init__(self, publish: Optional[EventPublisher] = None):
        self._publish = publish
        self._events: List[DomainEvent] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @abstractmethod
    def lock_vehicle(self, vehicle_id: str):
        """Take the exclusive per-vehicle lock used around conflict checks"""
        pass

    @abstractmethod
    def lock_booking(self, booking_id):
        """Take the exclusive per-booking lock used by payment writes"""
        pass

    def collect_events(self, aggregate):
        """
        Collect events from aggregate root

        Extracts all domain events from the aggregate and
        clears them from the aggregate.
        """
        if hasattr(aggregate, 'events'):
            new_events = aggregate.events
            if new_events:
                self._events.extend(new_events)
                aggregate.clear_events()
                logger.debug(
                    f"Collected {len(new_events)} events from "
                    f"{aggregate.__class__.__name__} (ID: {aggregate.id})"
                )

    def _take_events(self) -> List[DomainEvent]:
        events = self._events.copy()
        self._events.clear()
        return events

    def _publish_events(self, events: List[DomainEvent]):
        """
        Publish collected events to message bus

        Called after successful transaction commit. Subscriber failures are
        isolated by the bus, the committed state stands either way.
        """
        if not events:
            return
        if self._publish is None:
            logger.debug(f"No publisher configured, dropping {len(events)} events")
            return

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            self._publish(events)
        except Exception as e:
            logger.error(f"Error publishing events: {e}", exc_info=True)


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Manages Django database transactions and ensures domain events
    are published after successful commit.

    Usage:
        with DjangoUnitOfWork(publish=bus.publish_events) as uow:
            uow.lock_vehicle(booking.vehicle_id)
            booking = uow.bookings.get(booking_id, lock=True)

            booking.confirm(now)

            uow.collect_events(booking)
            uow.bookings.save(booking)

            # Transaction commits here
        # Events are published after commit

    Database errors raised inside the block or at commit surface as
    StorageError.
    """

    def __init__(self, publish: Optional[EventPublisher] = None):
        super().__init__(publish)
        self._transaction = None

    def __enter__(self):
        """Start database transaction"""
        from apps.bookings.repositories import DjangoBookingRepository
        from apps.finances.repositories import DjangoPaymentRepository

        self.bookings = DjangoBookingRepository()
        self.payments = DjangoPaymentRepository()

        self._transaction = transaction.atomic()
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Complete or rollback transaction"""
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

        try:
            self._transaction.__exit__(exc_type, exc_val, exc_tb)
        except DatabaseError as e:
            logger.error(f"Transaction commit failed: {e}")
            raise StorageError(f"Transaction commit failed: {e}") from e

        if exc_type is not None and issubclass(exc_type, DatabaseError):
            raise StorageError(f"Storage failure: {exc_val}") from exc_val
        return False

    def commit(self):
        """
        Schedule event publishing

        Events are published using Django's transaction.on_commit()
        to ensure they're only sent after database commit succeeds.
        """
        events = self._take_events()
        logger.debug(f"Committing transaction with {len(events)} events")

        if events:
            transaction.on_commit(lambda: self._publish_events(events))

    def rollback(self):
        """Rollback changes and discard events"""
        logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._events.clear()

    def lock_vehicle(self, vehicle_id: str):
        from apps.bookings.models import VehicleLock

        VehicleLock.objects.get_or_create(vehicle_id=vehicle_id)
        VehicleLock.objects.select_for_update().get(vehicle_id=vehicle_id)
        logger.debug(f"Locked vehicle {vehicle_id}")

    def lock_booking(self, booking_id):
        from apps.bookings.models import Booking as BookingModel

        list(BookingModel.objects.select_for_update().filter(pk=booking_id).values_list('pk', flat=True))


class InMemoryStore:
    """
    Process-local storage shared by InMemoryUnitOfWork instances

    tables: {table name: {key: committed object}}. Locks are created on
    first use and never removed.
    """

    def __init__(self, lock_timeout: float = 30.0):
        self.tables: Dict[str, Dict[Any, Any]] = defaultdict(dict)
        self.lock_timeout = lock_timeout
        self._guard = threading.Lock()
        self._locks: Dict[tuple, threading.RLock] = {}

    def lock_for(self, kind: str, key) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault((kind, key), threading.RLock())

    def get(self, table: str, key):
        with self._guard:
            obj = self.tables[table].get(key)
        return copy.deepcopy(obj)

    def all(self, table: str) -> Dict[Any, Any]:
        with self._guard:
            items = dict(self.tables[table])
        return copy.deepcopy(items)

    def apply(self, writes: Dict[tuple, Any]):
        with self._guard:
            for (table, key), obj in writes.items():
                self.tables[table][key] = obj


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    In-memory implementation of Unit of Work

    Writes are staged as copies and applied to the store at commit, so a
    failed unit commits nothing. Locks are per key re-entrant locks held
    until exit. Events are published after the locks are released.
    """

    def __init__(self, store: InMemoryStore, publish: Optional[EventPublisher] = None):
        super().__init__(publish)
        self.store = store
        self._staged: Dict[tuple, Any] = {}
        self._held: List[threading.RLock] = []
        self._held_keys: set = set()
        self._committed_events: List[DomainEvent] = []

    def __enter__(self):
        from apps.bookings.repositories import InMemoryBookingRepository
        from apps.finances.repositories import InMemoryPaymentRepository

        self.bookings = InMemoryBookingRepository(self)
        self.payments = InMemoryPaymentRepository(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._release_locks()
        self._publish_events(self._committed_events)
        self._committed_events = []
        return False

    def commit(self):
        logger.debug(f"Committing {len(self._staged)} staged writes with {len(self._events)} events")
        self.store.apply(self._staged)
        self._staged = {}
        self._committed_events = self._take_events()

    def rollback(self):
        logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._staged = {}
        self._events.clear()

    def _lock(self, kind: str, key):
        if (kind, key) in self._held_keys:
            return
        lock = self.store.lock_for(kind, key)
        if not lock.acquire(timeout=self.store.lock_timeout):
            raise StorageError(f"Timed out waiting for {kind} lock {key}", kind=kind, key=str(key))
        self._held.append(lock)
        self._held_keys.add((kind, key))

    def _release_locks(self):
        while self._held:
            self._held.pop().release()
        self._held_keys.clear()

    def lock_vehicle(self, vehicle_id: str):
        self._lock('vehicle', vehicle_id)

    def lock_booking(self, booking_id):
        self._lock('booking', booking_id)

    # ===== Storage access for in-memory repositories =====

    def read(self, table: str, key):
        if (table, key) in self._staged:
            return copy.deepcopy(self._staged[(table, key)])
        return self.store.get(table, key)

    def read_all(self, table: str) -> list:
        items = self.store.all(table)
        for (staged_table, key), obj in self._staged.items():
            if staged_table == table:
                items[key] = copy.deepcopy(obj)
        return list(items.values())

    def stage(self, table: str, key, obj):
        self._staged[(table, key)] = copy.deepcopy(obj)
