"""
Message Bus

Routes rental commands to their single handler and committed domain
events to every subscriber interested in them.

Event subscribers are matched along the event's class hierarchy, so a
subscriber registered for DomainEvent sees every event. A failing
subscriber is logged and skipped: by the time events are published the
unit of work has already committed.
"""

from typing import Any, Callable, Dict, Iterable, List, Type
import logging
import threading

from django.core.exceptions import ImproperlyConfigured

from shared.domain.base import DomainEvent
from shared.domain.exceptions import RentalError

logger = logging.getLogger(__name__)


class MessageBus:

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._command_handlers: Dict[Type, Callable] = {}

    def register_event_handler(self, event_type: Type[DomainEvent], handler: Callable[[DomainEvent], None]):
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {_name(handler)} to {event_type.__name__}")

    def register_command_handler(self, command_type: Type, handler: Callable[[Any], Any]):
        """Commands have exactly one handler; registering a second is a wiring bug"""
        with self._lock:
            if command_type in self._command_handlers:
                raise ImproperlyConfigured(f"{command_type.__name__} already has a handler")
            self._command_handlers[command_type] = handler

    def handlers_for(self, event: DomainEvent) -> List[Callable]:
        with self._lock:
            return [
                handler
                for klass in type(event).__mro__
                for handler in self._subscribers.get(klass, ())
            ]

    def handle_command(self, command: Any) -> Any:
        name = type(command).__name__
        with self._lock:
            handler = self._command_handlers.get(type(command))
        if handler is None:
            raise ImproperlyConfigured(f"No handler registered for {name}")

        logger.debug(f"Handling {name}")
        try:
            return handler(command)
        except RentalError as e:
            # Refusals are part of normal operation
            logger.info(f"{name} refused: {e.__class__.__name__}: {e}")
            raise
        except Exception:
            logger.exception(f"{name} crashed")
            raise

    def publish_events(self, events: Iterable[DomainEvent]):
        for event in events:
            handlers = self.handlers_for(event)
            logger.info(
                f"Publishing {type(event).__name__} to {len(handlers)} subscriber(s)",
                extra={'event': event.to_dict()},
            )
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        f"Subscriber {_name(handler)} failed on {type(event).__name__} "
                        f"for aggregate {event.aggregate_id}"
                    )


def _name(handler) -> str:
    return getattr(handler, '__name__', type(handler).__name__)
