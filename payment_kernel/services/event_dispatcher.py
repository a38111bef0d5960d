"""
InMemoryEventDispatcher -- in-process delivery of domain events.

Responsibility:
    Hands every dispatched event to subscribed handlers and keeps a
    bounded history of recent events.  Useful as the default dispatcher
    for single-process hosts and as the recording dispatcher in tests.

Architecture position:
    Kernel > Services.  Implements the EventDispatcher Protocol.

Invariants enforced:
    - Delivery is fire-and-forget from the publisher's view: a failing
      handler is logged with its traceback and the remaining handlers
      still run.  The publisher never sees handler errors.
    - History is kept in dispatch order and never grows past
      ``history_limit``; the oldest events are dropped first.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Callable
from typing import TypeVar

from payment_kernel.domain.events import DomainEvent
from payment_kernel.logging_config import get_logger

logger = get_logger("services.events")

EventT = TypeVar("EventT", bound=DomainEvent)
EventHandler = Callable[[DomainEvent], None]

DEFAULT_HISTORY_LIMIT = 1000


class InMemoryEventDispatcher:
    """
    Synchronous dispatcher with per-type subscriptions.

    Handlers subscribe either to an event class (matched with isinstance,
    so subscribing to DomainEvent receives everything) or to an
    ``event_type`` string such as ``"payment.completed"``.

    Contract:
        ``history_limit`` caps the recorded history; 0 disables recording
        and None keeps every event (tests only).
    """

    def __init__(self, history_limit: int | None = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit is not None and history_limit < 0:
            raise ValueError("history_limit cannot be negative")
        self._history: deque[DomainEvent] = deque(maxlen=history_limit)
        self._handlers: dict[type[DomainEvent] | str, list[EventHandler]] = defaultdict(list)

    @property
    def events(self) -> list[DomainEvent]:
        """Recorded events, oldest first."""
        return list(self._history)

    @property
    def history_limit(self) -> int | None:
        return self._history.maxlen

    def subscribe(self, event_type: type[DomainEvent] | str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def dispatch(self, event: DomainEvent) -> None:
        self._history.append(event)
        logger.info("domain_event_dispatched", extra=event.to_log_dict())

        for handler in self._handlers_for(event):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event.event_type,
                        "event_id": event.event_id,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )

    def _handlers_for(self, event: DomainEvent) -> list[EventHandler]:
        matched: list[EventHandler] = list(self._handlers.get(event.event_type, ()))
        for key, handlers in self._handlers.items():
            if isinstance(key, type) and isinstance(event, key):
                matched.extend(handlers)
        return matched

    def events_of_type(self, event_class: type[EventT]) -> list[EventT]:
        return [e for e in self._history if isinstance(e, event_class)]

    def clear(self) -> None:
        self._history.clear()
