"""
Event Bus
=========

Typed publish/subscribe hub shared by executors in one runtime.

Delivery is covariant: a handler subscribed to an event class receives every
published event that is an instance of that class, so a subscription to
AgentEvent sees everything. Dispatch is synchronous on the publisher's call
stack, in subscription order. Handlers that need to do slow work should hand
it off (e.g. schedule a task) instead of blocking the publisher.

A handler that raises is logged and skipped; the remaining handlers still
receive the event.
"""

import threading
from typing import Any, Callable, TypeVar

import structlog

from agentweave.core.domain.events import AgentEvent

E = TypeVar("E", bound=AgentEvent)

EventHandler = Callable[[Any], None]


class EventBus:
    """
    In-process event bus with covariant, ordered, synchronous delivery.

    The subscription list is guarded by a lock and copied before dispatch,
    so publishers on different threads and handlers that (un)subscribe
    during delivery are both safe.

    Example:
        >>> bus = EventBus()
        >>> seen = []
        >>> bus.subscribe(AgentEvent, seen.append)
        >>> bus.publish(AgentStartedEvent(agent_name="writer"))
        >>> len(seen)
        1
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[type[AgentEvent], EventHandler]] = []
        self._lock = threading.Lock()
        self.logger = structlog.get_logger().bind(component="event_bus")

    def subscribe(
        self, event_type: type[E], handler: Callable[[E], None]
    ) -> Callable[[E], None]:
        """
        Register a handler for an event class and all of its subclasses.

        Args:
            event_type: Event class to listen for
            handler: Callable invoked with each matching event

        Returns:
            The handler, for use with unsubscribe()
        """
        with self._lock:
            self._subscriptions.append((event_type, handler))
        return handler

    def unsubscribe(self, event_type: type[AgentEvent], handler: EventHandler) -> bool:
        """
        Remove a handler registration. No further events reach it afterwards.

        Returns:
            True if a registration was removed
        """
        with self._lock:
            for index, (registered_type, registered) in enumerate(self._subscriptions):
                if registered_type is event_type and registered == handler:
                    del self._subscriptions[index]
                    return True
        return False

    def publish(self, event: AgentEvent) -> None:
        """Deliver an event to every matching handler in subscription order."""
        with self._lock:
            subscriptions = list(self._subscriptions)

        for event_type, handler in subscriptions:
            if not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    "event.handler.failed",
                    event_type=event.event_type,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def clear(self) -> None:
        """Drop every subscription."""
        with self._lock:
            self._subscriptions.clear()

    def subscriber_count(self, event_type: type[AgentEvent] | None = None) -> int:
        """
        Count registrations, optionally only those for exactly event_type.
        """
        with self._lock:
            if event_type is None:
                return len(self._subscriptions)
            return sum(1 for t, _ in self._subscriptions if t is event_type)
