"""
Streaming Event Bus
===================

Extends the event bus with pull-based subscriptions: each subscription owns
a bounded buffer that a single consumer drains as an async iterator.

Backpressure policy is drop-oldest. Publishing never blocks; when a
subscription buffer is full the oldest buffered event is discarded and the
subscription's dropped_count is incremented.

Buffers are asyncio queues, so publishing to a bus with open streams must
happen on the event loop thread.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.events import AgentEvent, event_class_for, utcnow

EventFilter = Callable[[AgentEvent], bool]

_CLOSED = object()


@dataclass
class EventSubscription:
    """
    A named pull subscription.

    Attributes:
        subscription_id: Caller-chosen unique id
        event_type: Event class the subscription accepts (covariant)
        event_filter: Optional extra predicate
        buffer_size: Capacity of the buffer before the oldest event is dropped
        created_at: Creation time
        event_count: Events accepted into the buffer
        dropped_count: Events discarded because the buffer was full
    """

    subscription_id: str
    event_type: type[AgentEvent] = AgentEvent
    event_filter: EventFilter | None = None
    buffer_size: int = 100
    created_at: datetime = field(default_factory=utcnow)
    event_count: int = 0
    dropped_count: int = 0
    closed: bool = False

    def matches(self, event: AgentEvent) -> bool:
        if not isinstance(event, self.event_type):
            return False
        return self.event_filter is None or self.event_filter(event)


class _Stream:
    def __init__(self, subscription: EventSubscription):
        self.subscription = subscription
        self.queue: asyncio.Queue = asyncio.Queue()
        self.consuming = False
        self.closed = False

    def offer(self, event: AgentEvent) -> bool:
        """Enqueue, evicting the oldest event when full. Returns True if one was dropped."""
        dropped = False
        while self.queue.qsize() >= self.subscription.buffer_size:
            self.queue.get_nowait()
            dropped = True
        self.queue.put_nowait(event)
        return dropped

    def close(self) -> None:
        """Queue the end marker behind any buffered events."""
        self.closed = True
        self.subscription.closed = True
        self.queue.put_nowait(_CLOSED)


class StreamingEventBus(EventBus):
    """
    Event bus with bounded, filterable streaming subscriptions.

    Live handlers registered with subscribe() keep working exactly as on the
    base bus; every published event is additionally offered to each open
    stream whose type and filter match.

    Example:
        >>> bus = StreamingEventBus()
        >>> bus.create_stream("ui", ToolResultEvent, buffer_size=10)
        >>> async for event in bus.get_event_stream("ui"):
        ...     print(event.tool_name)
    """

    def __init__(self, default_buffer_size: int = 100) -> None:
        super().__init__()
        self.default_buffer_size = default_buffer_size
        self._streams: dict[str, _Stream] = {}
        self.logger = self.logger.bind(component="streaming_event_bus")

    def create_stream(
        self,
        subscription_id: str,
        event_type: type[AgentEvent] = AgentEvent,
        event_filter: EventFilter | None = None,
        buffer_size: int | None = None,
    ) -> EventSubscription:
        """
        Open a new streaming subscription.

        Args:
            subscription_id: Unique id used to consume and close the stream
            event_type: Event class to accept (subclasses included)
            event_filter: Optional predicate applied after the type check
            buffer_size: Buffer capacity, defaults to the bus default

        Returns:
            The subscription descriptor

        Raises:
            ValueError: If the id is already in use or buffer_size < 1
        """
        size = buffer_size if buffer_size is not None else self.default_buffer_size
        if size < 1:
            raise ValueError("buffer_size must be at least 1")
        if subscription_id in self._streams:
            raise ValueError(f"Subscription already exists: {subscription_id}")

        subscription = EventSubscription(
            subscription_id=subscription_id,
            event_type=event_type,
            event_filter=event_filter,
            buffer_size=size,
        )
        self._streams[subscription_id] = _Stream(subscription)
        self.logger.debug(
            "stream.created",
            subscription_id=subscription_id,
            event_type=event_type.event_type,
            buffer_size=size,
        )
        return subscription

    def publish(self, event: AgentEvent) -> None:
        super().publish(event)

        for stream in list(self._streams.values()):
            if stream.closed:
                continue
            subscription = stream.subscription
            try:
                if not subscription.matches(event):
                    continue
            except Exception as e:
                self.logger.error(
                    "stream.filter.failed",
                    subscription_id=subscription.subscription_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            subscription.event_count += 1
            if stream.offer(event):
                subscription.dropped_count += 1
                self.logger.debug(
                    "stream.event.dropped",
                    subscription_id=subscription.subscription_id,
                    dropped_count=subscription.dropped_count,
                )

    async def get_event_stream(
        self,
        subscription_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """
        Consume a subscription as an async iterator.

        Iteration ends when the stream is closed (after the events buffered
        before closing have been delivered) or when cancel_token fires.
        A subscription has a single consumer and cannot be restarted.

        Raises:
            KeyError: If the subscription does not exist or was already consumed
            RuntimeError: If the subscription is already being consumed
        """
        stream = self._streams.get(subscription_id)
        if stream is None:
            raise KeyError(f"Subscription not found: {subscription_id}")
        if stream.consuming:
            raise RuntimeError(f"Subscription already consumed: {subscription_id}")
        stream.consuming = True

        try:
            while True:
                if cancel_token is None:
                    item = await stream.queue.get()
                else:
                    item = await self._get_or_cancel(stream.queue, cancel_token)
                    if item is None:
                        return
                if item is _CLOSED:
                    return
                yield item
        finally:
            if self._streams.get(subscription_id) is stream:
                del self._streams[subscription_id]
            stream.subscription.closed = True

    async def _get_or_cancel(
        self, queue: asyncio.Queue, cancel_token: CancellationToken
    ) -> object | None:
        if cancel_token.cancelled:
            return None
        getter = asyncio.ensure_future(queue.get())
        waiter = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({getter, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    def close_stream(self, subscription_id: str, discard: bool = False) -> bool:
        """
        Close a subscription. Its consumer finishes after draining the buffer.

        A closed stream accepts no new events but stays registered until its
        consumer has finished, so a consumer that starts after the close still
        receives the buffered events.

        Args:
            subscription_id: Subscription to close
            discard: Unregister at once if no consumer has started, dropping
                the buffered events

        Returns:
            True if an open subscription was closed
        """
        stream = self._streams.get(subscription_id)
        if stream is None or stream.closed:
            return False
        stream.close()
        if discard and not stream.consuming:
            del self._streams[subscription_id]
        self.logger.debug("stream.closed", subscription_id=subscription_id)
        return True

    def active_subscriptions(self) -> list[EventSubscription]:
        return [s.subscription for s in self._streams.values() if not s.closed]

    def get_subscription(self, subscription_id: str) -> EventSubscription | None:
        stream = self._streams.get(subscription_id)
        return stream.subscription if stream else None

    def clear(self) -> None:
        """Drop every live handler and close every stream."""
        super().clear()
        for subscription_id in list(self._streams):
            self.close_stream(subscription_id)


class EventFilterBuilder:
    """
    Fluent builder combining event predicates with logical AND.

    Example:
        >>> event_filter = (
        ...     EventFilterBuilder()
        ...     .with_agent_id(agent.agent_id)
        ...     .with_event_type("tool.result")
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self._predicates: list[EventFilter] = []

    def with_event_type(self, event_type: str | type[AgentEvent]) -> "EventFilterBuilder":
        cls = event_class_for(event_type) if isinstance(event_type, str) else event_type
        self._predicates.append(lambda e: isinstance(e, cls))
        return self

    def with_agent_id(self, agent_id: str) -> "EventFilterBuilder":
        self._predicates.append(lambda e: e.agent_id == agent_id)
        return self

    def with_session_id(self, session_id: str) -> "EventFilterBuilder":
        self._predicates.append(lambda e: e.session_id == session_id)
        return self

    def with_time_range(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> "EventFilterBuilder":
        if start is not None:
            self._predicates.append(lambda e: e.timestamp >= start)
        if end is not None:
            self._predicates.append(lambda e: e.timestamp <= end)
        return self

    def with_custom(self, predicate: EventFilter) -> "EventFilterBuilder":
        self._predicates.append(predicate)
        return self

    def build(self) -> EventFilter:
        predicates = list(self._predicates)
        return lambda event: all(p(event) for p in predicates)
