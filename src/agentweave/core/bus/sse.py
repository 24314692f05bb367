"""
Server-Sent Events formatting for streaming subscriptions.

Each event becomes one SSE block:

    id: <event id>
    event: <event type>
    data: <event record as JSON>

followed by a blank line.
"""

import json
import uuid
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable

from agentweave.core.bus.streaming import EventFilter, StreamingEventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.events import AgentEvent


def format_sse(event: AgentEvent) -> str:
    data = json.dumps(event.to_record(), default=str)
    return f"id: {event.event_id}\nevent: {event.event_type}\ndata: {data}\n\n"


class ServerSentEventStream:
    """
    Adapts a streaming subscription into SSE-formatted text blocks.

    The subscription is created on construction and closed by aclose() (or
    when the max_events limit is reached).
    """

    def __init__(
        self,
        bus: StreamingEventBus,
        event_type: type[AgentEvent] = AgentEvent,
        event_filter: EventFilter | None = None,
        buffer_size: int | None = None,
        subscription_id: str | None = None,
    ):
        self.bus = bus
        self.subscription_id = subscription_id or f"sse-{uuid.uuid4()}"
        self.subscription = bus.create_stream(
            self.subscription_id, event_type, event_filter, buffer_size
        )

    async def stream_events(
        self,
        max_events: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        sent = 0
        try:
            events = self.bus.get_event_stream(self.subscription_id, cancel_token)
            async with aclosing(events):
                async for event in events:
                    yield format_sse(event)
                    sent += 1
                    if max_events is not None and sent >= max_events:
                        break
        finally:
            await self.aclose()

    async def stream_to_writer(
        self,
        write: Callable[[str], Awaitable[None]],
        max_events: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> int:
        """Push formatted blocks to an async writer; returns blocks written."""
        written = 0
        async for block in self.stream_events(max_events, cancel_token):
            await write(block)
            written += 1
        return written

    async def aclose(self) -> None:
        self.bus.close_stream(self.subscription_id, discard=True)
