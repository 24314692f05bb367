"""
Event stream routes.

GET /events/stream pushes bus events to HTTP clients as Server-Sent Events.
Each connection gets its own streaming subscription, closed when the client
disconnects or max_events have been sent.
"""

from contextlib import aclosing

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from agentweave.core.bus.sse import ServerSentEventStream
from agentweave.core.bus.streaming import EventFilterBuilder, StreamingEventBus
from agentweave.core.domain.events import AgentEvent, event_class_for


def create_events_router(bus: StreamingEventBus) -> APIRouter:
    router = APIRouter()

    @router.get("/events/stream")
    async def stream_events(
        event_type: str | None = Query(None, description="e.g. tool.result"),
        agent_id: str | None = None,
        session_id: str | None = None,
        buffer_size: int | None = Query(None, ge=1),
        max_events: int | None = Query(None, ge=1),
    ):
        """Stream events matching the filters as text/event-stream."""
        try:
            event_cls = event_class_for(event_type) if event_type else AgentEvent
        except KeyError as e:
            raise HTTPException(status_code=400, detail=str(e))

        builder = EventFilterBuilder()
        if agent_id:
            builder.with_agent_id(agent_id)
        if session_id:
            builder.with_session_id(session_id)

        event_filter = builder.build()

        async def event_source():
            # The subscription only exists while the body is being streamed.
            stream = ServerSentEventStream(
                bus, event_type=event_cls, event_filter=event_filter, buffer_size=buffer_size
            )
            async with aclosing(stream.stream_events(max_events=max_events)) as blocks:
                async for block in blocks:
                    yield block

        return StreamingResponse(
            event_source(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @router.get("/events/subscriptions")
    async def list_subscriptions():
        return [
            {
                "subscriptionId": s.subscription_id,
                "eventType": s.event_type.event_type,
                "bufferSize": s.buffer_size,
                "eventCount": s.event_count,
                "droppedCount": s.dropped_count,
                "createdAt": s.created_at.isoformat(),
            }
            for s in bus.active_subscriptions()
        ]

    return router
