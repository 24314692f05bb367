"""
Event Replay
============

Records events into a bounded in-memory history and replays them onto
another bus, optionally preserving the original timing.
"""

import asyncio
import json
from collections import deque
from datetime import datetime
from typing import Any

import structlog

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.events import AgentEvent


class EventReplay:
    """
    Ring-buffer event recorder.

    Once max_history_size events are held, recording a new one evicts the
    oldest. Attach it to a bus to record everything published there.

    Example:
        >>> replay = EventReplay(max_history_size=500)
        >>> replay.attach(runtime.event_bus)
        >>> ...
        >>> await replay.replay_events(debug_bus, speed=10.0)
    """

    def __init__(self, max_history_size: int = 1000):
        if max_history_size < 1:
            raise ValueError("max_history_size must be at least 1")
        self.max_history_size = max_history_size
        self._history: deque[AgentEvent] = deque(maxlen=max_history_size)
        self._attached_bus: EventBus | None = None
        self.logger = structlog.get_logger().bind(component="event_replay")

    def attach(self, bus: EventBus) -> None:
        """Record every event published on bus until detach() is called."""
        self.detach()
        bus.subscribe(AgentEvent, self.record_event)
        self._attached_bus = bus

    def detach(self) -> None:
        if self._attached_bus is not None:
            self._attached_bus.unsubscribe(AgentEvent, self.record_event)
            self._attached_bus = None

    def record_event(self, event: AgentEvent) -> None:
        self._history.append(event)

    def get_history(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        event_type: type[AgentEvent] | None = None,
        agent_id: str | None = None,
    ) -> list[AgentEvent]:
        """
        Recorded events in recording order, filtered by the given criteria.

        Args:
            start_time: Only events at or after this time
            end_time: Only events at or before this time
            event_type: Only instances of this event class
            agent_id: Only events emitted by this executor
        """
        events = list(self._history)
        if start_time is not None:
            events = [e for e in events if e.timestamp >= start_time]
        if end_time is not None:
            events = [e for e in events if e.timestamp <= end_time]
        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        if agent_id is not None:
            events = [e for e in events if e.agent_id == agent_id]
        return events

    async def replay_events(
        self,
        target_bus: EventBus,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        speed: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> int:
        """
        Publish recorded events onto target_bus in their original order.

        Args:
            target_bus: Bus receiving the replayed events
            start_time: Replay only events at or after this time
            end_time: Replay only events at or before this time
            speed: Timing multiplier. 1.0 keeps the recorded gaps between
                events, 2.0 halves them. None replays without delays.
            cancel_token: Stops the replay between events when fired

        Returns:
            Number of events published

        Raises:
            ValueError: If speed is not positive
        """
        if speed is not None and speed <= 0:
            raise ValueError("speed must be positive")

        events = self.get_history(start_time, end_time)
        self.logger.info("replay.started", events=len(events), speed=speed)

        published = 0
        previous: AgentEvent | None = None
        for event in events:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if speed is not None and previous is not None:
                gap = (event.timestamp - previous.timestamp).total_seconds()
                if gap > 0:
                    await asyncio.sleep(gap / speed)
            target_bus.publish(event)
            published += 1
            previous = event

        self.logger.info("replay.completed", events=published)
        return published

    def export_to_json(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> str:
        """Export the recorded events as a JSON array of event records."""
        records = [e.to_record() for e in self.get_history(start_time, end_time)]
        return json.dumps(records, indent=2, default=str)

    def clear(self) -> None:
        self._history.clear()

    def statistics(self) -> dict[str, Any]:
        """Counts per event type and per executor plus the recorded time span."""
        by_type: dict[str, int] = {}
        by_agent: dict[str, int] = {}
        for event in self._history:
            by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
            by_agent[event.agent_id] = by_agent.get(event.agent_id, 0) + 1

        return {
            "total_events": len(self._history),
            "max_history_size": self.max_history_size,
            "events_by_type": by_type,
            "events_by_agent": by_agent,
            "oldest_event": self._history[0].timestamp if self._history else None,
            "newest_event": self._history[-1].timestamp if self._history else None,
        }
