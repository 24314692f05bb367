"""
Domain Events for Executor Runs

This module defines the immutable events published on the event bus while
executors and workflows run. Every event shares a common envelope (id,
timestamp, emitting executor, session) and adds a variant-specific payload:

- AgentStartedEvent / AgentCompletedEvent / AgentErrorEvent: lifecycle
- ToolCalledEvent / ToolResultEvent: one workflow step or tool invocation
- MessageEvent: a message appended to an executor's history
- StateChangedEvent: a state key (e.g. the status) changed value
- StreamChunkEvent: one chunk of a streamed generation

Events are frozen. The emitting executor stamps agent_id and session_id by
creating a copy with dataclasses.replace().
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_ENVELOPE_FIELDS = ("event_id", "timestamp", "agent_id", "session_id", "metadata")


@dataclass(frozen=True, kw_only=True)
class AgentEvent:
    """
    Base envelope for every event.

    Subscribing to AgentEvent receives every event published on a bus.

    Attributes:
        event_id: Unique id of this event
        timestamp: UTC time the event was created
        agent_id: Id of the emitting executor (stamped on emit)
        session_id: Session the emitting executor is bound to, if any
        metadata: Free-form extra context
    """

    event_type: ClassVar[str] = "agent.event"

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    agent_id: str = ""
    session_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        """Variant-specific fields as a plain dict."""
        data = asdict(self)
        return {k: v for k, v in data.items() if k not in _ENVELOPE_FIELDS}

    def to_record(self) -> dict[str, Any]:
        """Serialize to the wire record used by replay export and SSE."""
        return {
            "eventType": self.event_type,
            "eventId": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "agentId": self.agent_id,
            "sessionId": self.session_id,
            "metadata": dict(self.metadata),
            "payload": self.payload(),
        }


@dataclass(frozen=True, kw_only=True)
class AgentStartedEvent(AgentEvent):
    event_type: ClassVar[str] = "agent.started"

    agent_name: str = ""
    configuration: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class AgentCompletedEvent(AgentEvent):
    """Published when execute() finishes without raising; duration in seconds."""

    event_type: ClassVar[str] = "agent.completed"

    success: bool
    output: str = ""
    duration: float = 0.0


@dataclass(frozen=True, kw_only=True)
class AgentErrorEvent(AgentEvent):
    event_type: ClassVar[str] = "agent.error"

    error_message: str
    error_type: str = ""
    stack_trace: str | None = None


@dataclass(frozen=True, kw_only=True)
class ToolCalledEvent(AgentEvent):
    event_type: ClassVar[str] = "tool.called"

    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ToolResultEvent(AgentEvent):
    event_type: ClassVar[str] = "tool.result"

    tool_name: str
    result: str = ""
    success: bool = True
    duration: float = 0.0


@dataclass(frozen=True, kw_only=True)
class MessageEvent(AgentEvent):
    event_type: ClassVar[str] = "message.received"

    role: str
    content: str


@dataclass(frozen=True, kw_only=True)
class StateChangedEvent(AgentEvent):
    event_type: ClassVar[str] = "state.changed"

    state_key: str
    old_value: Any = None
    new_value: Any = None


@dataclass(frozen=True, kw_only=True)
class StreamChunkEvent(AgentEvent):
    event_type: ClassVar[str] = "stream.chunk"

    chunk: str
    chunk_index: int = 0


EVENT_TYPES: dict[str, type[AgentEvent]] = {
    cls.event_type: cls
    for cls in (
        AgentEvent,
        AgentStartedEvent,
        AgentCompletedEvent,
        AgentErrorEvent,
        ToolCalledEvent,
        ToolResultEvent,
        MessageEvent,
        StateChangedEvent,
        StreamChunkEvent,
    )
}


def event_class_for(event_type: str) -> type[AgentEvent]:
    """
    Look up the event class registered for a wire event type name.

    Raises:
        KeyError: If the name is not a known event type
    """
    try:
        return EVENT_TYPES[event_type]
    except KeyError:
        raise KeyError(f"Unknown event type: {event_type}") from None

