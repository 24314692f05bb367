"""
Core Domain Models

This module defines the data models shared by executors, workflows and
sessions: the executor status set, chat messages, and the result returned
by every execute() call.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agentweave.core.domain.events import utcnow


class ExecutorStatus(str, Enum):
    """Lifecycle status of an executor. Always exactly one of these values."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class ChatMessage:
    """
    One entry of an executor history or a session transcript.

    Attributes:
        role: Message author ("system", "user", "assistant")
        content: Message text
        timestamp: UTC creation time
        metadata: Free-form extra context
    """

    role: str
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        timestamp = data.get("timestamp")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else utcnow(),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_llm_message(self) -> dict[str, str]:
        """Shape expected by LLM providers (role/content only)."""
        return {"role": self.role, "content": self.content}


@dataclass
class AgentResult:
    """
    Result of a single execute() call.

    A result with success=False is a reported failure (for example an LLM
    provider that answered with an error). Exceptions raised during
    execution are not converted into results; they propagate to the caller.

    Attributes:
        success: Whether the executor produced its output
        output: Output text
        error: Failure description when success is False
        metadata: Executor-specific extra data (e.g. the workflow result)
    """

    success: bool
    output: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create_success(cls, output: str, **metadata: Any) -> "AgentResult":
        return cls(success=True, output=output, metadata=dict(metadata))

    @classmethod
    def create_failure(
        cls, error: str, output: str = "", **metadata: Any
    ) -> "AgentResult":
        return cls(success=False, output=output, error=error, metadata=dict(metadata))
