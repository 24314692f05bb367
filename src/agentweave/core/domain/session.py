"""
Session Domain Model

A session is a resumable conversation between a user and one named
executor: its transcript, the executor's state snapshot, configuration and
lifecycle timestamps. Sessions are serialized to camelCase records so the
storage format stays stable across adapters.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from agentweave.core.domain.events import utcnow
from agentweave.core.domain.models import ChatMessage


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    EXPIRED = "expired"
    TERMINATED = "terminated"


@dataclass
class SessionConfiguration:
    """
    Per-session limits.

    Attributes:
        max_messages: Transcript cap; the oldest messages are dropped first
        idle_timeout_minutes: Inactivity period after which the session expires
        autosave_interval_seconds: Period of the manager's autosave sweep
        persist_to_storage: Write the session to storage on every update
        enable_recovery: Include the session in recovery after a restart
    """

    max_messages: int = 100
    idle_timeout_minutes: int = 30
    autosave_interval_seconds: int = 60
    persist_to_storage: bool = True
    enable_recovery: bool = True

    def __post_init__(self) -> None:
        if self.max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        if self.idle_timeout_minutes < 1:
            raise ValueError("idle_timeout_minutes must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxMessages": self.max_messages,
            "idleTimeoutMinutes": self.idle_timeout_minutes,
            "autosaveIntervalSeconds": self.autosave_interval_seconds,
            "persistToStorage": self.persist_to_storage,
            "enableRecovery": self.enable_recovery,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionConfiguration":
        defaults = cls()
        return cls(
            max_messages=data.get("maxMessages", defaults.max_messages),
            idle_timeout_minutes=data.get(
                "idleTimeoutMinutes", defaults.idle_timeout_minutes
            ),
            autosave_interval_seconds=data.get(
                "autosaveIntervalSeconds", defaults.autosave_interval_seconds
            ),
            persist_to_storage=data.get("persistToStorage", defaults.persist_to_storage),
            enable_recovery=data.get("enableRecovery", defaults.enable_recovery),
        )


@dataclass
class Session:
    """
    A resumable conversation bound to one executor name.

    Invariant: len(messages) <= configuration.max_messages after every
    add_message() call.
    """

    agent_name: str
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    messages: list[ChatMessage] = field(default_factory=list)
    configuration: SessionConfiguration = field(default_factory=SessionConfiguration)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.expires_at is None:
            self.expires_at = self._next_expiry(self.last_active_at)

    def _next_expiry(self, from_time: datetime) -> datetime:
        return from_time + timedelta(minutes=self.configuration.idle_timeout_minutes)

    def touch(self, now: datetime | None = None) -> None:
        """Record activity and push the idle expiry forward."""
        self.last_active_at = now or utcnow()
        self.expires_at = self._next_expiry(self.last_active_at)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.status == SessionStatus.EXPIRED:
            return True
        return self.expires_at is not None and (now or utcnow()) >= self.expires_at

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE and not self.is_expired()

    def add_message(self, message: ChatMessage) -> int:
        """
        Append a message, dropping the oldest ones beyond max_messages.

        Returns:
            Number of messages dropped
        """
        self.messages.append(message)
        overflow = len(self.messages) - self.configuration.max_messages
        if overflow > 0:
            del self.messages[:overflow]
            return overflow
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "agentName": self.agent_name,
            "userId": self.user_id,
            "status": self.status.value,
            "messages": [m.to_dict() for m in self.messages],
            "configuration": self.configuration.to_dict(),
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "state": dict(self.state),
            "createdAt": self.created_at.isoformat(),
            "lastActiveAt": self.last_active_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        if not isinstance(data, dict):
            raise ValueError(f"Session record must be an object, got {type(data).__name__}")
        expires_at = data.get("expiresAt")
        return cls(
            session_id=data["id"],
            agent_name=data["agentName"],
            user_id=data.get("userId"),
            status=SessionStatus(data.get("status", SessionStatus.ACTIVE.value)),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            configuration=SessionConfiguration.from_dict(data.get("configuration") or {}),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
            state=dict(data.get("state") or {}),
            created_at=datetime.fromisoformat(data["createdAt"]),
            last_active_at=datetime.fromisoformat(data["lastActiveAt"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )
