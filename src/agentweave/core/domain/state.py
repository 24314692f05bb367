"""Mutable per-executor state: identity, status, configuration and a key-value store."""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from agentweave.core.domain.events import utcnow
from agentweave.core.domain.models import ExecutorStatus


@dataclass
class ExecutorState:
    """
    State owned by one executor instance.

    The data store holds arbitrary values the executor wants to keep between
    runs; snapshot()/restore() move it in and out of a session record.
    """

    agent_name: str
    agent_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str | None = None
    status: ExecutorStatus = ExecutorStatus.IDLE
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)
    configuration: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    def touch(self) -> None:
        self.last_active_at = utcnow()

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> Any:
        """Store a value and return the previous one (None if absent)."""
        old = self.data.get(key)
        self.data[key] = value
        return old

    def has(self, key: str) -> bool:
        return key in self.data

    def remove(self, key: str) -> bool:
        if key not in self.data:
            return False
        del self.data[key]
        return True

    def clear(self) -> None:
        self.data.clear()

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the data store, safe to persist."""
        return copy.deepcopy(self.data)

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.data = copy.deepcopy(snapshot)
