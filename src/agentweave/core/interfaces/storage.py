"""
Storage Protocols

Ports for session and memory persistence. Adapters must raise StorageError
for I/O failures on save/load rather than returning a sentinel, and must
serialize concurrent writes to the same key.
"""

from datetime import datetime
from typing import Protocol

from agentweave.core.domain.memory import MemoryItem, MemoryQuery, MemorySearchResult
from agentweave.core.domain.session import Session, SessionStatus


class SessionStorageProtocol(Protocol):
    """Key-value persistence for sessions, keyed by session id."""

    async def save_session(self, session: Session) -> None:
        """Insert or overwrite a session record."""
        ...

    async def load_session(self, session_id: str) -> Session | None:
        """Return the stored session, or None if it does not exist."""
        ...

    async def delete_session(self, session_id: str) -> bool:
        ...

    async def session_exists(self, session_id: str) -> bool:
        ...

    async def list_sessions(
        self,
        agent_name: str | None = None,
        user_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        ...

    async def get_sessions_by_tag(self, tag: str) -> list[Session]:
        ...

    async def cleanup_expired_sessions(self, now: datetime | None = None) -> int:
        """Delete stored sessions whose idle timeout has passed; returns count."""
        ...

    async def get_session_count(self) -> int:
        ...


class MemoryStorageProtocol(Protocol):
    """Persistence for memory items, keyed by memory id."""

    async def save_memory(self, memory: MemoryItem) -> None:
        ...

    async def get_memory(self, memory_id: str) -> MemoryItem | None:
        ...

    async def delete_memory(self, memory_id: str) -> bool:
        ...

    async def list_memories(self, query: MemoryQuery | None = None) -> list[MemoryItem]:
        """All memories matching the query scope (ignores text and limit)."""
        ...

    async def search_memories(self, query: MemoryQuery) -> list[MemorySearchResult]:
        ...

    async def consolidate_memories(self, strength_threshold: float) -> int:
        """Delete memories with strength strictly below the threshold; returns count."""
        ...

    async def get_memory_count(self) -> int:
        ...
