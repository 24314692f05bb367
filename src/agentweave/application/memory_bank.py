"""
Memory Bank

Long-term memory service on top of a MemoryStorageProtocol: store, search,
tag, link and consolidate memories. Text search is case-insensitive keyword
matching; semantic retrieval is left to the storage backend.
"""

from typing import Any

import structlog

from agentweave.core.domain.memory import (
    MemoryItem,
    MemoryQuery,
    MemorySearchResult,
    MemoryType,
)
from agentweave.core.interfaces.storage import MemoryStorageProtocol


class MemoryBank:
    """
    Long-term memory for executors.

    Example:
        >>> bank = MemoryBank(InMemoryMemoryStore())
        >>> await bank.store_memory("User prefers metric units", importance=0.8)
        >>> hits = await bank.search_by_text("metric")
        >>> removed = await bank.consolidate(strength_threshold=0.3)
    """

    def __init__(self, storage: MemoryStorageProtocol, default_consolidation_threshold: float = 0.1):
        self.storage = storage
        self.default_consolidation_threshold = default_consolidation_threshold
        self.logger = structlog.get_logger().bind(component="memory_bank")

    async def store_memory(
        self,
        content: str,
        type: MemoryType = MemoryType.SEMANTIC,
        importance: float = 0.5,
        tags: list[str] | None = None,
        agent_name: str | None = None,
        user_id: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryItem:
        """
        Create and persist a memory.

        Raises:
            ValueError: If importance is outside [0, 1]
            StorageError: If the backend fails to persist it
        """
        memory = MemoryItem(
            content=content,
            type=type,
            importance=importance,
            tags=list(tags or []),
            agent_name=agent_name,
            user_id=user_id,
            session_id=session_id,
            metadata=dict(metadata or {}),
        )
        await self.storage.save_memory(memory)
        self.logger.info(
            "memory.stored",
            memory_id=memory.memory_id,
            type=memory.type.value,
            importance=memory.importance,
        )
        return memory

    async def retrieve_memory(self, memory_id: str) -> MemoryItem | None:
        """Fetch a memory and record the access."""
        memory = await self.storage.get_memory(memory_id)
        if memory is None:
            return None
        memory.mark_accessed()
        await self.storage.save_memory(memory)
        return memory

    async def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        results = await self.storage.search_memories(query)
        self.logger.debug("memory.search", text=query.text, results=len(results))
        return results

    async def search_by_text(
        self,
        text: str,
        limit: int = 10,
        type: MemoryType | None = None,
        agent_name: str | None = None,
        user_id: str | None = None,
    ) -> list[MemoryItem]:
        results = await self.search(
            MemoryQuery(text=text, limit=limit, type=type, agent_name=agent_name, user_id=user_id)
        )
        return [r.memory for r in results]

    async def search_by_tag(self, tag: str, limit: int = 0) -> list[MemoryItem]:
        """Exact tag match, strongest first. limit=0 returns all."""
        results = await self.search(MemoryQuery(tags=[tag], limit=limit))
        return [r.memory for r in results]

    async def get_recent_memories(
        self, limit: int = 10, agent_name: str | None = None, user_id: str | None = None
    ) -> list[MemoryItem]:
        memories = await self.storage.list_memories(
            MemoryQuery(agent_name=agent_name, user_id=user_id)
        )
        memories.sort(key=lambda m: m.created_at, reverse=True)
        return memories[:limit]

    async def get_important_memories(
        self, min_importance: float = 0.7, limit: int = 10
    ) -> list[MemoryItem]:
        memories = await self.storage.list_memories(MemoryQuery(min_importance=min_importance))
        memories.sort(key=lambda m: m.importance, reverse=True)
        return memories[:limit]

    async def update_importance(self, memory_id: str, importance: float) -> MemoryItem | None:
        """
        Set a new importance; values are clamped to [0, 1] and strength is
        reset to match.
        """
        memory = await self.storage.get_memory(memory_id)
        if memory is None:
            return None
        memory.set_importance(min(1.0, max(0.0, importance)))
        await self.storage.save_memory(memory)
        return memory

    async def add_tags(self, memory_id: str, tags: list[str]) -> MemoryItem | None:
        memory = await self.storage.get_memory(memory_id)
        if memory is None:
            return None
        memory.tags.extend(tag for tag in tags if tag not in memory.tags)
        await self.storage.save_memory(memory)
        return memory

    async def link_memories(self, memory_id: str, related_id: str) -> bool:
        """Link two memories in both directions. False if either is missing."""
        first = await self.storage.get_memory(memory_id)
        second = await self.storage.get_memory(related_id)
        if first is None or second is None or memory_id == related_id:
            return False
        if related_id not in first.related_memories:
            first.related_memories.append(related_id)
            await self.storage.save_memory(first)
        if memory_id not in second.related_memories:
            second.related_memories.append(memory_id)
            await self.storage.save_memory(second)
        return True

    async def delete_memory(self, memory_id: str) -> bool:
        deleted = await self.storage.delete_memory(memory_id)
        if deleted:
            self.logger.info("memory.deleted", memory_id=memory_id)
        return deleted

    async def consolidate(self, strength_threshold: float | None = None) -> int:
        """
        Remove every memory whose strength is strictly below the threshold.

        Returns:
            Number of memories removed
        """
        threshold = (
            self.default_consolidation_threshold
            if strength_threshold is None
            else strength_threshold
        )
        removed = await self.storage.consolidate_memories(threshold)
        self.logger.info("memory.consolidated", threshold=threshold, removed=removed)
        return removed

    async def statistics(self) -> dict[str, Any]:
        memories = await self.storage.list_memories()
        by_type: dict[str, int] = {}
        for memory in memories:
            by_type[memory.type.value] = by_type.get(memory.type.value, 0) + 1
        return {
            "total_memories": len(memories),
            "by_type": by_type,
            "average_importance": (
                sum(m.importance for m in memories) / len(memories) if memories else 0.0
            ),
            "total_accesses": sum(m.access_count for m in memories),
        }
