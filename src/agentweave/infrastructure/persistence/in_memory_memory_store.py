"""In-process memory storage. Items are copied on save and on read."""

import copy

from agentweave.core.domain.memory import (
    MemoryItem,
    MemoryQuery,
    MemorySearchResult,
    search_memories,
)


class InMemoryMemoryStore:
    """Dict-backed MemoryStorageProtocol implementation."""

    def __init__(self) -> None:
        self._items: dict[str, MemoryItem] = {}

    async def save_memory(self, memory: MemoryItem) -> None:
        self._items[memory.memory_id] = copy.deepcopy(memory)

    async def get_memory(self, memory_id: str) -> MemoryItem | None:
        item = self._items.get(memory_id)
        return copy.deepcopy(item) if item else None

    async def delete_memory(self, memory_id: str) -> bool:
        return self._items.pop(memory_id, None) is not None

    async def list_memories(self, query: MemoryQuery | None = None) -> list[MemoryItem]:
        items = [copy.deepcopy(m) for m in self._items.values()]
        if query is None:
            return items
        return [m for m in items if query.matches_scope(m)]

    async def search_memories(self, query: MemoryQuery) -> list[MemorySearchResult]:
        return search_memories(await self.list_memories(), query)

    async def consolidate_memories(self, strength_threshold: float) -> int:
        weak = [m.memory_id for m in self._items.values() if m.strength < strength_threshold]
        for memory_id in weak:
            del self._items[memory_id]
        return len(weak)

    async def get_memory_count(self) -> int:
        return len(self._items)
