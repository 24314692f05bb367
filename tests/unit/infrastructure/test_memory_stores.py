"""
Unit Tests for the memory storage adapters

The same behaviour is checked against InMemoryMemoryStore and
FileMemoryStore; file-specific tests cover persistence across instances.
"""

from unittest.mock import patch

import pytest

from agentweave.core.domain.errors import StorageError
from agentweave.core.domain.memory import MemoryItem, MemoryQuery, MemoryType
from agentweave.infrastructure.persistence.file_memory_store import FileMemoryStore
from agentweave.infrastructure.persistence.in_memory_memory_store import InMemoryMemoryStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "file":
        return FileMemoryStore(tmp_path / "memory")
    return InMemoryMemoryStore()


class TestMemoryStorageProtocol:
    @pytest.mark.asyncio
    async def test_save_and_get(self, store):
        memory = MemoryItem("fact", tags=["t"], importance=0.6)

        await store.save_memory(memory)

        assert await store.get_memory(memory.memory_id) == memory
        assert await store.get_memory("missing") is None

    @pytest.mark.asyncio
    async def test_returned_items_are_copies(self, store):
        memory = MemoryItem("fact")
        await store.save_memory(memory)

        loaded = await store.get_memory(memory.memory_id)
        loaded.tags.append("changed")

        assert (await store.get_memory(memory.memory_id)).tags == []

    @pytest.mark.asyncio
    async def test_delete(self, store):
        memory = MemoryItem("fact")
        await store.save_memory(memory)

        assert await store.delete_memory(memory.memory_id) is True
        assert await store.delete_memory(memory.memory_id) is False
        assert await store.get_memory_count() == 0

    @pytest.mark.asyncio
    async def test_list_with_query(self, store):
        await store.save_memory(MemoryItem("a", type=MemoryType.EPISODIC))
        await store.save_memory(MemoryItem("b", type=MemoryType.SEMANTIC))

        assert len(await store.list_memories()) == 2
        episodic = await store.list_memories(MemoryQuery(type=MemoryType.EPISODIC))
        assert [m.content for m in episodic] == ["a"]

    @pytest.mark.asyncio
    async def test_search(self, store):
        await store.save_memory(MemoryItem("green tea", importance=0.2))
        await store.save_memory(MemoryItem("black coffee"))

        results = await store.search_memories(MemoryQuery(text="tea"))

        assert [r.memory.content for r in results] == ["green tea"]

    @pytest.mark.asyncio
    async def test_consolidate(self, store):
        for importance in (0.1, 0.2, 0.5, 0.9):
            await store.save_memory(MemoryItem(f"m{importance}", importance=importance))

        assert await store.consolidate_memories(0.3) == 2
        assert await store.get_memory_count() == 2


class TestFileMemoryStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        memory = MemoryItem("durable fact", importance=0.7)
        await FileMemoryStore(tmp_path).save_memory(memory)

        reopened = FileMemoryStore(tmp_path)

        assert await reopened.get_memory(memory.memory_id) == memory
        assert list(tmp_path.glob("*.tmp")) == []

    def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "memories.json").write_text("{broken", encoding="utf-8")

        with pytest.raises(StorageError):
            FileMemoryStore(tmp_path)

    def test_non_object_file_raises(self, tmp_path):
        (tmp_path / "memories.json").write_text("[]", encoding="utf-8")

        with pytest.raises(StorageError):
            FileMemoryStore(tmp_path)

    @pytest.mark.asyncio
    async def test_failed_save_leaves_store_unchanged(self, tmp_path):
        store = FileMemoryStore(tmp_path)
        kept = MemoryItem("kept")
        await store.save_memory(kept)
        lost = MemoryItem("lost")

        with patch(
            "agentweave.infrastructure.persistence.file_memory_store.aiofiles.open",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(StorageError):
                await store.save_memory(lost)

        assert await store.get_memory(lost.memory_id) is None
        assert await store.get_memory_count() == 1
        assert list(tmp_path.glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_failed_consolidation_keeps_memories(self, tmp_path):
        store = FileMemoryStore(tmp_path)
        for importance in (0.1, 0.9):
            await store.save_memory(MemoryItem(f"m{importance}", importance=importance))

        with patch(
            "agentweave.infrastructure.persistence.file_memory_store.aiofiles.open",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(StorageError):
                await store.consolidate_memories(0.5)

        assert await store.get_memory_count() == 2
        assert await FileMemoryStore(tmp_path).get_memory_count() == 2
