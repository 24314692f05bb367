"""
Unit Tests for MemoryBank

Runs the bank against InMemoryMemoryStore to verify storing, search,
tagging, linking, importance updates and consolidation.
"""

from datetime import timedelta

import pytest

from agentweave.application.memory_bank import MemoryBank
from agentweave.core.domain.events import utcnow
from agentweave.core.domain.memory import MemoryItem, MemoryQuery, MemoryType
from agentweave.infrastructure.persistence.in_memory_memory_store import InMemoryMemoryStore


@pytest.fixture
def storage():
    return InMemoryMemoryStore()


@pytest.fixture
def bank(storage):
    return MemoryBank(storage)


class TestStoreAndRetrieve:
    @pytest.mark.asyncio
    async def test_store_memory(self, bank, storage):
        memory = await bank.store_memory(
            "User prefers metric units",
            type=MemoryType.SEMANTIC,
            importance=0.8,
            tags=["prefs"],
            user_id="u-1",
        )

        assert await storage.get_memory_count() == 1
        assert memory.strength == 0.8

    @pytest.mark.asyncio
    async def test_store_rejects_invalid_importance(self, bank):
        with pytest.raises(ValueError):
            await bank.store_memory("x", importance=2.0)

    @pytest.mark.asyncio
    async def test_retrieve_records_access(self, bank):
        memory = await bank.store_memory("fact")

        await bank.retrieve_memory(memory.memory_id)
        retrieved = await bank.retrieve_memory(memory.memory_id)

        assert retrieved.access_count == 2
        assert retrieved.last_accessed_at is not None

    @pytest.mark.asyncio
    async def test_retrieve_missing(self, bank):
        assert await bank.retrieve_memory("missing") is None


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_by_text(self, bank):
        await bank.store_memory("The user likes green tea", importance=0.3)
        await bank.store_memory("Green tea order placed on Monday", importance=0.9)
        await bank.store_memory("Coffee machine is broken")

        results = await bank.search_by_text("green tea")

        assert [m.content for m in results] == [
            "Green tea order placed on Monday",
            "The user likes green tea",
        ]

    @pytest.mark.asyncio
    async def test_search_scoped_by_type_and_user(self, bank):
        await bank.store_memory("tea", type=MemoryType.EPISODIC, user_id="u-1")
        await bank.store_memory("tea", type=MemoryType.SEMANTIC, user_id="u-1")
        await bank.store_memory("tea", type=MemoryType.EPISODIC, user_id="u-2")

        results = await bank.search_by_text("tea", type=MemoryType.EPISODIC, user_id="u-1")

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_search_returns_relevance(self, bank):
        await bank.store_memory("alpha beta")

        results = await bank.search(MemoryQuery(text="beta alpha"))

        assert results[0].relevance == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_search_by_tag(self, bank):
        await bank.store_memory("a", tags=["work"])
        await bank.store_memory("b", tags=["home"])
        await bank.store_memory("c", tags=["work", "urgent"])

        results = await bank.search_by_tag("work")

        assert sorted(m.content for m in results) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_recent_and_important(self, bank, storage):
        start = utcnow()
        for i in range(5):
            await storage.save_memory(
                MemoryItem(f"m{i}", importance=i / 4, created_at=start + timedelta(seconds=i))
            )

        recent = await bank.get_recent_memories(limit=2)
        important = await bank.get_important_memories(min_importance=0.5)

        assert [m.content for m in recent] == ["m4", "m3"]
        assert [m.content for m in important] == ["m4", "m3", "m2"]


class TestUpdates:
    @pytest.mark.asyncio
    async def test_update_importance_clamps_and_resets_strength(self, bank):
        memory = await bank.store_memory("fact", importance=0.2)

        updated = await bank.update_importance(memory.memory_id, 1.5)

        assert updated.importance == 1.0
        assert updated.strength == 1.0

    @pytest.mark.asyncio
    async def test_add_tags_deduplicates(self, bank):
        memory = await bank.store_memory("fact", tags=["a"])

        updated = await bank.add_tags(memory.memory_id, ["a", "b"])

        assert updated.tags == ["a", "b"]

    @pytest.mark.asyncio
    async def test_link_memories_both_ways(self, bank, storage):
        first = await bank.store_memory("first")
        second = await bank.store_memory("second")

        assert await bank.link_memories(first.memory_id, second.memory_id) is True
        assert await bank.link_memories(first.memory_id, "missing") is False

        assert (await storage.get_memory(first.memory_id)).related_memories == [second.memory_id]
        assert (await storage.get_memory(second.memory_id)).related_memories == [first.memory_id]

    @pytest.mark.asyncio
    async def test_updates_on_missing_memory(self, bank):
        assert await bank.update_importance("missing", 0.5) is None
        assert await bank.add_tags("missing", ["x"]) is None
        assert await bank.delete_memory("missing") is False


class TestConsolidation:
    @pytest.mark.asyncio
    async def test_removes_memories_below_threshold(self, bank, storage):
        for i in range(20):
            await bank.store_memory(f"memory {i}", importance=i * 0.05)

        removed = await bank.consolidate(0.3)

        assert removed == 6
        assert await storage.get_memory_count() == 14
        remaining = await storage.list_memories()
        assert all(m.strength >= 0.3 for m in remaining)

    @pytest.mark.asyncio
    async def test_default_threshold(self, storage):
        bank = MemoryBank(storage, default_consolidation_threshold=0.5)
        await bank.store_memory("weak", importance=0.4)
        await bank.store_memory("strong", importance=0.6)

        assert await bank.consolidate() == 1

    @pytest.mark.asyncio
    async def test_statistics(self, bank):
        await bank.store_memory("a", type=MemoryType.EPISODIC, importance=0.2)
        await bank.store_memory("b", importance=0.6)

        stats = await bank.statistics()

        assert stats["total_memories"] == 2
        assert stats["by_type"] == {"episodic": 1, "semantic": 1}
        assert stats["average_importance"] == pytest.approx(0.4)
