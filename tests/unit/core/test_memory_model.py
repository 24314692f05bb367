"""Unit tests for memory items, queries and in-process search."""

from datetime import timedelta

import pytest

from agentweave.core.domain.events import utcnow
from agentweave.core.domain.memory import (
    MemoryItem,
    MemoryQuery,
    MemoryType,
    search_memories,
)


class TestMemoryItem:
    def test_strength_defaults_to_importance(self):
        assert MemoryItem("fact", importance=0.4).strength == 0.4

    def test_strength_capped_at_importance(self):
        assert MemoryItem("fact", importance=0.4, strength=0.9).strength == 0.4

    @pytest.mark.parametrize("importance", [-0.1, 1.1])
    def test_importance_must_be_unit_interval(self, importance):
        with pytest.raises(ValueError):
            MemoryItem("fact", importance=importance)

    def test_set_importance_resets_strength(self):
        memory = MemoryItem("fact", importance=0.4)
        memory.set_importance(0.9)

        assert memory.strength == 0.9

    def test_mark_accessed(self):
        memory = MemoryItem("fact")
        memory.mark_accessed()
        memory.mark_accessed()

        assert memory.access_count == 2
        assert memory.last_accessed_at is not None

    def test_round_trip(self):
        memory = MemoryItem(
            "User prefers tea",
            type=MemoryType.EPISODIC,
            importance=0.7,
            tags=["prefs"],
            agent_name="assistant",
            related_memories=["m-2"],
        )
        memory.mark_accessed()

        assert MemoryItem.from_dict(memory.to_dict()) == memory


class TestMemoryQuery:
    def test_phrase_match_scores_highest(self):
        query = MemoryQuery(text="green tea")

        assert query.text_relevance(MemoryItem("I like Green Tea a lot")) == 1.0
        assert query.text_relevance(MemoryItem("tea, preferably green")) == pytest.approx(2 / 3)
        assert query.text_relevance(MemoryItem("coffee")) == 0.0

    def test_scope_filters(self):
        now = utcnow()
        memory = MemoryItem(
            "fact",
            type=MemoryType.PROCEDURAL,
            importance=0.6,
            tags=["a", "b"],
            user_id="u-1",
            created_at=now,
        )

        assert MemoryQuery(tags=["a"], user_id="u-1").matches_scope(memory)
        assert not MemoryQuery(tags=["a", "c"]).matches_scope(memory)
        assert not MemoryQuery(type=MemoryType.WORKING).matches_scope(memory)
        assert not MemoryQuery(min_importance=0.7).matches_scope(memory)
        assert not MemoryQuery(start_date=now + timedelta(seconds=1)).matches_scope(memory)


class TestSearchMemories:
    def test_ordering_and_limit(self):
        memories = [
            MemoryItem("tea and biscuits", importance=0.2),
            MemoryItem("biscuits with tea", importance=0.9),
            MemoryItem("tea and biscuits daily", importance=0.8),
            MemoryItem("coffee", importance=1.0),
        ]

        results = search_memories(memories, MemoryQuery(text="tea and biscuits", limit=2))

        assert [r.memory.content for r in results] == [
            "tea and biscuits daily",
            "tea and biscuits",
        ]
        assert all(r.relevance == 1.0 for r in results)

    def test_zero_limit_returns_everything(self):
        memories = [MemoryItem(f"m{i}") for i in range(15)]

        assert len(search_memories(memories, MemoryQuery(limit=0))) == 15
