"""
Memory Domain Model

Long-term memories kept by the memory bank. A memory's strength is the value
consolidation compares against its threshold; it starts at the memory's
importance and is reset whenever the importance changes. There is no
automatic decay, so 0 <= strength <= importance always holds.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agentweave.core.domain.events import utcnow


class MemoryType(str, Enum):
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    WORKING = "working"


def _validate_unit_interval(name: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")
    return float(value)


@dataclass
class MemoryItem:
    """
    One stored memory.

    Attributes:
        content: Memory text
        type: Memory category
        importance: Caller-assigned weight in [0, 1]
        strength: Consolidation weight, defaults to importance
        tags: Exact-match labels
        metadata: Free-form context
        agent_name / user_id / session_id: Optional ownership scope
        access_count / last_accessed_at: Updated on retrieval
        related_memories: Ids of linked memories
    """

    content: str
    type: MemoryType = MemoryType.SEMANTIC
    importance: float = 0.5
    strength: float | None = None
    memory_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    agent_name: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_accessed_at: datetime | None = None
    access_count: int = 0
    related_memories: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.importance = _validate_unit_interval("importance", self.importance)
        if self.strength is None:
            self.strength = self.importance
        else:
            self.strength = min(
                _validate_unit_interval("strength", self.strength), self.importance
            )

    def set_importance(self, importance: float) -> None:
        self.importance = _validate_unit_interval("importance", importance)
        self.strength = self.importance

    def mark_accessed(self, now: datetime | None = None) -> None:
        self.access_count += 1
        self.last_accessed_at = now or utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.memory_id,
            "type": self.type.value,
            "content": self.content,
            "importance": self.importance,
            "strength": self.strength,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "agentName": self.agent_name,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "createdAt": self.created_at.isoformat(),
            "lastAccessedAt": (
                self.last_accessed_at.isoformat() if self.last_accessed_at else None
            ),
            "accessCount": self.access_count,
            "relatedMemories": list(self.related_memories),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryItem":
        if not isinstance(data, dict):
            raise ValueError(f"Memory record must be an object, got {type(data).__name__}")
        last_accessed = data.get("lastAccessedAt")
        return cls(
            memory_id=data["id"],
            type=MemoryType(data.get("type", MemoryType.SEMANTIC.value)),
            content=data["content"],
            importance=data.get("importance", 0.5),
            strength=data.get("strength"),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
            agent_name=data.get("agentName"),
            user_id=data.get("userId"),
            session_id=data.get("sessionId"),
            created_at=datetime.fromisoformat(data["createdAt"]),
            last_accessed_at=(
                datetime.fromisoformat(last_accessed) if last_accessed else None
            ),
            access_count=data.get("accessCount", 0),
            related_memories=list(data.get("relatedMemories") or []),
        )


@dataclass
class MemoryQuery:
    """
    Search criteria. Every set field narrows the result.

    text matches case-insensitively against content (whole phrase, or all
    of its words). Results are ordered by keyword coverage, then strength.
    """

    text: str | None = None
    type: MemoryType | None = None
    agent_name: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    tags: list[str] = field(default_factory=list)
    min_importance: float | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 10

    def matches_scope(self, memory: MemoryItem) -> bool:
        """Every non-text criterion."""
        if self.type is not None and memory.type != self.type:
            return False
        if self.agent_name is not None and memory.agent_name != self.agent_name:
            return False
        if self.user_id is not None and memory.user_id != self.user_id:
            return False
        if self.session_id is not None and memory.session_id != self.session_id:
            return False
        if self.tags and not all(tag in memory.tags for tag in self.tags):
            return False
        if self.min_importance is not None and memory.importance < self.min_importance:
            return False
        if self.start_date is not None and memory.created_at < self.start_date:
            return False
        if self.end_date is not None and memory.created_at > self.end_date:
            return False
        return True

    def text_relevance(self, memory: MemoryItem) -> float:
        """
        0.0 when the text does not match; 1.0 for a whole-phrase match,
        otherwise the fraction of query words present (all required).
        """
        if not self.text:
            return 1.0
        content = memory.content.lower()
        phrase = self.text.lower().strip()
        if phrase in content:
            return 1.0
        words = phrase.split()
        if words and all(word in content for word in words):
            return len(words) / (len(words) + 1)
        return 0.0


@dataclass
class MemorySearchResult:
    memory: MemoryItem
    relevance: float


def search_memories(
    memories: list[MemoryItem], query: MemoryQuery
) -> list[MemorySearchResult]:
    """
    Apply a query to a list of memories.

    Shared by storage adapters that keep memories in process.
    """
    results = []
    for memory in memories:
        if not query.matches_scope(memory):
            continue
        relevance = query.text_relevance(memory)
        if relevance > 0.0:
            results.append(MemorySearchResult(memory=memory, relevance=relevance))

    results.sort(key=lambda r: (r.relevance, r.memory.strength), reverse=True)
    return results[: query.limit] if query.limit > 0 else results
