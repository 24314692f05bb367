"""
File-Based Memory Store

Keeps all memories in one JSON document keyed by memory id
(``{memory_dir}/memories.json``). The document is loaded once on
construction and rewritten atomically after every change. The in-process
view only changes once the write has succeeded. One asyncio.Lock serializes
writers.
"""

import asyncio
import json
import os
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from agentweave.core.domain.errors import StorageError
from agentweave.core.domain.memory import (
    MemoryItem,
    MemoryQuery,
    MemorySearchResult,
    search_memories,
)


class FileMemoryStore:
    """
    MemoryStorageProtocol implementation backed by a single JSON file.

    Args:
        memory_dir: Directory holding memories.json (created if missing)

    Raises:
        StorageError: If an existing memories.json cannot be read
    """

    def __init__(self, memory_dir: str | Path = ".agentweave/memory"):
        self.memory_dir = Path(memory_dir)
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self.memories_file = self.memory_dir / "memories.json"
        self.json_store: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.logger = structlog.get_logger().bind(component="file_memory_store")

        if self.memories_file.exists():
            try:
                with open(self.memories_file, "r", encoding="utf-8") as f:
                    json_store = json.load(f)
            except (OSError, ValueError) as e:
                raise StorageError(f"Failed to read {self.memories_file}: {e}") from e
            if not isinstance(json_store, dict):
                raise StorageError(f"Failed to read {self.memories_file}: not a JSON object")
            self.json_store = json_store

    async def _commit(self, json_store: dict[str, dict[str, Any]]) -> None:
        """Write json_store to disk, then make it the in-process view."""
        temp_path = self.memory_dir / f".memories.{uuid.uuid4().hex}.tmp"
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(json_store, indent=2, ensure_ascii=False))
            os.replace(temp_path, self.memories_file)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            self.logger.error("memory.store.write_failed", error=str(e))
            raise StorageError(f"Failed to write {self.memories_file}: {e}") from e
        self.json_store = json_store

    async def save_memory(self, memory: MemoryItem) -> None:
        async with self._lock:
            await self._commit({**self.json_store, memory.memory_id: memory.to_dict()})

    async def get_memory(self, memory_id: str) -> MemoryItem | None:
        record = self.json_store.get(memory_id)
        return MemoryItem.from_dict(record) if record else None

    async def delete_memory(self, memory_id: str) -> bool:
        async with self._lock:
            if memory_id not in self.json_store:
                return False
            await self._commit(
                {k: v for k, v in self.json_store.items() if k != memory_id}
            )
            return True

    async def list_memories(self, query: MemoryQuery | None = None) -> list[MemoryItem]:
        items = [MemoryItem.from_dict(r) for r in self.json_store.values()]
        if query is None:
            return items
        return [m for m in items if query.matches_scope(m)]

    async def search_memories(self, query: MemoryQuery) -> list[MemorySearchResult]:
        return search_memories(await self.list_memories(), query)

    async def consolidate_memories(self, strength_threshold: float) -> int:
        async with self._lock:
            weak = [
                memory_id
                for memory_id, record in self.json_store.items()
                if record.get("strength", record.get("importance", 0.0)) < strength_threshold
            ]
            if weak:
                await self._commit(
                    {k: v for k, v in self.json_store.items() if k not in weak}
                )
            return len(weak)

    async def get_memory_count(self) -> int:
        return len(self.json_store)
