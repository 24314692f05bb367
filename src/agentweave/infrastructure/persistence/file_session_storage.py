"""
File-Based Session Storage
==========================

Persists each session as one JSON document: ``{storage_dir}/{session_id}.json``.

- Writes go to a temp file in the same directory and are then moved into
  place with os.replace(), so readers never see a half-written record
- Writes to the same session are serialized with a per-session asyncio.Lock
  (last writer wins)
- I/O and decode failures on save/load raise StorageError
- Listing skips unreadable files with a warning
"""

import asyncio
import json
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from agentweave.core.domain.errors import StorageError
from agentweave.core.domain.events import utcnow
from agentweave.core.domain.session import Session, SessionStatus


class FileSessionStorage:
    """
    SessionStorageProtocol implementation backed by a directory of JSON files.

    Example:
        >>> storage = FileSessionStorage(".agentweave/sessions")
        >>> await storage.save_session(session)
        >>> restored = await storage.load_session(session.session_id)
    """

    def __init__(self, storage_dir: str | Path = ".agentweave/sessions"):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.locks: dict[str, asyncio.Lock] = {}
        self.logger = structlog.get_logger().bind(component="file_session_storage")

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self.locks:
            self.locks[session_id] = asyncio.Lock()
        return self.locks[session_id]

    def _session_path(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id in (".", ".."):
            raise StorageError(f"Invalid session id: {session_id!r}")
        return self.storage_dir / f"{session_id}.json"

    async def _atomic_write_json(self, path: Path, data: dict[str, Any]) -> None:
        temp_path = path.with_name(f".{path.stem}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, indent=2, ensure_ascii=False))
            os.replace(temp_path, path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    async def _read_json(self, path: Path) -> dict[str, Any]:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def save_session(self, session: Session) -> None:
        path = self._session_path(session.session_id)
        async with self._get_lock(session.session_id):
            try:
                await self._atomic_write_json(path, session.to_dict())
            except OSError as e:
                self.logger.error(
                    "session.save.failed", session_id=session.session_id, error=str(e)
                )
                raise StorageError(f"Failed to save session {session.session_id}: {e}") from e
        self.logger.debug("session.saved", session_id=session.session_id)

    async def load_session(self, session_id: str) -> Session | None:
        path = self._session_path(session_id)
        if not path.exists():
            return None
        async with self._get_lock(session_id):
            try:
                record = await self._read_json(path)
                return Session.from_dict(record)
            except (OSError, ValueError, KeyError, TypeError) as e:
                self.logger.error("session.load.failed", session_id=session_id, error=str(e))
                raise StorageError(f"Failed to load session {session_id}: {e}") from e

    async def delete_session(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        async with self._get_lock(session_id):
            if not path.exists():
                return False
            try:
                path.unlink()
            except OSError as e:
                raise StorageError(f"Failed to delete session {session_id}: {e}") from e
        self.locks.pop(session_id, None)
        return True

    async def session_exists(self, session_id: str) -> bool:
        return self._session_path(session_id).exists()

    async def _load_all(self) -> list[Session]:
        sessions = []
        for path in sorted(self.storage_dir.glob("*.json")):
            try:
                sessions.append(Session.from_dict(await self._read_json(path)))
            except (OSError, ValueError, KeyError, TypeError) as e:
                self.logger.warning(
                    "session.file.corrupt", path=str(path), error=str(e)
                )
        return sessions

    async def list_sessions(
        self,
        agent_name: str | None = None,
        user_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        return [
            s
            for s in await self._load_all()
            if (agent_name is None or s.agent_name == agent_name)
            and (user_id is None or s.user_id == user_id)
            and (status is None or s.status == status)
        ]

    async def get_sessions_by_tag(self, tag: str) -> list[Session]:
        return [s for s in await self._load_all() if tag in s.tags]

    async def cleanup_expired_sessions(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        removed = 0
        for session in await self._load_all():
            if session.is_expired(now) and await self.delete_session(session.session_id):
                removed += 1
        if removed:
            self.logger.info("sessions.expired.removed", count=removed)
        return removed

    async def get_session_count(self) -> int:
        return sum(1 for _ in self.storage_dir.glob("*.json"))
