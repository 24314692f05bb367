"""
Session Manager
===============

Creates, resumes and persists sessions on top of a SessionStorageProtocol.

Active sessions are cached in process. Idle expiry is checked lazily: any
access to a session whose idle timeout has passed marks it expired and
evicts it. cleanup_expired_sessions() sweeps explicitly, and
start_maintenance() runs autosave plus that sweep periodically until
aclose() is called.

Persistence failures propagate (StorageError). The in-memory session is not
rolled back when a save fails.
"""

import asyncio
import dataclasses
from datetime import datetime
from typing import Any

import structlog

from agentweave.application.session_recovery import SessionRecoveryService
from agentweave.core.domain.errors import SessionNotFoundError
from agentweave.core.domain.events import utcnow
from agentweave.core.domain.models import ChatMessage
from agentweave.core.domain.session import Session, SessionConfiguration, SessionStatus
from agentweave.core.interfaces.storage import SessionStorageProtocol


class SessionManager:
    """
    Session lifecycle service.

    Args:
        storage: Session persistence backend
        default_configuration: Configuration for sessions created without one
    """

    def __init__(
        self,
        storage: SessionStorageProtocol,
        default_configuration: SessionConfiguration | None = None,
    ):
        self.storage = storage
        self.default_configuration = default_configuration or SessionConfiguration()
        self._active: dict[str, Session] = {}
        self._maintenance_task: asyncio.Task | None = None
        self.logger = structlog.get_logger().bind(component="session_manager")

    async def create_session(
        self,
        agent_name: str,
        user_id: str | None = None,
        configuration: SessionConfiguration | None = None,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> Session:
        session = Session(
            agent_name=agent_name,
            user_id=user_id,
            configuration=configuration or dataclasses.replace(self.default_configuration),
            metadata=dict(metadata or {}),
            tags=list(tags or []),
        )
        self._active[session.session_id] = session
        await self._persist(session)
        self.logger.info(
            "session.created",
            session_id=session.session_id,
            agent_name=agent_name,
            user_id=user_id,
        )
        return session

    async def get_session(self, session_id: str) -> Session | None:
        """
        Return a cached active session, or None if unknown or just expired.
        """
        session = self._active.get(session_id)
        if session is None:
            return None
        if session.is_expired():
            await self._expire(session)
            return None
        return session

    async def resume_session(self, session_id: str) -> Session | None:
        """
        Load a session (cache first, then storage) and make it active.

        Returns:
            The session, or None if it does not exist, has expired, or was
            completed or terminated
        """
        session = await self.get_session(session_id)
        if session is None:
            session = await self.storage.load_session(session_id)
            if session is None:
                self.logger.info("session.resume.not_found", session_id=session_id)
                return None

        if session.status in (SessionStatus.COMPLETED, SessionStatus.TERMINATED):
            self.logger.info(
                "session.resume.closed", session_id=session_id, status=session.status.value
            )
            return None
        if session.is_expired():
            await self._expire(session)
            return None

        session.status = SessionStatus.ACTIVE
        session.touch()
        self._active[session_id] = session
        await self._persist(session)
        self.logger.info(
            "session.resumed", session_id=session_id, messages=len(session.messages)
        )
        return session

    async def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Session:
        """
        Append a message, trimming the oldest beyond max_messages, and persist.

        Raises:
            SessionNotFoundError: If no active session has this id
        """
        session = await self._require(session_id)
        dropped = session.add_message(
            ChatMessage(role=role, content=content, metadata=dict(metadata or {}))
        )
        if dropped:
            self.logger.debug("session.messages.trimmed", session_id=session_id, dropped=dropped)
        await self.update_session(session)
        return session

    async def update_session(self, session: Session) -> None:
        """Record activity on a session and persist it."""
        session.touch()
        self._active[session.session_id] = session
        await self._persist(session)

    async def save_session(self, session: Session) -> None:
        """Persist a session regardless of its persist_to_storage setting."""
        await self.storage.save_session(session)

    async def pause_session(self, session_id: str) -> Session:
        session = await self._require(session_id)
        session.status = SessionStatus.PAUSED
        await self.update_session(session)
        self.logger.info("session.paused", session_id=session_id)
        return session

    async def complete_session(self, session_id: str) -> Session:
        """Mark completed, persist and drop from the active cache."""
        session = await self._require(session_id)
        session.status = SessionStatus.COMPLETED
        session.touch()
        await self._persist(session)
        self._active.pop(session_id, None)
        self.logger.info("session.completed", session_id=session_id)
        return session

    async def terminate_session(self, session_id: str, delete_from_storage: bool = False) -> bool:
        """
        End a session. Works for cached and stored sessions.

        Returns:
            False if the session does not exist anywhere
        """
        session = self._active.pop(session_id, None) or await self.storage.load_session(
            session_id
        )
        if session is None:
            return False
        if delete_from_storage:
            await self.storage.delete_session(session_id)
        else:
            session.status = SessionStatus.TERMINATED
            await self.storage.save_session(session)
        self.logger.info(
            "session.terminated", session_id=session_id, deleted=delete_from_storage
        )
        return True

    async def list_sessions(
        self,
        agent_name: str | None = None,
        user_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        """Query storage, overlaying newer in-process copies of active sessions."""
        stored = {
            s.session_id: s
            for s in await self.storage.list_sessions(agent_name, user_id, status)
        }
        for session in self._active.values():
            matches = (
                (agent_name is None or session.agent_name == agent_name)
                and (user_id is None or session.user_id == user_id)
                and (status is None or session.status == status)
            )
            if matches:
                stored[session.session_id] = session
            else:
                stored.pop(session.session_id, None)
        return sorted(stored.values(), key=lambda s: s.created_at)

    def get_active_sessions(self) -> list[Session]:
        return [s for s in self._active.values() if not s.is_expired()]

    async def recover_sessions(self, agent_name: str) -> list[Session]:
        """
        Reload sessions left active or paused for an executor name (e.g.
        after a crash) into the active cache. Expired ones are skipped.
        """
        recovered = await SessionRecoveryService(self.storage).recover_agent_sessions(agent_name)
        for session in recovered:
            self._active[session.session_id] = session
        return recovered

    async def cleanup_expired_sessions(self, now: datetime | None = None) -> int:
        """Expire idle cached sessions and delete expired stored ones."""
        now = now or utcnow()
        expired = [s for s in self._active.values() if s.is_expired(now)]
        for session in expired:
            await self._expire(session)
        removed = await self.storage.cleanup_expired_sessions(now)
        if expired or removed:
            self.logger.info(
                "sessions.cleanup", expired_active=len(expired), removed_from_storage=removed
            )
        return len(expired) + removed

    async def autosave_sessions(self) -> int:
        """Persist every cached session configured for storage."""
        saved = 0
        for session in list(self._active.values()):
            if session.configuration.persist_to_storage:
                await self.storage.save_session(session)
                saved += 1
        return saved

    def start_maintenance(self, interval_seconds: float | None = None) -> asyncio.Task:
        """
        Run autosave and the expiry sweep every interval (defaults to the
        default configuration's autosave interval). Idempotent.
        """
        if self._maintenance_task is None or self._maintenance_task.done():
            interval = interval_seconds or self.default_configuration.autosave_interval_seconds
            self._maintenance_task = asyncio.create_task(self._maintenance_loop(interval))
        return self._maintenance_task

    async def _maintenance_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.autosave_sessions()
                await self.cleanup_expired_sessions()
            except Exception as e:
                self.logger.error(
                    "sessions.maintenance.failed", error=str(e), error_type=type(e).__name__
                )

    async def aclose(self) -> None:
        """Stop maintenance and persist every cached session."""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None
        await self.autosave_sessions()

    async def statistics(self) -> dict[str, Any]:
        sessions = await self.list_sessions()
        by_status: dict[str, int] = {}
        for session in sessions:
            by_status[session.status.value] = by_status.get(session.status.value, 0) + 1
        return {
            "total_sessions": len(sessions),
            "active_in_memory": len(self._active),
            "by_status": by_status,
            "total_messages": sum(len(s.messages) for s in sessions),
        }

    async def _require(self, session_id: str) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _expire(self, session: Session) -> None:
        session.status = SessionStatus.EXPIRED
        self._active.pop(session.session_id, None)
        await self._persist(session)
        self.logger.info("session.expired", session_id=session.session_id)

    async def _persist(self, session: Session) -> None:
        if session.configuration.persist_to_storage:
            await self.storage.save_session(session)
