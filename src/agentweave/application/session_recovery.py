"""
Session Recovery
================

Finds sessions that were left active or paused (for example after the
process terminated abnormally), validates them, and writes backups.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import structlog

from agentweave.core.domain.errors import StorageError
from agentweave.core.domain.events import utcnow
from agentweave.core.domain.session import Session, SessionStatus
from agentweave.core.interfaces.storage import SessionStorageProtocol

_RECOVERABLE = (SessionStatus.ACTIVE, SessionStatus.PAUSED)


@dataclass
class SessionValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SessionRecoveryResult:
    success: bool
    session: Session | None = None
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)


class SessionRecoveryService:
    """Recovers persisted sessions through a SessionStorageProtocol."""

    def __init__(self, storage: SessionStorageProtocol):
        self.storage = storage
        self.logger = structlog.get_logger().bind(component="session_recovery")

    async def recover_agent_sessions(
        self, agent_name: str, only_active: bool = True
    ) -> list[Session]:
        """
        Sessions of an executor that can be picked up again.

        Args:
            agent_name: Executor name the sessions belong to
            only_active: Restrict to active/paused sessions that have not
                expired and have recovery enabled
        """
        sessions = await self.storage.list_sessions(agent_name=agent_name)
        if only_active:
            sessions = [s for s in sessions if self._recoverable(s)]
        self.logger.info(
            "sessions.recovered", agent_name=agent_name, count=len(sessions)
        )
        return sessions

    async def recover_user_sessions(self, user_id: str) -> list[Session]:
        sessions = await self.storage.list_sessions(user_id=user_id)
        return [s for s in sessions if self._recoverable(s)]

    async def recover_session(self, session_id: str) -> SessionRecoveryResult:
        """
        Load and validate one session.

        Storage failures are reported in the result instead of raised.
        """
        try:
            session = await self.storage.load_session(session_id)
        except StorageError as e:
            self.logger.error("session.recovery.failed", session_id=session_id, error=str(e))
            return SessionRecoveryResult(success=False, reason=f"Storage error: {e}")

        if session is None:
            return SessionRecoveryResult(success=False, reason="Session not found")
        if session.is_expired():
            return SessionRecoveryResult(success=False, session=session, reason="Session expired")
        if session.status not in _RECOVERABLE:
            return SessionRecoveryResult(
                success=False,
                session=session,
                reason=f"Session is {session.status.value}",
            )

        validation = self.validate_session(session)
        if not validation.is_valid:
            return SessionRecoveryResult(
                success=False,
                session=session,
                reason="; ".join(validation.errors),
                warnings=validation.warnings,
            )
        return SessionRecoveryResult(success=True, session=session, warnings=validation.warnings)

    def validate_session(self, session: Session) -> SessionValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not session.session_id:
            errors.append("Session id is empty")
        if not session.agent_name:
            errors.append("Agent name is empty")
        if session.last_active_at < session.created_at:
            errors.append("lastActiveAt is before createdAt")
        if len(session.messages) > session.configuration.max_messages:
            warnings.append(
                f"Message count {len(session.messages)} exceeds maxMessages "
                f"{session.configuration.max_messages}"
            )
        if not session.configuration.enable_recovery:
            warnings.append("Recovery is disabled for this session")
        if any(not m.role for m in session.messages):
            errors.append("Message without role")

        return SessionValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    async def backup_session(self, session: Session, backup_dir: str | Path) -> Path:
        """
        Write a timestamped JSON copy of the session.

        Raises:
            StorageError: If the backup cannot be written
        """
        backup_dir = Path(backup_dir)
        stamp = utcnow().strftime("%Y%m%dT%H%M%S%f")
        path = backup_dir / f"{session.session_id}.{stamp}.json"
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))
        except OSError as e:
            raise StorageError(f"Failed to back up session {session.session_id}: {e}") from e
        self.logger.info("session.backed_up", session_id=session.session_id, path=str(path))
        return path

    @staticmethod
    def _recoverable(session: Session) -> bool:
        return (
            session.status in _RECOVERABLE
            and not session.is_expired()
            and session.configuration.enable_recovery
        )
