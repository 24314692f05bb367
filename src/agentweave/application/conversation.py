"""
Session-Bound Executor

Attaches a session to an executor's history: starting or resuming a session
rehydrates the executor's in-memory transcript, and every execute() appends
the user input and the executor's answer to the session before persisting it.
"""

from typing import Any

import structlog

from agentweave.application.session_manager import SessionManager
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.errors import SessionNotFoundError
from agentweave.core.domain.executor import Executor
from agentweave.core.domain.models import AgentResult
from agentweave.core.domain.session import Session, SessionConfiguration, SessionStatus


class SessionExecutor:
    """
    Runs an executor inside a persistent session.

    Example:
        >>> conversation = SessionExecutor(assistant, session_manager)
        >>> await conversation.start_session(user_id="u-1")
        >>> result = await conversation.execute("Hi there")
        >>> await conversation.pause_session()
        >>> ...
        >>> await conversation.resume_session(session_id)
    """

    def __init__(self, executor: Executor, session_manager: SessionManager):
        self.executor = executor
        self.session_manager = session_manager
        self.session: Session | None = None
        self.logger = structlog.get_logger().bind(
            component="session_executor", agent_name=executor.name
        )

    @property
    def session_id(self) -> str | None:
        return self.session.session_id if self.session else None

    async def start_session(
        self,
        user_id: str | None = None,
        configuration: SessionConfiguration | None = None,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> Session:
        session = await self.session_manager.create_session(
            self.executor.name,
            user_id=user_id,
            configuration=configuration,
            metadata=metadata,
            tags=tags,
        )
        self._attach(session)
        self.executor.replace_history([])
        return session

    async def resume_session(self, session_id: str) -> Session | None:
        """
        Resume a stored session and rehydrate the executor history.

        Returns:
            The session, or None if it cannot be resumed
        """
        session = await self.session_manager.resume_session(session_id)
        if session is None:
            return None
        if session.agent_name != self.executor.name:
            self.logger.warning(
                "session.agent_mismatch",
                session_id=session_id,
                session_agent=session.agent_name,
            )
            return None

        self._attach(session)
        self.executor.replace_history(session.messages)
        if session.state:
            self.executor.state.restore(session.state)
        return session

    async def execute(
        self,
        input: str,
        cancel_token: CancellationToken | None = None,
        user_id: str | None = None,
    ) -> AgentResult:
        """
        Execute within the current session, starting one if none is attached.

        Raises:
            SessionNotFoundError: If the attached session was closed or expired
        """
        if self.session is None:
            await self.start_session(user_id=user_id)

        session_id = self.session.session_id
        await self.session_manager.add_message(session_id, "user", input)
        result = await self.executor.execute(input, cancel_token)

        if result.success:
            await self.session_manager.add_message(session_id, "assistant", result.output)
        else:
            await self.session_manager.add_message(
                session_id, "assistant", result.error or "", metadata={"error": True}
            )

        self.session.state = self.executor.state.snapshot()
        await self.session_manager.update_session(self.session)
        return result

    async def save_session(self) -> None:
        if self.session is None:
            return
        self.session.state = self.executor.state.snapshot()
        await self.session_manager.save_session(self.session)

    async def pause_session(self) -> Session:
        self.session = await self.session_manager.pause_session(self._require_session_id())
        return self.session

    async def complete_session(self) -> Session:
        session = await self.session_manager.complete_session(self._require_session_id())
        self.session = None
        self.executor.bind_session(None)
        return session

    async def list_sessions(
        self, user_id: str | None = None, status: SessionStatus | None = None
    ) -> list[Session]:
        return await self.session_manager.list_sessions(
            agent_name=self.executor.name, user_id=user_id, status=status
        )

    async def dispose(self) -> None:
        """Save an attached session, then dispose the executor."""
        try:
            if self.session is not None and self.session.status == SessionStatus.ACTIVE:
                await self.save_session()
        finally:
            await self.executor.dispose()

    def _attach(self, session: Session) -> None:
        self.session = session
        self.executor.bind_session(session.session_id)
        self.logger.info("session.attached", session_id=session.session_id)

    def _require_session_id(self) -> str:
        if self.session is None:
            raise SessionNotFoundError("<none>")
        return self.session.session_id
