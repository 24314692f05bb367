"""In-process session storage. Records are deep-copied on save and load."""

import copy
from datetime import datetime

from agentweave.core.domain.events import utcnow
from agentweave.core.domain.session import Session, SessionStatus


class InMemorySessionStorage:
    """
    Dict-backed SessionStorageProtocol implementation.

    Sessions are stored as serialized records, so callers never share
    mutable objects with the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}

    async def save_session(self, session: Session) -> None:
        self._records[session.session_id] = copy.deepcopy(session.to_dict())

    async def load_session(self, session_id: str) -> Session | None:
        record = self._records.get(session_id)
        return Session.from_dict(copy.deepcopy(record)) if record else None

    async def delete_session(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    async def session_exists(self, session_id: str) -> bool:
        return session_id in self._records

    async def list_sessions(
        self,
        agent_name: str | None = None,
        user_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        sessions = [Session.from_dict(copy.deepcopy(r)) for r in self._records.values()]
        return [
            s
            for s in sessions
            if (agent_name is None or s.agent_name == agent_name)
            and (user_id is None or s.user_id == user_id)
            and (status is None or s.status == status)
        ]

    async def get_sessions_by_tag(self, tag: str) -> list[Session]:
        return [s for s in await self.list_sessions() if tag in s.tags]

    async def cleanup_expired_sessions(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = [s.session_id for s in await self.list_sessions() if s.is_expired(now)]
        for session_id in expired:
            del self._records[session_id]
        return len(expired)

    async def get_session_count(self) -> int:
        return len(self._records)
