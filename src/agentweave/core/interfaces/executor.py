"""Executor capability interface used by workflow steps and the runtime."""

from typing import Protocol

from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.models import AgentResult, ExecutorStatus


class ExecutorProtocol(Protocol):
    """Anything that turns an input string into an AgentResult."""

    @property
    def agent_id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def status(self) -> ExecutorStatus: ...

    async def execute(
        self, input: str, cancel_token: CancellationToken | None = None
    ) -> AgentResult: ...


class ExecutorLookup(Protocol):
    """
    Resolves a workflow step target (executor id or name) to an executor.

    A plain dict of name -> executor satisfies it, as does ExecutorRuntime.
    """

    def get(self, target: str) -> ExecutorProtocol | None: ...
