"""
Executor Runtime

Registry of executors sharing one event bus. Workflows use it as their step
target lookup, so a step target may be an executor id or its name.
"""

import asyncio
from typing import Any

import structlog

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.bus.streaming import StreamingEventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.executor import Executor
from agentweave.core.domain.models import AgentResult, ExecutorStatus


class ExecutorRuntime:
    """
    Holds registered executors and the bus they publish to.

    Example:
        >>> runtime = ExecutorRuntime()
        >>> writer = runtime.register(LlmExecutor("writer", provider, event_bus=runtime.event_bus))
        >>> result = await runtime.execute("writer", "Draft a haiku")
    """

    def __init__(self, event_bus: EventBus | None = None):
        self.event_bus = event_bus or StreamingEventBus()
        self._executors: dict[str, Executor] = {}
        self.logger = structlog.get_logger().bind(component="executor_runtime")

    def register(self, executor: Executor) -> Executor:
        """
        Add an executor. It is rebound to the runtime bus if it uses another.

        Raises:
            ValueError: If another executor already uses the same name
        """
        for existing in self._executors.values():
            if existing.name == executor.name and existing is not executor:
                raise ValueError(f"Executor name already registered: {executor.name}")
        executor.bind_event_bus(self.event_bus)
        self._executors[executor.agent_id] = executor
        self.logger.info(
            "executor.registered", agent_id=executor.agent_id, agent_name=executor.name
        )
        return executor

    def unregister(self, agent_id: str) -> bool:
        removed = self._executors.pop(agent_id, None)
        if removed is not None:
            self.logger.info("executor.unregistered", agent_id=agent_id)
        return removed is not None

    def get(self, target: str) -> Executor | None:
        """Look up an executor by id, falling back to its name."""
        executor = self._executors.get(target)
        if executor is not None:
            return executor
        for candidate in self._executors.values():
            if candidate.name == target:
                return candidate
        return None

    def list_executors(self) -> list[Executor]:
        return list(self._executors.values())

    async def execute(
        self,
        target: str,
        input: str,
        cancel_token: CancellationToken | None = None,
    ) -> AgentResult:
        """
        Execute a registered executor.

        Raises:
            KeyError: If no executor matches target
        """
        executor = self.get(target)
        if executor is None:
            raise KeyError(f"Executor not found: {target}")
        return await executor.execute(input, cancel_token)

    async def execute_sequential(
        self,
        targets: list[str],
        input: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[AgentResult]:
        """Chain executors, feeding each successful output to the next."""
        results = []
        current = input
        for target in targets:
            result = await self.execute(target, current, cancel_token)
            results.append(result)
            if not result.success:
                break
            current = result.output
        return results

    async def execute_parallel(
        self,
        targets: list[str],
        input: str,
        cancel_token: CancellationToken | None = None,
    ) -> list[AgentResult]:
        """Run executors concurrently on the same input; results in target order."""
        return list(
            await asyncio.gather(
                *(self.execute(target, input, cancel_token) for target in targets)
            )
        )

    def statistics(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for executor in self._executors.values():
            by_status[executor.status.value] = by_status.get(executor.status.value, 0) + 1
        return {
            "total_executors": len(self._executors),
            "running": by_status.get(ExecutorStatus.RUNNING.value, 0),
            "by_status": by_status,
        }

    async def dispose_all(self) -> None:
        """Dispose every executor and empty the registry."""
        executors = list(self._executors.values())
        self._executors.clear()
        for executor in executors:
            try:
                await executor.dispose()
            except Exception as e:
                self.logger.error(
                    "executor.dispose.failed",
                    agent_id=executor.agent_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        self.logger.info("runtime.disposed", executors=len(executors))
