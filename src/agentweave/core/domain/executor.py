"""
Executor Lifecycle

Base class for everything that turns an input string into an AgentResult:
single LLM-backed agents, inline functions and whole workflows. The base
class owns the lifecycle state machine and event emission; subclasses
implement _on_execute() (and optionally _on_initialize() / _on_dispose()).

Lifecycle:
    idle -> initializing -> idle                       (initialize)
    idle|completed|error|cancelled -> running          (execute)
    running -> completed | error | cancelled
    running <-> paused                                 (pause / resume)

Status always transitions before execute() returns or raises. Errors are
recorded (status, AgentErrorEvent) and re-raised; cancellation sets the
cancelled status without an error event and re-raises.
"""

import asyncio
import dataclasses
import time
import traceback
from typing import Any, Awaitable, Callable

import structlog

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.errors import ExecutorBusyError
from agentweave.core.domain.events import (
    AgentCompletedEvent,
    AgentErrorEvent,
    AgentEvent,
    AgentStartedEvent,
    MessageEvent,
    StateChangedEvent,
)
from agentweave.core.domain.models import AgentResult, ChatMessage, ExecutorStatus
from agentweave.core.domain.state import ExecutorState

_IN_FLIGHT = (ExecutorStatus.INITIALIZING, ExecutorStatus.RUNNING, ExecutorStatus.PAUSED)


class Executor:
    """
    Base executor with lifecycle, history and event emission.

    An instance is not reentrant: one execute() at a time. Run separate
    instances for concurrent work.

    Args:
        name: Executor name (also used to resolve workflow step targets)
        event_bus: Bus receiving this executor's events. A private bus is
            created when omitted.
        configuration: Free-form settings reported in AgentStartedEvent
        state: Existing state to adopt (e.g. restored from a session)
    """

    def __init__(
        self,
        name: str,
        event_bus: EventBus | None = None,
        configuration: dict[str, Any] | None = None,
        state: ExecutorState | None = None,
    ):
        self.state = state or ExecutorState(agent_name=name)
        if configuration:
            self.state.configuration.update(configuration)
        self.event_bus = event_bus or EventBus()
        self._history: list[ChatMessage] = []
        self._subscriptions: list[tuple[type[AgentEvent], Callable]] = []
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._initialized = False
        self.logger = structlog.get_logger().bind(
            component="executor", agent_name=name, agent_id=self.state.agent_id
        )

    @property
    def agent_id(self) -> str:
        return self.state.agent_id

    @property
    def name(self) -> str:
        return self.state.agent_name

    @property
    def status(self) -> ExecutorStatus:
        return self.state.status

    @property
    def session_id(self) -> str | None:
        return self.state.session_id

    @property
    def configuration(self) -> dict[str, Any]:
        return dict(self.state.configuration)

    @property
    def history(self) -> list[ChatMessage]:
        """Copy of the append-only message history."""
        return list(self._history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, cancel_token: CancellationToken | None = None) -> None:
        """Run one-time setup. Calling it again is a no-op."""
        if self._initialized:
            return
        self._set_status(ExecutorStatus.INITIALIZING)
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            await self._on_initialize(cancel_token)
        except asyncio.CancelledError:
            self._set_status(ExecutorStatus.CANCELLED)
            raise
        except Exception as e:
            self._record_error(e)
            raise
        self._initialized = True
        self._set_status(ExecutorStatus.IDLE)

    async def execute(
        self, input: str, cancel_token: CancellationToken | None = None
    ) -> AgentResult:
        """
        Run the executor on one input.

        Args:
            input: Input text
            cancel_token: Cooperative cancellation signal for this run

        Returns:
            The AgentResult produced by _on_execute()

        Raises:
            ExecutorBusyError: If this instance is already running
            asyncio.CancelledError: If the run was cancelled
            Exception: Any error raised by _on_execute(), after it is recorded
        """
        if self.status in _IN_FLIGHT:
            raise ExecutorBusyError(f"Executor '{self.name}' is already running")
        if not self._initialized:
            await self.initialize(cancel_token)

        start = time.monotonic()
        self.state.touch()
        self._resume_event.set()
        self._set_status(ExecutorStatus.RUNNING)
        self.emit(
            AgentStartedEvent(agent_name=self.name, configuration=self.configuration)
        )
        self.logger.info("executor.execution.started", input_length=len(input))

        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            result = await self._on_execute(input, cancel_token)
        except asyncio.CancelledError:
            self._set_status(ExecutorStatus.CANCELLED)
            self.logger.warning(
                "executor.execution.cancelled", duration=time.monotonic() - start
            )
            raise
        except Exception as e:
            self._record_error(e)
            raise

        duration = time.monotonic() - start
        self.state.touch()
        self._set_status(ExecutorStatus.COMPLETED)
        self.emit(
            AgentCompletedEvent(
                success=result.success, output=result.output, duration=duration
            )
        )
        self.logger.info(
            "executor.execution.completed", success=result.success, duration=duration
        )
        return result

    def pause(self) -> bool:
        """
        Request a pause. Takes effect at the executor's next checkpoint.

        Returns:
            True if the executor was running
        """
        if self.status != ExecutorStatus.RUNNING:
            return False
        self._resume_event.clear()
        self._set_status(ExecutorStatus.PAUSED)
        return True

    def resume(self) -> bool:
        if self.status != ExecutorStatus.PAUSED:
            return False
        self._set_status(ExecutorStatus.RUNNING)
        self._resume_event.set()
        return True

    async def dispose(self) -> None:
        """Run subclass cleanup and release this executor's bus subscriptions."""
        try:
            await self._on_dispose()
        finally:
            for event_type, handler in self._subscriptions:
                self.event_bus.unsubscribe(event_type, handler)
            self._subscriptions.clear()
            self.logger.debug("executor.disposed")

    async def _checkpoint(self, cancel_token: CancellationToken | None) -> None:
        """Honor cancellation and block while paused."""
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if not self._resume_event.is_set():
            self.logger.debug("executor.paused.waiting")
            await self._resume_event.wait()
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

    # ------------------------------------------------------------------
    # Events and history
    # ------------------------------------------------------------------

    def subscribe(self, event_type: type[AgentEvent], handler: Callable) -> Callable:
        """Subscribe on this executor's bus; released again on dispose()."""
        self.event_bus.subscribe(event_type, handler)
        self._subscriptions.append((event_type, handler))
        return handler

    def bind_event_bus(self, event_bus: EventBus) -> None:
        """Switch to another bus, moving subscriptions made through subscribe()."""
        if event_bus is self.event_bus:
            return
        for event_type, handler in self._subscriptions:
            self.event_bus.unsubscribe(event_type, handler)
            event_bus.subscribe(event_type, handler)
        self.event_bus = event_bus

    def emit(self, event: AgentEvent) -> None:
        """Stamp the event with this executor's id and session, then publish it."""
        self.event_bus.publish(
            dataclasses.replace(
                event, agent_id=self.agent_id, session_id=self.session_id
            )
        )

    def add_message(
        self, role: str, content: str, metadata: dict[str, Any] | None = None
    ) -> ChatMessage:
        message = ChatMessage(role=role, content=content, metadata=dict(metadata or {}))
        self._history.append(message)
        self.emit(MessageEvent(role=role, content=content))
        return message

    def replace_history(self, messages: list[ChatMessage]) -> None:
        """Swap in a stored transcript (used when resuming a session)."""
        self._history = list(messages)

    def clear_history(self) -> None:
        self._history.clear()

    def bind_session(self, session_id: str | None) -> None:
        self.state.session_id = session_id

    def update_configuration(self, configuration: dict[str, Any]) -> None:
        for key, value in configuration.items():
            old = self.state.configuration.get(key)
            self.state.configuration[key] = value
            self.emit(
                StateChangedEvent(
                    state_key=f"configuration.{key}", old_value=old, new_value=value
                )
            )

    def get_state_snapshot(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "agentName": self.name,
            "status": self.status.value,
            "configuration": self.configuration,
            "data": self.state.snapshot(),
        }

    # ------------------------------------------------------------------
    # Internals and subclass hooks
    # ------------------------------------------------------------------

    def _set_status(self, status: ExecutorStatus) -> None:
        old = self.state.status
        if old == status:
            return
        self.state.status = status
        self.emit(
            StateChangedEvent(
                state_key="status", old_value=old.value, new_value=status.value
            )
        )

    def _record_error(self, error: Exception) -> None:
        self._set_status(ExecutorStatus.ERROR)
        self.emit(
            AgentErrorEvent(
                error_message=str(error),
                error_type=type(error).__name__,
                stack_trace="".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            )
        )
        self.logger.error(
            "executor.execution.failed",
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _on_initialize(self, cancel_token: CancellationToken | None) -> None:
        """Subclass hook for one-time setup."""

    async def _on_execute(
        self, input: str, cancel_token: CancellationToken | None
    ) -> AgentResult:
        raise NotImplementedError

    async def _on_dispose(self) -> None:
        """Subclass hook for cleanup."""


ExecutorFunction = Callable[[str], Awaitable[AgentResult | str] | AgentResult | str]


class FunctionExecutor(Executor):
    """
    Executor wrapping a plain callable.

    The callable receives the input string and may be sync or async. A str
    return value becomes a successful AgentResult.

    Example:
        >>> upper = FunctionExecutor("upper", lambda text: text.upper())
        >>> (await upper.execute("hello")).output
        'HELLO'
    """

    def __init__(self, name: str, func: ExecutorFunction, **kwargs: Any):
        super().__init__(name, **kwargs)
        self.func = func

    async def _on_execute(
        self, input: str, cancel_token: CancellationToken | None
    ) -> AgentResult:
        value = self.func(input)
        if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
            value = await value
        if isinstance(value, AgentResult):
            return value
        return AgentResult.create_success(str(value))
