"""
Application Layer - Component Factory

Wires the core domain with infrastructure adapters based on settings.

Key Responsibilities:
- Choose session and memory storage backends (in-memory or file)
- Build the shared streaming event bus, runtime and replay recorder
- Build session manager, memory bank and LLM-backed executors
"""

from typing import Any

import structlog

from agentweave.application.memory_bank import MemoryBank
from agentweave.application.runtime import ExecutorRuntime
from agentweave.application.session_manager import SessionManager
from agentweave.application.workflow_factory import WorkflowFactory
from agentweave.config.settings import AgentweaveSettings
from agentweave.core.bus.replay import EventReplay
from agentweave.core.bus.streaming import StreamingEventBus
from agentweave.core.domain.llm_executor import LlmExecutor
from agentweave.core.interfaces.llm import LLMProviderProtocol
from agentweave.core.interfaces.storage import MemoryStorageProtocol, SessionStorageProtocol
from agentweave.infrastructure.logging_config import setup_logging


class ComponentFactory:
    """
    Factory for runtime components with dependency injection.

    Components that are meant to be shared (bus, runtime, storages) are
    created once per factory and reused by the other builders.

    Example:
        >>> factory = ComponentFactory(AgentweaveSettings(session_storage="memory"))
        >>> runtime = factory.create_runtime()
        >>> writer = factory.create_llm_executor("writer", system_instructions="Write.")
        >>> sessions = factory.create_session_manager()
    """

    def __init__(self, settings: AgentweaveSettings | None = None):
        self.settings = settings or AgentweaveSettings()
        self.logger = structlog.get_logger().bind(component="component_factory")
        self._event_bus: StreamingEventBus | None = None
        self._runtime: ExecutorRuntime | None = None
        self._session_storage: SessionStorageProtocol | None = None
        self._memory_storage: MemoryStorageProtocol | None = None

    def configure_logging(self) -> None:
        setup_logging(self.settings.log_level, self.settings.log_format)

    def create_event_bus(self) -> StreamingEventBus:
        if self._event_bus is None:
            self._event_bus = StreamingEventBus(
                default_buffer_size=self.settings.stream_buffer_size
            )
        return self._event_bus

    def create_runtime(self) -> ExecutorRuntime:
        if self._runtime is None:
            self._runtime = ExecutorRuntime(event_bus=self.create_event_bus())
        return self._runtime

    def create_event_replay(self, attach: bool = True) -> EventReplay:
        replay = EventReplay(max_history_size=self.settings.replay_history_size)
        if attach:
            replay.attach(self.create_event_bus())
        return replay

    def create_workflow_factory(self) -> WorkflowFactory:
        return WorkflowFactory(self.create_runtime())

    def create_session_manager(self) -> SessionManager:
        manager = SessionManager(
            self._create_session_storage(),
            default_configuration=self.settings.session_configuration(),
        )
        if self.settings.session_maintenance_enabled:
            manager.start_maintenance(self.settings.session_autosave_interval_seconds)
        return manager

    def create_memory_bank(self) -> MemoryBank:
        return MemoryBank(
            self._create_memory_storage(),
            default_consolidation_threshold=self.settings.memory_consolidation_threshold,
        )

    def create_llm_executor(
        self,
        name: str,
        llm_provider: LLMProviderProtocol | None = None,
        system_instructions: str | None = None,
        register: bool = True,
        **kwargs: Any,
    ) -> LlmExecutor:
        """
        Create an LLM-backed executor on the shared bus.

        Args:
            name: Executor name (workflow step target)
            llm_provider: Provider to use, a LiteLLMProvider by default
            system_instructions: Optional system prompt
            register: Register the executor with the runtime
            **kwargs: Passed to LlmExecutor (max_history_size, streaming, ...)
        """
        executor = LlmExecutor(
            name,
            llm_provider or self._create_llm_provider(),
            system_instructions=system_instructions,
            event_bus=self.create_event_bus(),
            **kwargs,
        )
        if register:
            self.create_runtime().register(executor)
        return executor

    def _create_session_storage(self) -> SessionStorageProtocol:
        if self._session_storage is not None:
            return self._session_storage

        backend = self.settings.session_storage
        if backend == "file":
            from agentweave.infrastructure.persistence.file_session_storage import (
                FileSessionStorage,
            )

            self._session_storage = FileSessionStorage(self.settings.session_storage_dir)
        elif backend == "memory":
            from agentweave.infrastructure.persistence.in_memory_session_storage import (
                InMemorySessionStorage,
            )

            self._session_storage = InMemorySessionStorage()
        else:
            raise ValueError(f"Unknown session storage: {backend}")

        self.logger.debug("session_storage.created", backend=backend)
        return self._session_storage

    def _create_memory_storage(self) -> MemoryStorageProtocol:
        if self._memory_storage is not None:
            return self._memory_storage

        backend = self.settings.memory_storage
        if backend == "file":
            from agentweave.infrastructure.persistence.file_memory_store import (
                FileMemoryStore,
            )

            self._memory_storage = FileMemoryStore(self.settings.memory_storage_dir)
        elif backend == "memory":
            from agentweave.infrastructure.persistence.in_memory_memory_store import (
                InMemoryMemoryStore,
            )

            self._memory_storage = InMemoryMemoryStore()
        else:
            raise ValueError(f"Unknown memory storage: {backend}")

        self.logger.debug("memory_storage.created", backend=backend)
        return self._memory_storage

    def _create_llm_provider(self) -> LLMProviderProtocol:
        from agentweave.infrastructure.llm.litellm_provider import LiteLLMProvider

        return LiteLLMProvider(model=self.settings.llm_model)
