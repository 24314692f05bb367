"""
LLM Executor

Executor backed by an LLMProviderProtocol. Keeps a bounded conversation
history (system instructions are always kept), publishes a MessageEvent for
every message it appends and, in streaming mode, a StreamChunkEvent per
generated token chunk.
"""

from typing import Any

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.cancellation import CancellationToken
from agentweave.core.domain.events import StreamChunkEvent
from agentweave.core.domain.executor import Executor
from agentweave.core.domain.models import AgentResult, ChatMessage
from agentweave.core.interfaces.llm import LLMProviderProtocol


class LlmExecutor(Executor):
    """
    Conversational executor.

    Each execute() call appends the input as a user message, sends the
    history to the provider and appends the reply as an assistant message.
    A provider that reports {"success": False} yields a failed AgentResult;
    exceptions raised by the provider propagate.

    Args:
        name: Executor name
        llm_provider: Text generation port
        system_instructions: Optional system prompt, added on initialize()
        max_history_size: Cap on non-system messages kept in history
        streaming: Use complete_stream() and publish StreamChunkEvents
        llm_params: Extra parameters passed to every provider call
        event_bus: Bus receiving this executor's events
    """

    def __init__(
        self,
        name: str,
        llm_provider: LLMProviderProtocol,
        system_instructions: str | None = None,
        max_history_size: int = 50,
        streaming: bool = False,
        llm_params: dict[str, Any] | None = None,
        event_bus: EventBus | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            name,
            event_bus=event_bus,
            configuration={
                "max_history_size": max_history_size,
                "streaming": streaming,
            },
            **kwargs,
        )
        if max_history_size < 1:
            raise ValueError("max_history_size must be at least 1")
        self.llm_provider = llm_provider
        self.system_instructions = system_instructions
        self.max_history_size = max_history_size
        self.streaming = streaming
        self.llm_params = dict(llm_params or {})
        self.logger = self.logger.bind(component="llm_executor")

    async def _on_initialize(self, cancel_token: CancellationToken | None) -> None:
        if self.system_instructions and not any(
            m.role == "system" for m in self._history
        ):
            self._history.insert(
                0, ChatMessage(role="system", content=self.system_instructions)
            )

    def replace_history(self, messages: list[ChatMessage]) -> None:
        super().replace_history(messages)
        if self.system_instructions and not any(m.role == "system" for m in messages):
            self._history.insert(
                0, ChatMessage(role="system", content=self.system_instructions)
            )

    async def _on_execute(
        self, input: str, cancel_token: CancellationToken | None
    ) -> AgentResult:
        self.add_message("user", input)
        self._trim_history()
        messages = [m.to_llm_message() for m in self._history]

        if self.streaming:
            result = await self._stream_completion(messages, cancel_token)
        else:
            result = await self.llm_provider.complete(messages, **self.llm_params)

        if not result.get("success"):
            self.logger.error(
                "llm.call.failed",
                error=result.get("error"),
                error_type=result.get("error_type"),
            )
            return AgentResult.create_failure(
                result.get("error") or "LLM call failed",
                history_size=len(self._history),
            )

        content = result.get("content") or ""
        self.add_message("assistant", content)
        self._trim_history()
        return AgentResult.create_success(
            content,
            history_size=len(self._history),
            usage=result.get("usage", {}),
            model=result.get("model"),
        )

    async def _stream_completion(
        self, messages: list[dict[str, str]], cancel_token: CancellationToken | None
    ) -> dict[str, Any]:
        parts: list[str] = []
        usage: dict[str, Any] = {}
        chunk_index = 0

        async for chunk in self.llm_provider.complete_stream(messages, **self.llm_params):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            chunk_type = chunk.get("type")
            if chunk_type == "token":
                text = chunk.get("content", "")
                if not text:
                    continue
                parts.append(text)
                self.emit(StreamChunkEvent(chunk=text, chunk_index=chunk_index))
                chunk_index += 1
            elif chunk_type == "done":
                usage = chunk.get("usage", {})
            elif chunk_type == "error":
                return {"success": False, "error": chunk.get("message", "stream error")}

        self.logger.debug("llm.stream.completed", chunks=chunk_index)
        return {"success": True, "content": "".join(parts), "usage": usage}

    def _trim_history(self) -> None:
        """Drop the oldest non-system messages beyond max_history_size."""
        system = [m for m in self._history if m.role == "system"]
        others = [m for m in self._history if m.role != "system"]
        if len(others) > self.max_history_size:
            self._history = system + others[-self.max_history_size :]
