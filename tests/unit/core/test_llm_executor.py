"""
Unit Tests for LlmExecutor

Uses an AsyncMock provider to verify history handling, provider failures
and streaming chunk events without calling a real model.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agentweave.core.bus.event_bus import EventBus
from agentweave.core.domain.events import StreamChunkEvent
from agentweave.core.domain.llm_executor import LlmExecutor
from agentweave.core.domain.models import ChatMessage, ExecutorStatus


@pytest.fixture
def mock_llm_provider():
    """Mock LLMProviderProtocol."""
    mock = AsyncMock()
    mock.complete.return_value = {
        "success": True,
        "content": "Hi there",
        "usage": {"total_tokens": 12},
        "model": "test-model",
    }
    return mock


@pytest.fixture
def executor(mock_llm_provider):
    return LlmExecutor(
        "assistant",
        mock_llm_provider,
        system_instructions="Be brief.",
        event_bus=EventBus(),
    )


class TestComplete:
    @pytest.mark.asyncio
    async def test_sends_history_and_records_reply(self, executor, mock_llm_provider):
        result = await executor.execute("Hello")

        assert result.success is True
        assert result.output == "Hi there"
        assert result.metadata["model"] == "test-model"
        messages = mock_llm_provider.complete.call_args.args[0]
        assert messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ]
        assert [m.role for m in executor.history] == ["system", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_llm_params_are_forwarded(self, mock_llm_provider):
        executor = LlmExecutor(
            "assistant", mock_llm_provider, llm_params={"temperature": 0.1}
        )

        await executor.execute("Hello")

        assert mock_llm_provider.complete.call_args.kwargs == {"temperature": 0.1}

    @pytest.mark.asyncio
    async def test_provider_failure_returns_failed_result(self, executor, mock_llm_provider):
        mock_llm_provider.complete.return_value = {
            "success": False,
            "error": "rate limited",
            "error_type": "RateLimitError",
        }

        result = await executor.execute("Hello")

        assert result.success is False
        assert result.error == "rate limited"
        assert executor.status == ExecutorStatus.COMPLETED
        assert [m.role for m in executor.history] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_provider_exception_propagates(self, executor, mock_llm_provider):
        mock_llm_provider.complete.side_effect = ConnectionError("down")

        with pytest.raises(ConnectionError):
            await executor.execute("Hello")

        assert executor.status == ExecutorStatus.ERROR


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_trimmed_but_system_kept(self, mock_llm_provider):
        executor = LlmExecutor(
            "assistant", mock_llm_provider, system_instructions="sys", max_history_size=3
        )

        for i in range(3):
            await executor.execute(f"q{i}")

        history = executor.history
        assert history[0].role == "system"
        assert [m.content for m in history[1:]] == ["Hi there", "q2", "Hi there"]

    def test_replace_history_keeps_system_instructions(self, executor):
        executor.replace_history([ChatMessage(role="user", content="earlier")])

        assert [m.role for m in executor.history] == ["system", "user"]

    def test_invalid_history_size(self, mock_llm_provider):
        with pytest.raises(ValueError):
            LlmExecutor("assistant", mock_llm_provider, max_history_size=0)


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_chunks_become_events(self):
        async def stream(messages, **kwargs):
            for chunk in (
                {"type": "token", "content": "Hel"},
                {"type": "token", "content": "lo"},
                {"type": "done", "usage": {"total_tokens": 3}},
            ):
                yield chunk

        provider = MagicMock()
        provider.complete_stream = stream
        bus = EventBus()
        chunks = []
        bus.subscribe(StreamChunkEvent, chunks.append)
        executor = LlmExecutor("assistant", provider, streaming=True, event_bus=bus)

        result = await executor.execute("Hi")

        assert result.output == "Hello"
        assert result.metadata["usage"] == {"total_tokens": 3}
        assert [(c.chunk, c.chunk_index) for c in chunks] == [("Hel", 0), ("lo", 1)]

    @pytest.mark.asyncio
    async def test_stream_error_chunk_fails_result(self):
        async def stream(messages, **kwargs):
            yield {"type": "token", "content": "partial"}
            yield {"type": "error", "message": "connection reset"}

        provider = MagicMock()
        provider.complete_stream = stream
        executor = LlmExecutor("assistant", provider, streaming=True)

        result = await executor.execute("Hi")

        assert result.success is False
        assert result.error == "connection reset"
