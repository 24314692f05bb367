"""
LLM Provider Protocol

Narrow port through which executors reach a text generation capability.
Implementations live in the infrastructure layer (see LiteLLMProvider).
"""

from typing import Any, AsyncIterator, Protocol


class LLMProviderProtocol(Protocol):
    """
    Async text generation.

    complete() returns a result dict rather than raising for provider-side
    failures:

        {"success": True, "content": "...", "usage": {...}, "model": "..."}
        {"success": False, "error": "...", "error_type": "..."}

    complete_stream() yields chunk dicts:

        {"type": "token", "content": "..."}
        {"type": "done", "usage": {...}}
        {"type": "error", "message": "..."}
    """

    async def complete(
        self, messages: list[dict[str, str]], **kwargs: Any
    ) -> dict[str, Any]:
        """
        Generate a completion for a chat message list.

        Args:
            messages: [{"role": ..., "content": ...}, ...]
            **kwargs: Provider parameters (temperature, max_tokens, ...)

        Returns:
            Result dict as described on the class
        """
        ...

    def complete_stream(
        self, messages: list[dict[str, str]], **kwargs: Any
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield the completion as chunk dicts."""
        ...
