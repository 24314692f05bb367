"""
LiteLLM Provider

LLMProviderProtocol implementation on top of litellm, with retry and
exponential backoff for transient errors. Provider failures are reported
as {"success": False, ...} results instead of raised.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import litellm
import structlog


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 30
    retry_on_errors: list[str] = field(
        default_factory=lambda: ["RateLimitError", "Timeout", "APIConnectionError", "ServiceUnavailable"]
    )


class LiteLLMProvider:
    """
    Chat completions through litellm.

    Args:
        model: litellm model name (e.g. "gpt-4o-mini", "azure/my-deployment")
        default_params: Parameters merged into every call (kwargs win)
        retry_policy: Retry behaviour for transient errors
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        default_params: dict[str, Any] | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.model = model
        self.default_params = dict(default_params or {})
        self.retry_policy = retry_policy or RetryPolicy()
        self.logger = structlog.get_logger().bind(component="litellm_provider")

    def _should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt >= self.retry_policy.max_attempts - 1:
            return False
        error_type, message = type(error).__name__, str(error)
        return any(
            err in error_type or err in message for err in self.retry_policy.retry_on_errors
        )

    async def complete(
        self, messages: list[dict[str, str]], **kwargs: Any
    ) -> dict[str, Any]:
        """
        Perform a completion with retry logic.

        Returns:
            Dict with success, content, usage, model and latency_ms on
            success; success, error, error_type and model on failure
        """
        params = {**self.default_params, **kwargs}

        for attempt in range(self.retry_policy.max_attempts):
            start_time = time.time()
            try:
                self.logger.info(
                    "llm.completion.started",
                    model=self.model,
                    attempt=attempt + 1,
                    message_count=len(messages),
                )
                response = await litellm.acompletion(
                    model=self.model,
                    messages=messages,
                    timeout=self.retry_policy.timeout,
                    **params,
                )

                content = response.choices[0].message.content or ""
                usage = getattr(response, "usage", None) or {}
                if not isinstance(usage, dict):
                    usage = {
                        "total_tokens": getattr(usage, "total_tokens", 0),
                        "prompt_tokens": getattr(usage, "prompt_tokens", 0),
                        "completion_tokens": getattr(usage, "completion_tokens", 0),
                    }
                latency_ms = int((time.time() - start_time) * 1000)

                self.logger.info(
                    "llm.completion.success",
                    model=self.model,
                    tokens=usage.get("total_tokens", 0),
                    latency_ms=latency_ms,
                )
                return {
                    "success": True,
                    "content": content,
                    "usage": usage,
                    "model": self.model,
                    "latency_ms": latency_ms,
                }

            except Exception as e:
                if self._should_retry(e, attempt):
                    backoff_time = self.retry_policy.backoff_multiplier**attempt
                    self.logger.warning(
                        "llm.completion.retry",
                        model=self.model,
                        error_type=type(e).__name__,
                        attempt=attempt + 1,
                        backoff_seconds=backoff_time,
                    )
                    await asyncio.sleep(backoff_time)
                    continue

                self.logger.error(
                    "llm.completion.failed",
                    model=self.model,
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempts=attempt + 1,
                )
                return {
                    "success": False,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "model": self.model,
                }

        return {"success": False, "error": "Max retries exceeded", "model": self.model}

    async def complete_stream(
        self, messages: list[dict[str, str]], **kwargs: Any
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream a completion as chunk dicts (token / done / error).

        Streams are not retried: once tokens have been yielded a retry would
        duplicate output.
        """
        params = {**self.default_params, **kwargs}
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=messages,
                stream=True,
                timeout=self.retry_policy.timeout,
                **params,
            )
            usage: dict[str, Any] = {}
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                content = getattr(delta, "content", None)
                if content:
                    yield {"type": "token", "content": content}
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage:
                    usage = {"total_tokens": getattr(chunk_usage, "total_tokens", 0)}
            yield {"type": "done", "usage": usage}
        except Exception as e:
            self.logger.error(
                "llm.stream.failed", model=self.model, error=str(e), error_type=type(e).__name__
            )
            yield {"type": "error", "message": str(e)}
