"""OpenAI adapter for conversation generation and judging.

Uses the chat completions API. Two model-family quirks are handled
here so callers can pass one LLMConfig to any model: gpt-5 models
reject a non-default temperature, and gpt-4o / gpt-5 models take
``max_completion_tokens`` instead of ``max_tokens``.
"""

from __future__ import annotations

from typing import Any

from parley.llm.base import BaseLLMAdapter, LLMCompletion, LLMConfig, LLMMessage, TokenUsage


def supports_temperature(model: str) -> bool:
    """Return False for model families that only accept the default temperature."""
    return "gpt-5" not in model


def token_limit_param(model: str) -> str:
    """Return the request parameter name that caps output tokens for ``model``."""
    if "gpt-5" in model or "gpt-4o" in model:
        return "max_completion_tokens"
    return "max_tokens"


class OpenAIAdapter(BaseLLMAdapter):
    """Adapter for the OpenAI chat completion API.

    Uses a lazy-initialized AsyncOpenAI client that reads OPENAI_API_KEY
    from the environment automatically.
    """

    def __init__(self) -> None:
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the AsyncOpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI()
        return self._client

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig,
    ) -> LLMCompletion:
        """Send the messages to OpenAI and return the first choice."""
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": config.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if config.temperature is not None and supports_temperature(config.model):
            kwargs["temperature"] = config.temperature
        if config.max_tokens is not None:
            kwargs[token_limit_param(config.model)] = config.max_tokens

        kwargs.update(config.extras)

        response = await client.chat.completions.create(**kwargs)
        choice = response.choices[0]

        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return LLMCompletion(
            content=choice.message.content or "",
            usage=usage,
            finish_reason=choice.finish_reason,
            raw_response=response.model_dump(),
        )

    def provider_name(self) -> str:
        """Return the provider name."""
        return "openai"
