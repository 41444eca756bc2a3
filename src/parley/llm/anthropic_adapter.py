"""Anthropic adapter for conversation generation and judging.

Anthropic takes the system prompt as a separate parameter and requires
``max_tokens`` on every request.
"""

from __future__ import annotations

from typing import Any

from parley.llm.base import BaseLLMAdapter, LLMCompletion, LLMConfig, LLMMessage, TokenUsage

DEFAULT_MAX_TOKENS = 4096


class AnthropicAdapter(BaseLLMAdapter):
    """Adapter for the Anthropic messages API.

    Uses a lazy-initialized AsyncAnthropic client that reads
    ANTHROPIC_API_KEY from the environment automatically.
    """

    def __init__(self) -> None:
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the AsyncAnthropic client."""
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic()
        return self._client

    def _extract_system(
        self, messages: list[LLMMessage]
    ) -> tuple[str | None, list[LLMMessage]]:
        """Split system messages out of the list.

        Multiple system messages are joined with blank lines.

        Returns:
            Tuple of (system_prompt or None, remaining messages).
        """
        system_parts: list[str] = []
        remaining: list[LLMMessage] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            else:
                remaining.append(msg)
        return ("\n\n".join(system_parts) if system_parts else None), remaining

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig,
    ) -> LLMCompletion:
        """Send the messages to Anthropic and join the text blocks of the reply."""
        client = self._get_client()
        system_prompt, remaining = self._extract_system(messages)

        kwargs: dict[str, Any] = {
            "model": config.model,
            "messages": [
                {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
                for m in remaining
            ],
            "max_tokens": config.max_tokens if config.max_tokens is not None else DEFAULT_MAX_TOKENS,
        }
        if system_prompt is not None:
            kwargs["system"] = system_prompt
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature

        kwargs.update(config.extras)

        response = await client.messages.create(**kwargs)

        content = "\n".join(block.text for block in response.content if block.type == "text")
        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        return LLMCompletion(
            content=content,
            usage=usage,
            finish_reason=response.stop_reason,
            raw_response=response.model_dump(),
        )

    def provider_name(self) -> str:
        """Return the provider name."""
        return "anthropic"
