"""BaseLLMAdapter ABC and the message/completion dataclasses.

Two parts of parley call an LLM directly rather than through a voice
platform: the conversation generator (writing simulated user turns)
and the criterion judge of the chat-based Vapi strategy. Both go
through a BaseLLMAdapter so the vendor SDK can be swapped by name.

These are plain dataclasses (not Pydantic) to keep the per-call path
light.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMMessage:
    """A single chat message. Roles: system, user, assistant."""

    role: str
    content: str


@dataclass
class TokenUsage:
    """Token usage counts from a single completion."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMConfig:
    """Generation parameters for one completion call.

    ``extras`` is passed through to the vendor SDK unchanged.
    """

    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMCompletion:
    """Result of a single complete() call."""

    content: str
    usage: TokenUsage
    finish_reason: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


class BaseLLMAdapter(ABC):
    """Abstract base class for LLM vendor adapters.

    Subclasses implement complete(), which takes a message list and a
    config and returns the text of the model's reply.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig,
    ) -> LLMCompletion:
        """Run one completion.

        Args:
            messages: Conversation as a list of LLMMessage objects.
            config: Model and generation parameters.

        Returns:
            LLMCompletion with the reply text and token usage.
        """
        ...

    def provider_name(self) -> str:
        """Return the vendor name for this adapter.

        Default implementation returns the class name.
        """
        return type(self).__name__
