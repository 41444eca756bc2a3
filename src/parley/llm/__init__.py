"""Parley LLM layer - vendor adapters for client-side generation and judging.

Re-exports the BaseLLMAdapter ABC, the message/completion dataclasses,
the adapter registry function, and the generator/judge tasks. Vendor
adapters are resolved lazily through get_llm_adapter() so their SDKs
stay optional.
"""

from parley.llm.base import (
    BaseLLMAdapter,
    LLMCompletion,
    LLMConfig,
    LLMMessage,
    TokenUsage,
)
from parley.llm.registry import LLMTasks, build_llm_tasks, get_llm_adapter, resolve_adapter_class
from parley.llm.tasks import ConversationGenerator, CriterionJudge

__all__ = [
    "BaseLLMAdapter",
    "ConversationGenerator",
    "CriterionJudge",
    "LLMCompletion",
    "LLMConfig",
    "LLMMessage",
    "LLMTasks",
    "TokenUsage",
    "build_llm_tasks",
    "get_llm_adapter",
    "resolve_adapter_class",
]
