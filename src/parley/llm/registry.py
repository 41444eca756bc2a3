"""Resolve LLM adapters by name and wire them into the generator/judge pair.

``VAPI_LLM_ADAPTER`` names the vendor, either as a builtin short name
("openai", "anthropic") or as the dotted path of a BaseLLMAdapter
subclass ("my.module.MyAdapter"). Vendor SDKs are optional extras, so a
builtin module is only imported when a provider first needs an LLM.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass

from parley.llm.base import BaseLLMAdapter
from parley.llm.tasks import ConversationGenerator, CriterionJudge
from parley.models.config import VapiSettings

# short name -> (class path, pip extra)
BUILTIN_ADAPTERS: dict[str, tuple[str, str]] = {
    "openai": ("parley.llm.openai_adapter.OpenAIAdapter", "openai"),
    "anthropic": ("parley.llm.anthropic_adapter.AnthropicAdapter", "anthropic"),
}


@dataclass
class LLMTasks:
    """The generator and judge of one provider, sharing a single adapter."""

    adapter: BaseLLMAdapter
    generator: ConversationGenerator
    judge: CriterionJudge


def _class_path(name: str) -> str:
    if name in BUILTIN_ADAPTERS:
        return BUILTIN_ADAPTERS[name][0]
    module_path, _, class_name = name.rpartition(".")
    if module_path and class_name:
        return name
    raise ValueError(
        f"Unknown LLM adapter '{name}'. "
        f"Available builtin adapters: {', '.join(sorted(BUILTIN_ADAPTERS))}. "
        f"For custom adapters, provide the full dotted path (e.g., 'my.module.MyAdapter')."
    )


def resolve_adapter_class(name: str) -> type[BaseLLMAdapter]:
    """Import the adapter class named by ``name`` without instantiating it.

    Raises:
        ValueError: If the name is neither a builtin nor a dotted path.
        ImportError: If the module or class cannot be found; for builtins
            the message carries the pip extra to install.
        TypeError: If the attribute is not a BaseLLMAdapter subclass.
    """
    class_path = _class_path(name)
    module_path, _, class_name = class_path.rpartition(".")
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        if name not in BUILTIN_ADAPTERS:
            raise
        extra = BUILTIN_ADAPTERS[name][1]
        raise ImportError(
            f"LLM adapter '{name}' requires the {extra} package. "
            f"Install it: pip install parley-ai[{extra}]"
        ) from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise ImportError(f"Module '{module_path}' has no attribute '{class_name}'.")
    if not isinstance(cls, type) or not issubclass(cls, BaseLLMAdapter):
        raise TypeError(
            f"'{class_path}' is not a subclass of BaseLLMAdapter. "
            f"Custom adapters must inherit from parley.llm.base.BaseLLMAdapter."
        )
    return cls


def get_llm_adapter(name: str) -> BaseLLMAdapter:
    """Return a fresh instance of the adapter named by ``name``."""
    return resolve_adapter_class(name)()


def build_llm_tasks(settings: VapiSettings, adapter: BaseLLMAdapter | None = None) -> LLMTasks:
    """Build the conversation generator and criterion judge for a Vapi provider.

    The generator takes ``generator_model``, ``temperature`` and
    ``max_conversation_tokens`` from the settings; the judge takes
    ``judge_model`` and keeps its own deterministic sampling.

    Args:
        settings: Vapi settings naming the adapter and models.
        adapter: Pre-built adapter; resolved from ``settings.llm_adapter``
            when omitted.
    """
    llm = adapter if adapter is not None else get_llm_adapter(settings.llm_adapter)
    return LLMTasks(
        adapter=llm,
        generator=ConversationGenerator(
            llm,
            model=settings.generator_model,
            temperature=settings.temperature,
            max_tokens=settings.max_conversation_tokens,
        ),
        judge=CriterionJudge(llm, model=settings.judge_model),
    )
