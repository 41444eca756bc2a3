"""Parley adapters - pure translators between unified models and provider schemas.

Re-exports the BaseProviderAdapter ABC, the shared result-assembly
helpers, and one adapter per provider strategy.
"""

from parley.adapters.base import (
    BaseProviderAdapter,
    build_test_result,
    correlate_by_id,
    fill_missing_criteria,
    parse_outcome,
)
from parley.adapters.chat_adapter import ChatVapiAdapter
from parley.adapters.elevenlabs_adapter import ElevenLabsAdapter
from parley.adapters.vapi_adapter import VapiEvalAdapter
from parley.adapters.viernes_adapter import ViernesAdapter

__all__ = [
    "BaseProviderAdapter",
    "ChatVapiAdapter",
    "ElevenLabsAdapter",
    "VapiEvalAdapter",
    "ViernesAdapter",
    "build_test_result",
    "correlate_by_id",
    "fill_missing_criteria",
    "parse_outcome",
]
