"""Provider orchestrators: the I/O layer that turns tests into results."""

from parley.providers.base import BaseProvider
from parley.providers.chat_vapi_provider import ChatVapiProvider
from parley.providers.elevenlabs_provider import ElevenLabsProvider
from parley.providers.registry import (
    available_providers,
    determine_provider,
    get_provider,
)
from parley.providers.vapi_provider import VapiEvalsProvider
from parley.providers.viernes_provider import ViernesProvider

__all__ = [
    "BaseProvider",
    "ChatVapiProvider",
    "ElevenLabsProvider",
    "VapiEvalsProvider",
    "ViernesProvider",
    "available_providers",
    "determine_provider",
    "get_provider",
]
