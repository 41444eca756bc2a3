"""Parley provider clients - async HTTP wrappers with typed error translation."""

from parley.clients.elevenlabs_client import ElevenLabsClient
from parley.clients.http import (
    build_http_client,
    raise_for_provider_status,
    request_json,
    request_object,
)
from parley.clients.vapi_client import VapiClient
from parley.clients.viernes_client import ViernesClient

__all__ = [
    "ElevenLabsClient",
    "VapiClient",
    "ViernesClient",
    "build_http_client",
    "raise_for_provider_status",
    "request_json",
    "request_object",
]
