"""Provider registry: name -> configured provider instance.

Settings are read from the environment at construction time, so a
provider can be built (and asked ``is_configured()``) without any
credentials present.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from parley.models.config import ElevenLabsSettings, VapiSettings, ViernesSettings
from parley.providers.base import BaseProvider
from parley.providers.chat_vapi_provider import ChatVapiProvider
from parley.providers.elevenlabs_provider import ElevenLabsProvider
from parley.providers.vapi_provider import VapiEvalsProvider
from parley.providers.viernes_provider import ViernesProvider

PROVIDER_NAMES: tuple[str, ...] = ("elevenlabs", "vapi", "viernes")
DEFAULT_PROVIDER = "elevenlabs"


def get_provider(name: str, environ: Mapping[str, str] | None = None) -> BaseProvider:
    """Build a provider by name.

    ``vapi`` resolves to the chat-based provider when VAPI_USE_CHAT_API
    is true, otherwise to the Evals-based one.

    Args:
        name: One of ``elevenlabs``, ``vapi`` or ``viernes`` (case-insensitive).
        environ: Environment mapping; defaults to ``os.environ``.

    Raises:
        ValueError: If the name is not a known provider.
        ConfigurationError: If an environment value is invalid.
    """
    environ = os.environ if environ is None else environ
    key = name.strip().lower()

    if key == "viernes":
        return ViernesProvider(ViernesSettings.from_env(environ))
    if key == "vapi":
        settings = VapiSettings.from_env(environ)
        if settings.use_chat_api:
            return ChatVapiProvider(settings)
        return VapiEvalsProvider(settings)
    if key == "elevenlabs":
        return ElevenLabsProvider(ElevenLabsSettings.from_env(environ))

    raise ValueError(
        f"Unknown provider '{name}'. Available: {', '.join(PROVIDER_NAMES)}"
    )


def available_providers(environ: Mapping[str, str] | None = None) -> list[dict]:
    """Return ``info()`` for every known provider, configured or not."""
    return [get_provider(name, environ).info() for name in PROVIDER_NAMES]


def determine_provider(
    test_provider: str | None = None,
    environ: Mapping[str, str] | None = None,
    default: str = DEFAULT_PROVIDER,
) -> str:
    """Pick the provider name for a run.

    Precedence: the explicit ``test_provider``, then TEST_PROVIDER, then
    ``default`` (``elevenlabs`` unless a project config says otherwise).
    """
    environ = os.environ if environ is None else environ
    chosen = test_provider or environ.get("TEST_PROVIDER") or default
    return chosen.strip().lower()
