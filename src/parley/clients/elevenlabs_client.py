"""Async client for the ElevenLabs agent simulation endpoint."""

from __future__ import annotations

from typing import Any

import httpx

from parley.clients.http import build_http_client, request_object
from parley.models.config import ElevenLabsSettings


class ElevenLabsClient:
    """Thin async wrapper over POST /v1/convai/agents/{agent_id}/simulate-conversation.

    The call is synchronous on the provider side: the response already
    carries the full conversation and its analysis.
    """

    def __init__(
        self,
        settings: ElevenLabsSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        headers = {"xi-api-key": settings.api_key} if settings.api_key else {}
        self._http = build_http_client(
            settings.base_url,
            headers=headers,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ElevenLabsClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def simulate_conversation(
        self, agent_id: str, specification: dict[str, Any]
    ) -> dict[str, Any]:
        """Run one simulated conversation against ``agent_id``."""
        return await request_object(
            self._http,
            "POST",
            f"/v1/convai/agents/{agent_id}/simulate-conversation",
            "Error simulating conversation",
            json=specification,
        )
