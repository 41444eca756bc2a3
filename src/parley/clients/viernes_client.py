"""Async client for the Viernes conversation simulation API.

A simulation is started with POST /simulate/conversation, which usually
answers 202 with a ``simulation_id`` and a non-terminal status, and is
then polled through GET /simulate/status/{id} until it completes or
fails. The status payload wraps the final simulation under ``results``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from parley.clients.http import build_http_client, request_object
from parley.errors import ProviderAPIError
from parley.models.config import ViernesSettings

log = structlog.get_logger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})

ProgressCallback = Callable[[str], None]


class ViernesClient:
    """Thin async wrapper over the Viernes REST endpoints.

    Args:
        settings: Credentials, base URL, timeout and polling settings.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        settings: ViernesSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        headers = {"Authorization": f"Bearer {settings.api_key}"} if settings.api_key else {}
        self._http = build_http_client(
            settings.base_url,
            headers=headers,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ViernesClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def start_simulation(self, request: dict[str, Any]) -> dict[str, Any]:
        """POST /simulate/conversation."""
        return await request_object(
            self._http, "POST", "/simulate/conversation", "Error starting simulation", json=request
        )

    async def get_simulation_status(self, simulation_id: str) -> dict[str, Any]:
        """GET /simulate/status/{simulation_id}."""
        return await request_object(
            self._http,
            "GET",
            f"/simulate/status/{simulation_id}",
            "Error getting simulation status",
        )

    async def simulate_conversation(
        self,
        request: dict[str, Any],
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Start a simulation and wait for its final payload.

        Args:
            request: Body built by ViernesAdapter.to_provider_request.
            on_progress: Optional callback receiving status strings.

        Returns:
            The final simulation payload (transcript and analysis).

        Raises:
            RateLimitError: The provider's concurrency limit was hit.
            ProviderAPIError: The simulation failed without a transcript,
                or polling timed out (status_code 408).
            NetworkError: No response was received.
        """
        _notify(on_progress, "Starting simulation...")
        started = await self.start_simulation(request)
        simulation_id = started.get("simulation_id")
        log.info("viernes.simulation_started", simulation_id=simulation_id, status=started.get("status"))

        if started.get("status") in TERMINAL_STATUSES:
            return self._final_payload(started, simulation_id)

        _notify(on_progress, "Polling for results...")
        return await self._poll(simulation_id, on_progress)

    async def _poll(
        self, simulation_id: str, on_progress: ProgressCallback | None
    ) -> dict[str, Any]:
        max_attempts = self.settings.poll_max_attempts
        interval = self.settings.poll_interval_seconds

        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(interval)
            status = await self.get_simulation_status(simulation_id)
            state = status.get("status")
            log.debug("viernes.poll", simulation_id=simulation_id, attempt=attempt, status=state)
            if state in TERMINAL_STATUSES:
                return self._final_payload(status, simulation_id)
            progress = status.get("progress")
            suffix = f" {progress}%" if progress is not None else ""
            _notify(on_progress, f"Waiting for simulation...{suffix} ({attempt}/{max_attempts})")

        raise ProviderAPIError(
            f"Simulation polling timeout after {max_attempts * interval:g}s",
            details={"simulation_id": simulation_id},
            status_code=408,
        )

    @staticmethod
    def _final_payload(status: dict[str, Any], simulation_id: str | None) -> dict[str, Any]:
        payload = status.get("results") if isinstance(status.get("results"), dict) else status
        payload = dict(payload)
        payload.setdefault("simulation_id", simulation_id)
        payload.setdefault("status", status.get("status"))

        if status.get("status") == "failed" and not isinstance(payload.get("transcript"), list):
            raise ProviderAPIError(
                f"Simulation failed: {status.get('error') or payload.get('error') or 'unknown error'}",
                details={"simulation_id": simulation_id},
            )
        return payload


def _notify(on_progress: ProgressCallback | None, message: str) -> None:
    if on_progress is not None:
        on_progress(message)
