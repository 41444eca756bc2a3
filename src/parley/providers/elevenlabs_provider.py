"""ElevenLabs provider: one synchronous simulate-conversation call per test."""

from __future__ import annotations

import time

from parley.adapters.elevenlabs_adapter import ElevenLabsAdapter
from parley.clients.elevenlabs_client import ElevenLabsClient
from parley.errors import ConfigurationError
from parley.models.config import ElevenLabsSettings
from parley.models.definition import TestDefinition
from parley.models.result import TestResult
from parley.providers.base import BaseProvider


class ElevenLabsProvider(BaseProvider):
    """Run tests through ElevenLabs agent simulations."""

    name = "elevenlabs"
    capabilities = (
        "voice-agent-testing",
        "llm-simulated-users",
        "tool-mocking",
        "automatic-evaluation",
    )

    def __init__(
        self,
        settings: ElevenLabsSettings,
        *,
        client: ElevenLabsClient | None = None,
        adapter: ElevenLabsAdapter | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.client = client or ElevenLabsClient(settings)
        self.adapter = adapter or ElevenLabsAdapter()

    def is_configured(self) -> bool:
        return bool(self.settings.api_key)

    def validate_test(self, test: TestDefinition) -> None:
        super().validate_test(test)
        if not test.agent_id:
            raise ConfigurationError(
                f"Test '{test.name}': agent_id is required",
                details={"test_name": test.name, "field": "agent_id"},
            )

    async def _execute(self, test: TestDefinition) -> TestResult:
        started = time.perf_counter()
        specification = self.adapter.to_provider_request(test)
        response = await self.client.simulate_conversation(test.agent_id, specification)
        return self.adapter.to_test_result(
            response, test, execution_time_ms=(time.perf_counter() - started) * 1000
        )

    async def aclose(self) -> None:
        await self.client.aclose()
