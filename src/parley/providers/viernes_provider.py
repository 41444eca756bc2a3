"""Viernes provider: server-side simulations behind a rate-limit-aware queue.

Viernes enforces a global cap on concurrent simulations per
organization. Every simulation therefore goes through this provider's
own RetryQueue, whose unit of work is ViernesClient.simulate_conversation:
at most ``max_concurrency`` simulations run at once and rejected ones
are retried with backoff.
"""

from __future__ import annotations

import time

from parley.adapters.viernes_adapter import ViernesAdapter
from parley.clients.viernes_client import ViernesClient
from parley.errors import ConfigurationError
from parley.execution.retry_queue import RetryQueue
from parley.models.config import ViernesSettings
from parley.models.definition import TestDefinition
from parley.models.result import TestResult
from parley.providers.base import BaseProvider


class ViernesProvider(BaseProvider):
    """Run tests as Viernes simulations.

    Args:
        settings: Credentials, polling and queue settings.
        client: Optional pre-built client (tests pass a stub).
        adapter: Optional adapter instance.
    """

    name = "viernes"
    capabilities = (
        "chat-testing",
        "multi-platform",
        "llm-simulated-users",
        "automatic-evaluation",
        "structured-data-evaluation",
        "performance-scoring",
    )

    def __init__(
        self,
        settings: ViernesSettings,
        *,
        client: ViernesClient | None = None,
        adapter: ViernesAdapter | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.client = client or ViernesClient(settings)
        self.adapter = adapter or ViernesAdapter()
        self.queue = RetryQueue(self.client.simulate_conversation, settings.queue, name=self.name)

    def is_configured(self) -> bool:
        return bool(self.settings.organization_id and self.settings.api_key)

    def resolve_organization_id(self, test: TestDefinition) -> int:
        """Return the organization id from the test overrides, else settings.

        Raises:
            ConfigurationError: If neither provides one.
        """
        if test.viernes and test.viernes.organization_id:
            return test.viernes.organization_id
        if self.settings.organization_id:
            return self.settings.organization_id
        raise ConfigurationError(
            "organization_id is required. Set it in the test (viernes.organization_id) "
            "or the VIERNES_ORGANIZATION_ID env var.",
            details={"test_name": test.name},
        )

    def resolve_numeric_agent_id(self, test: TestDefinition) -> int:
        """Return the numeric agent id from the test overrides, else ``agent_id``.

        Raises:
            ConfigurationError: If no valid positive integer is available.
        """
        if test.viernes and test.viernes.agent_id:
            return test.viernes.agent_id
        try:
            agent_id = int(test.agent_id)
        except (TypeError, ValueError):
            agent_id = 0
        if agent_id <= 0:
            raise ConfigurationError(
                "agent_id must be a valid number. Set it in the test "
                "(viernes.agent_id or agent_id).",
                details={"test_name": test.name, "agent_id": test.agent_id},
            )
        return agent_id

    def resolve_agent_id(self, test: TestDefinition) -> str:
        return str(self.resolve_numeric_agent_id(test))

    def validate_test(self, test: TestDefinition) -> None:
        super().validate_test(test)
        self.resolve_organization_id(test)
        self.resolve_numeric_agent_id(test)

    async def _execute(self, test: TestDefinition) -> TestResult:
        started = time.perf_counter()
        agent_id = self.resolve_numeric_agent_id(test)
        request = self.adapter.to_provider_request(
            test,
            organization_id=self.resolve_organization_id(test),
            agent_id=agent_id,
        )

        def on_progress(message: str) -> None:
            self._log.debug("provider.progress", test_name=test.name, message=message)

        response = await self.queue.enqueue(request, on_progress)
        return self.adapter.to_test_result(
            response,
            test,
            agent_id=str(agent_id),
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )

    def shutdown(self, reason: str = "Process terminating - queue shutdown") -> int:
        return self.queue.shutdown(reason)

    async def aclose(self) -> None:
        await self.client.aclose()
