"""BaseProvider ABC: the orchestration contract every provider implements.

A provider is the only component allowed to perform I/O. It composes
one client and one adapter (plus a RetryQueue for backends with a hard
global concurrency ceiling) and exposes:

* ``execute_test``: validation problems raise ConfigurationError before
  any network call; every other error raised while talking to the
  provider becomes a failed TestResult carrying ``error`` and
  ``error_kind``.
* ``execute_batch``: runs tests concurrently with fault isolation; the
  output has the same length and order as the input.
* ``is_configured``: a cheap credential check callers use to report a
  systemic misconfiguration once instead of failing every test.

QueueShutdownError is the one error allowed through both methods: it
means the process is exiting.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any

import structlog

from parley.errors import ConfigurationError, ParleyError, QueueShutdownError
from parley.models.definition import TestDefinition
from parley.models.result import TestResult


class BaseProvider(ABC):
    """Abstract base class for provider orchestrators.

    Subclasses implement ``is_configured`` and ``_execute`` (the I/O
    part of a single test). Validation is extended by overriding
    ``validate_test``.
    """

    name: str = "provider"
    version: str = "1.0.0"
    capabilities: tuple[str, ...] = ("basic-testing",)

    def __init__(self) -> None:
        self._log = structlog.get_logger(__name__).bind(provider=self.name)

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True when the required credentials and identifiers are present."""
        ...

    @abstractmethod
    async def _execute(self, test: TestDefinition) -> TestResult:
        """Run one validated test against the provider."""
        ...

    def info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "capabilities": list(self.capabilities),
            "configured": self.is_configured(),
        }

    def resolve_agent_id(self, test: TestDefinition) -> str:
        """Return the agent identifier recorded on results for ``test``."""
        return test.agent_id

    def validate_test(self, test: TestDefinition) -> None:
        """Check the fields every provider needs.

        Raises:
            ConfigurationError: On the first missing field.
        """
        if not test.name:
            raise ConfigurationError("Test name is required")
        if not test.simulated_user.prompt:
            raise ConfigurationError(
                f"Test '{test.name}': simulated_user.prompt is required",
                details={"test_name": test.name, "field": "simulated_user.prompt"},
            )
        if not test.simulated_user.first_message:
            raise ConfigurationError(
                f"Test '{test.name}': simulated_user.first_message is required",
                details={"test_name": test.name, "field": "simulated_user.first_message"},
            )

    async def execute_test(self, test: TestDefinition) -> TestResult:
        """Validate and run one test.

        Raises:
            ConfigurationError: If the test is missing required fields.
            QueueShutdownError: If the provider was shut down meanwhile.
        """
        self.validate_test(test)

        started = time.perf_counter()
        self._log.info("provider.test_started", test_name=test.name)
        try:
            result = await self._execute(test)
        except QueueShutdownError:
            raise
        except ParleyError as exc:
            result = self._failed_result(test, exc, _elapsed_ms(started))
        except Exception as exc:
            self._log.exception("provider.unexpected_error", test_name=test.name)
            result = self._failed_result(test, exc, _elapsed_ms(started))

        if result.error is not None:
            self._log.warning(
                "provider.test_failed",
                test_name=test.name,
                error=result.error,
                error_kind=result.error_kind,
            )
        else:
            self._log.info(
                "provider.test_completed",
                test_name=test.name,
                success=result.success,
                execution_time_ms=round(result.execution_time_ms, 1),
            )
        return result

    async def execute_batch(self, tests: list[TestDefinition]) -> list[TestResult]:
        """Run all tests concurrently; one test's failure never affects the others.

        Returns:
            One result per test, in input order.

        Raises:
            QueueShutdownError: If the provider was shut down during the batch.
        """
        outcomes = await asyncio.gather(
            *(self.execute_test(test) for test in tests), return_exceptions=True
        )
        results: list[TestResult] = []
        for test, outcome in zip(tests, outcomes):
            if isinstance(outcome, QueueShutdownError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                results.append(self._failed_result(test, outcome, 0.0))
            else:
                results.append(outcome)
        return results

    def shutdown(self, reason: str = "Process terminating - queue shutdown") -> int:
        """Reject queued work. Returns the number of rejected items."""
        return 0

    async def aclose(self) -> None:
        """Release network resources."""
        return None

    def _failed_result(
        self, test: TestDefinition, exc: BaseException, elapsed_ms: float
    ) -> TestResult:
        try:
            agent_id = self.resolve_agent_id(test)
        except ParleyError:
            agent_id = test.agent_id
        return TestResult.failed(
            test,
            self.name,
            str(exc) or type(exc).__name__,
            error_kind=getattr(exc, "kind", type(exc).__name__),
            execution_time_ms=elapsed_ms,
            agent_id=str(agent_id),
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
