"""Vapi Evals provider: mock-conversation evals judged by Vapi's AI judge.

The conversation comes from the test's scripted ``vapi.conversation_turns``
when present, otherwise an LLM writes one from the persona (cached on
disk so repeated runs do not pay for generation again). The eval is
either sent inline (transient) or stored first (persistent), run
against the assistant, and polled until it ends.
"""

from __future__ import annotations

from parley.adapters.vapi_adapter import VapiEvalAdapter, scripted_turns
from parley.clients.vapi_client import VapiClient
from parley.errors import ConfigurationError
from parley.llm.registry import build_llm_tasks
from parley.llm.tasks import ConversationGenerator
from parley.models.config import VapiSettings
from parley.models.definition import TestDefinition
from parley.models.result import ConversationTurn, TestResult
from parley.providers.base import BaseProvider
from parley.storage.conversation_cache import ConversationCache

BATCH_CHUNK_SIZE = 3


class VapiEvalsProvider(BaseProvider):
    """Run tests through the Vapi Evals API.

    Args:
        settings: API key, default assistant, LLM and polling settings.
        client: Optional pre-built client (tests pass a stub).
        adapter: Optional adapter instance.
        generator: Optional conversation generator; built lazily from
            ``settings.llm_adapter`` when first needed.
        cache: Optional conversation cache; ``None`` uses ``settings.cache_dir``.
    """

    name = "vapi"
    version = "2.0.0"
    capabilities = (
        "chat-testing",
        "evals-api",
        "hybrid-conversation-generation",
        "ai-judges",
        "multi-attempt-runs",
        "persistent-and-transient-evals",
    )

    def __init__(
        self,
        settings: VapiSettings,
        *,
        client: VapiClient | None = None,
        adapter: VapiEvalAdapter | None = None,
        generator: ConversationGenerator | None = None,
        cache: ConversationCache | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.client = client or VapiClient(settings)
        self.adapter = adapter or VapiEvalAdapter()
        self._generator = generator
        self.cache = cache if cache is not None else ConversationCache(settings.cache_dir)

    def _get_generator(self) -> ConversationGenerator:
        """Lazily build the conversation generator."""
        if self._generator is None:
            self._generator = build_llm_tasks(self.settings).generator
        return self._generator

    def is_configured(self) -> bool:
        return bool(self.settings.api_key)

    def resolve_agent_id(self, test: TestDefinition) -> str:
        return (test.vapi.assistant_id if test.vapi else None) or self.settings.assistant_id or test.agent_id

    def validate_test(self, test: TestDefinition) -> None:
        """Check assistant id, conversation source and criteria.

        A test needs either scripted ``vapi.conversation_turns`` or a
        persona plus first message to generate from, and at least one
        evaluation criterion.
        """
        if not test.name:
            raise ConfigurationError("Test name is required")
        if not ((test.vapi and test.vapi.assistant_id) or self.settings.assistant_id):
            raise ConfigurationError(
                f"Test '{test.name}' must specify vapi.assistant_id or the provider "
                "must have a default assistant (VAPI_ASSISTANT_ID)",
                details={"test_name": test.name},
            )
        has_script = bool(test.vapi and test.vapi.conversation_turns)
        user = test.simulated_user
        if not has_script and not (user.prompt and user.first_message):
            raise ConfigurationError(
                f"Test '{test.name}' must have either vapi.conversation_turns or "
                "simulated_user.prompt + simulated_user.first_message",
                details={"test_name": test.name},
            )
        if not test.evaluation_criteria:
            raise ConfigurationError(
                f"Test '{test.name}' must have at least one evaluation criterion",
                details={"test_name": test.name},
            )

    async def conversation_for(self, test: TestDefinition) -> list[ConversationTurn]:
        """Return scripted turns, a cached generated conversation, or a fresh one."""
        scripted = scripted_turns(test)
        if scripted:
            return scripted

        model = self.settings.generator_model
        temperature = self.settings.temperature
        cached = self.cache.get(test, model, temperature)
        if cached:
            self._log.info("vapi.conversation_cache_hit", test_name=test.name)
            return cached

        max_tokens = test.vapi.max_conversation_tokens if test.vapi else None
        turns = await self._get_generator().generate_transcript(test, max_tokens=max_tokens)
        self.cache.set(test, model, temperature, turns)
        return turns

    async def _execute(self, test: TestDefinition) -> TestResult:
        assistant_id = self.client.get_assistant_id(test.vapi.assistant_id if test.vapi else None)
        turns = await self.conversation_for(test)
        eval_dto = self.adapter.to_provider_request(
            test, conversation_turns=turns, judge_model=self.settings.judge_model
        )

        if test.vapi and test.vapi.persistent_eval:
            created = await self.client.create_eval(eval_dto)
            self._log.info("vapi.eval_created", test_name=test.name, eval_id=created.get("id"))
            run_id = await self.client.run_eval(eval_id=created["id"], assistant_id=assistant_id)
        else:
            run_id = await self.client.run_eval(eval_dto=eval_dto, assistant_id=assistant_id)
        self._log.info("vapi.eval_run_started", test_name=test.name, run_id=run_id)

        def on_progress(status: str) -> None:
            self._log.debug("provider.progress", test_name=test.name, status=status)

        run = await self.client.poll_eval_run(run_id, on_progress=on_progress)
        return self.adapter.to_test_result(run, test, agent_id=assistant_id)

    async def execute_with_attempts(self, test: TestDefinition) -> list[TestResult]:
        """Run the test ``vapi.attempts`` times in sequence.

        Raises:
            ConfigurationError: If the test fails validation.
        """
        self.validate_test(test)
        attempts = test.vapi.attempts if test.vapi else 1
        results: list[TestResult] = []
        for attempt in range(1, attempts + 1):
            result = await self.execute_test(test)
            results.append(result)
            self._log.info(
                "vapi.attempt_finished",
                test_name=test.name,
                attempt=attempt,
                attempts=attempts,
                success=result.success,
            )
        if attempts > 1:
            passed = sum(1 for r in results if r.success)
            self._log.info(
                "vapi.attempts_summary", test_name=test.name, passed=passed, attempts=attempts
            )
        return results

    async def execute_batch(self, tests: list[TestDefinition]) -> list[TestResult]:
        """Run tests in chunks of three so the Vapi API is not flooded."""
        results: list[TestResult] = []
        for start in range(0, len(tests), BATCH_CHUNK_SIZE):
            results.extend(await super().execute_batch(tests[start : start + BATCH_CHUNK_SIZE]))
        return results

    async def aclose(self) -> None:
        await self.client.aclose()
