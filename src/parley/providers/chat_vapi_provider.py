"""Chat-based Vapi provider: real multi-turn chats, judged locally.

Mock-conversation evals stop as soon as the live assistant departs from
the script. This provider instead generates only the user's side, plays
it turn by turn through the Vapi Chat API so the assistant answers for
real, and then asks an LLM judge about every criterion.
"""

from __future__ import annotations

import time

from parley.adapters.chat_adapter import ChatVapiAdapter
from parley.clients.vapi_client import VapiClient
from parley.errors import ConfigurationError
from parley.llm.registry import build_llm_tasks
from parley.llm.tasks import ConversationGenerator, CriterionJudge
from parley.models.config import VapiSettings
from parley.models.definition import TestDefinition
from parley.models.result import TestResult
from parley.providers.base import BaseProvider


class ChatVapiProvider(BaseProvider):
    """Run tests as live Vapi chats with client-side judging.

    Args:
        settings: API key, default assistant and LLM settings.
        client: Optional pre-built client (tests pass a stub).
        adapter: Optional adapter instance.
        generator: Optional user-message generator.
        judge: Optional criterion judge.
    """

    name = "vapi"
    version = "3.0.0"
    capabilities = (
        "chat-testing",
        "chat-api",
        "real-multi-turn-conversations",
        "llm-generated-user-messages",
        "llm-judges",
    )

    def __init__(
        self,
        settings: VapiSettings,
        *,
        client: VapiClient | None = None,
        adapter: ChatVapiAdapter | None = None,
        generator: ConversationGenerator | None = None,
        judge: CriterionJudge | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.client = client or VapiClient(settings)
        self.adapter = adapter or ChatVapiAdapter()
        self._generator = generator
        self._judge = judge

    def _ensure_llm_tasks(self) -> None:
        """Build whichever of generator and judge was not injected."""
        if self._generator is not None and self._judge is not None:
            return
        tasks = build_llm_tasks(self.settings)
        if self._generator is None:
            self._generator = tasks.generator
        if self._judge is None:
            self._judge = tasks.judge

    def _get_generator(self) -> ConversationGenerator:
        self._ensure_llm_tasks()
        return self._generator

    def _get_judge(self) -> CriterionJudge:
        self._ensure_llm_tasks()
        return self._judge

    def is_configured(self) -> bool:
        return bool(self.settings.api_key and self.settings.llm_adapter)

    def resolve_agent_id(self, test: TestDefinition) -> str:
        return (test.vapi.assistant_id if test.vapi else None) or self.settings.assistant_id or test.agent_id

    def validate_test(self, test: TestDefinition) -> None:
        super().validate_test(test)
        if not ((test.vapi and test.vapi.assistant_id) or self.settings.assistant_id or test.agent_id):
            raise ConfigurationError(
                f"Test '{test.name}' must specify vapi.assistant_id or agent_id",
                details={"test_name": test.name},
            )

    async def _execute(self, test: TestDefinition) -> TestResult:
        started = time.perf_counter()
        assistant_id = self.resolve_agent_id(test)

        user_messages = await self._get_generator().generate_user_messages(test)
        plan = self.adapter.to_provider_request(
            test, user_messages=user_messages, assistant_id=assistant_id
        )
        chat = await self.client.run_multi_turn_conversation(
            plan["assistant_id"], plan["user_messages"], name=plan["name"]
        )
        conversation = self.adapter.normalize_conversation(chat["messages"])
        self._log.info(
            "vapi.chat_finished",
            test_name=test.name,
            turns=len(conversation),
            cost=chat.get("total_cost"),
        )

        evaluations = await self._get_judge().judge_all(
            test.evaluation_criteria, conversation.turns, test.dynamic_variables
        )
        return self.adapter.to_test_result(
            chat,
            test,
            evaluations=evaluations,
            agent_id=assistant_id,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
