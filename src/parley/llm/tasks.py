"""The two LLM jobs parley runs client-side: writing conversations and judging them.

ConversationGenerator produces either the simulated user's messages
(chat strategy) or a complete User/Assistant transcript (Evals strategy
when no scripted turns exist). CriterionJudge evaluates one criterion
at a time against a finished conversation.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from parley.adapters.chat_adapter import (
    build_generation_prompt,
    build_judge_prompt,
    conversation_to_text,
    parse_judge_response,
    parse_user_messages,
)
from parley.adapters.text import interpolate_variables
from parley.adapters.vapi_adapter import build_generator_prompt, parse_generated_transcript
from parley.llm.base import BaseLLMAdapter, LLMConfig, LLMMessage
from parley.models.definition import EvaluationCriterion, TestDefinition
from parley.models.result import ConversationTurn, CriterionOutcome, EvaluationResult

log = structlog.get_logger(__name__)

GENERATOR_TEMPERATURE = 0.3
GENERATOR_MAX_TOKENS = 4000
JUDGE_TEMPERATURE = 0.0
JUDGE_MAX_TOKENS = 500


class ConversationGenerator:
    """Write simulated conversations with an LLM.

    Args:
        adapter: LLM adapter used for every call.
        model: Generator model name.
        temperature: Sampling temperature (ignored by models that reject it).
        max_tokens: Output token cap.
    """

    def __init__(
        self,
        adapter: BaseLLMAdapter,
        model: str,
        temperature: float = GENERATOR_TEMPERATURE,
        max_tokens: int = GENERATOR_MAX_TOKENS,
    ) -> None:
        self.adapter = adapter
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _config(self, max_tokens: int | None = None) -> LLMConfig:
        return LLMConfig(
            model=self.model,
            temperature=self.temperature,
            max_tokens=max_tokens or self.max_tokens,
        )

    async def generate_user_messages(self, test: TestDefinition) -> list[str]:
        """Generate the ordered user messages for a chat-based run.

        The first entry always equals the test's (interpolated) first message.
        """
        first_message = interpolate_variables(
            test.simulated_user.first_message, test.dynamic_variables
        )
        completion = await self.adapter.complete(
            [LLMMessage(role="user", content=build_generation_prompt(test))],
            self._config(),
        )
        messages = parse_user_messages(completion.content, first_message)
        log.info(
            "llm.user_messages_generated",
            test_name=test.name,
            model=self.model,
            count=len(messages),
        )
        return messages

    async def generate_transcript(
        self, test: TestDefinition, max_tokens: int | None = None
    ) -> list[ConversationTurn]:
        """Generate a complete User/Assistant transcript.

        Raises:
            TranscriptParseError: If the reply has no turns or starts
                with an assistant turn.
        """
        completion = await self.adapter.complete(
            [
                LLMMessage(role="system", content=build_generator_prompt(test)),
                LLMMessage(role="user", content="Generate the complete conversation now."),
            ],
            self._config(max_tokens),
        )
        turns = parse_generated_transcript(completion.content)
        log.info(
            "llm.transcript_generated",
            test_name=test.name,
            model=self.model,
            turns=len(turns),
        )
        return turns


class CriterionJudge:
    """Judge criteria against a finished conversation, one LLM call per criterion.

    A judge call that raises or returns an unparseable reply yields an
    ``unknown`` outcome; it is never turned into a pass or a fail.
    """

    def __init__(
        self,
        adapter: BaseLLMAdapter,
        model: str,
        temperature: float = JUDGE_TEMPERATURE,
        max_tokens: int = JUDGE_MAX_TOKENS,
    ) -> None:
        self.adapter = adapter
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def judge(
        self,
        criterion: EvaluationCriterion,
        turns: Sequence[ConversationTurn],
        variables: Mapping[str, Any] | None = None,
    ) -> EvaluationResult:
        """Judge a single criterion."""
        prompt = build_judge_prompt(criterion, conversation_to_text(list(turns)), variables)
        config = LLMConfig(
            model=self.model, temperature=self.temperature, max_tokens=self.max_tokens
        )
        try:
            completion = await self.adapter.complete(
                [LLMMessage(role="user", content=prompt)], config
            )
        except Exception as exc:
            log.warning(
                "llm.judge_failed",
                criterion_id=criterion.id,
                model=self.model,
                error=str(exc),
            )
            return EvaluationResult(
                criteria_id=criterion.id,
                result=CriterionOutcome.unknown,
                rationale=f"Evaluation failed: {exc}",
            )

        outcome, rationale = parse_judge_response(completion.content)
        return EvaluationResult(criteria_id=criterion.id, result=outcome, rationale=rationale)

    async def judge_all(
        self,
        criteria: Sequence[EvaluationCriterion],
        turns: Sequence[ConversationTurn],
        variables: Mapping[str, Any] | None = None,
    ) -> dict[str, EvaluationResult]:
        """Judge every criterion in order and key the results by criterion id."""
        results: dict[str, EvaluationResult] = {}
        for criterion in criteria:
            results[criterion.id] = await self.judge(criterion, turns, variables)
        return results
