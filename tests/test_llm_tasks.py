"""Tests for parley.llm.tasks - ConversationGenerator and CriterionJudge."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from parley.errors import TranscriptParseError
from parley.llm.base import BaseLLMAdapter, LLMCompletion, TokenUsage
from parley.llm.tasks import ConversationGenerator, CriterionJudge
from parley.models.definition import TestDefinition
from parley.models.result import ConversationTurn, CriterionOutcome


def _make_test() -> TestDefinition:
    return TestDefinition.model_validate(
        {
            "name": "refund",
            "agent_id": "asst-1",
            "simulated_user": {"prompt": "Customer {{name}}", "first_message": "Hola, soy {{name}}"},
            "evaluation_criteria": [
                {"id": "c1", "name": "Apology", "prompt": "Agent apologises"},
                {"id": "c2", "name": "Refund", "prompt": "Agent offers a refund"},
            ],
            "dynamic_variables": {"name": "Ana"},
        }
    )


def _make_adapter(*replies: str) -> tuple[BaseLLMAdapter, AsyncMock]:
    adapter = AsyncMock(spec=BaseLLMAdapter)
    adapter.complete.side_effect = [
        LLMCompletion(content=reply, usage=TokenUsage()) for reply in replies
    ]
    return adapter, adapter.complete


_TURNS = [
    ConversationTurn(role="user", message="Hola"),
    ConversationTurn(role="agent", message="Lo siento mucho"),
]


class TestConversationGenerator:
    """Test user-message and transcript generation."""

    @pytest.mark.asyncio
    async def test_user_messages_start_with_interpolated_first_message(self):
        adapter, complete = _make_adapter("1. Hola\n2. Quiero un reembolso")
        generator = ConversationGenerator(adapter, model="gpt-4o")
        messages = await generator.generate_user_messages(_make_test())

        assert messages == ["Hola, soy Ana", "Quiero un reembolso"]
        prompt_messages, config = complete.call_args.args
        assert prompt_messages[0].role == "user"
        assert "Customer Ana" in prompt_messages[0].content
        assert config.model == "gpt-4o"
        assert config.temperature == 0.3

    @pytest.mark.asyncio
    async def test_transcript_generation(self):
        adapter, complete = _make_adapter("User: Hola\nAssistant: Buenos días\nUser: Gracias")
        generator = ConversationGenerator(adapter, model="gpt-4o", max_tokens=4000)
        turns = await generator.generate_transcript(_make_test(), max_tokens=1200)

        assert [t.role for t in turns] == ["user", "agent", "user"]
        prompt_messages, config = complete.call_args.args
        assert prompt_messages[0].role == "system"
        assert config.max_tokens == 1200

    @pytest.mark.asyncio
    async def test_unusable_transcript_raises(self):
        adapter, _ = _make_adapter("Assistant: I speak first")
        generator = ConversationGenerator(adapter, model="gpt-4o")
        with pytest.raises(TranscriptParseError):
            await generator.generate_transcript(_make_test())


class TestCriterionJudge:
    """Test per-criterion judging."""

    @pytest.mark.asyncio
    async def test_judge_all_in_order(self):
        adapter, complete = _make_adapter(
            "RESULT: pass\nREASONING: Apologised.",
            "RESULT: fail\nREASONING: No refund offered.",
        )
        judge = CriterionJudge(adapter, model="gpt-4o-mini")
        criteria = _make_test().evaluation_criteria
        results = await judge.judge_all(criteria, _TURNS)

        assert list(results) == ["c1", "c2"]
        assert results["c1"].result is CriterionOutcome.success
        assert results["c2"].result is CriterionOutcome.failure
        assert results["c2"].rationale == "No refund offered."
        assert complete.await_count == 2
        config = complete.call_args.args[1]
        assert config.temperature == 0.0
        assert config.max_tokens == 500

    @pytest.mark.asyncio
    async def test_judge_error_is_unknown_not_failure(self):
        adapter = AsyncMock(spec=BaseLLMAdapter)
        adapter.complete.side_effect = RuntimeError("rate limited")
        judge = CriterionJudge(adapter, model="gpt-4o")
        result = await judge.judge(_make_test().evaluation_criteria[0], _TURNS)

        assert result.result is CriterionOutcome.unknown
        assert result.rationale == "Evaluation failed: rate limited"

    @pytest.mark.asyncio
    async def test_unparseable_verdict_is_unknown(self):
        adapter, _ = _make_adapter("Looks fine to me")
        judge = CriterionJudge(adapter, model="gpt-4o")
        result = await judge.judge(_make_test().evaluation_criteria[0], _TURNS)
        assert result.result is CriterionOutcome.unknown
