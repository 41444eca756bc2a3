"""Chat-based Vapi adapter: client-side generation and text-parsed judgments.

This strategy needs an LLM before any provider call happens: user
messages are generated from the persona, played against the live
assistant through the Vapi Chat API one turn at a time, and every
criterion is then judged locally. The adapter owns the pure parts:
prompt construction, parsing of the generator's numbered list,
parsing of ``RESULT:``/``REASONING:`` judge replies, and assembly of
the final TestResult.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import structlog

from parley.adapters.base import (
    BaseProviderAdapter,
    MissingCriteriaPolicy,
    build_test_result,
    fill_missing_criteria,
)
from parley.adapters.text import (
    criterion_to_question,
    describe_variables,
    interpolate_variables,
)
from parley.models.definition import EvaluationCriterion, TestDefinition
from parley.models.result import (
    ConversationTurn,
    CriterionOutcome,
    EvaluationResult,
    NormalizedConversation,
    TestResult,
)

log = structlog.get_logger(__name__)

USER_MESSAGES_TEMPLATE = """You are role-playing a user talking to an AI assistant.

# User Profile
{persona}

# First Message
{first_message}

# Language
{language}

# Context Variables
{variables_block}

Write the messages this user would send over the whole conversation, in order,
one per line, numbered "1.", "2.", ... The first message must be exactly the
first message above. Write only the numbered messages, nothing else."""

CRITERION_JUDGE_TEMPLATE = """You are evaluating a conversation between a user and an AI assistant.

# Criterion
Name: {name}
Question: {question}

# Conversation
{conversation}

Answer in exactly this format:
RESULT: pass or fail
REASONING: one or two sentences explaining the verdict"""

_NUMBERED_LINE = re.compile(r"^(\d+)[.)]\s*(.+)$")
_IGNORE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\*\*.*\*\*",
        r"behavioral\s+guidelines",
        r"first\s+message",
        r"context\s+variables",
        r"user\s+profile",
        r"language:",
        r"output\s+requirements",
        r"strict\s+format",
        r"^example",
        r"^generate",
        r"^user\s+message",
        r"^assistant:",
        r"instruction",
        r"template",
        r"required",
        r"placeholder",
    )
)
_RESULT_PATTERN = re.compile(r"RESULT:\s*(pass|fail)", re.IGNORECASE)
_REASONING_PATTERN = re.compile(r"REASONING:\s*(.+)", re.IGNORECASE | re.DOTALL)

JUDGE_PARSE_FAILURE = "Failed to parse evaluation result from judge response"


def build_generation_prompt(test: TestDefinition) -> str:
    """Build the prompt asking the generator for the user's numbered messages."""
    user = test.simulated_user
    variables = test.dynamic_variables
    return USER_MESSAGES_TEMPLATE.format(
        persona=interpolate_variables(user.prompt, variables),
        first_message=interpolate_variables(user.first_message, variables),
        language=user.language or "en",
        variables_block=describe_variables(variables),
    )


def parse_user_messages(text: str, first_message: str) -> list[str]:
    """Extract user messages from the generator's numbered list.

    Headers, bullets and template echoes are skipped. The first message
    is always forced to ``first_message``; if nothing parses, the
    conversation consists of the first message alone.

    Args:
        text: Raw generator output.
        first_message: The scenario's opening user message.

    Returns:
        Ordered, non-empty list of user messages.
    """
    messages: list[str] = []
    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line or line.startswith(("#", "*", "-")):
            continue
        match = _NUMBERED_LINE.match(line)
        if not match:
            continue
        body = match.group(2).strip().strip('"')
        if body and not any(p.search(body) for p in _IGNORE_PATTERNS):
            messages.append(body)

    if not messages:
        log.warning("chat.no_user_messages_parsed")
        return [first_message]
    if messages[0] != first_message:
        messages[0] = first_message
    return messages


def conversation_to_text(turns: list[ConversationTurn]) -> str:
    """Render turns as ``USER:``/``ASSISTANT:`` blocks for the judge."""
    return "\n\n".join(
        f"{'USER' if t.role == 'user' else 'ASSISTANT'}: {t.message}" for t in turns
    )


def build_judge_prompt(
    criterion: EvaluationCriterion,
    conversation_text: str,
    variables: Mapping[str, Any] | None = None,
) -> str:
    """Build the judge prompt for one criterion against a finished conversation."""
    question = criterion_to_question(
        interpolate_variables(criterion.judge_instruction, variables or {})
    )
    return CRITERION_JUDGE_TEMPLATE.format(
        name=criterion.name, question=question, conversation=conversation_text
    )


def parse_judge_response(text: str) -> tuple[CriterionOutcome, str]:
    """Parse a ``RESULT:``/``REASONING:`` judge reply.

    Returns:
        (outcome, rationale). A reply without a recognizable verdict
        yields ``unknown``: the judge did not work, which is different
        from the criterion failing.
    """
    result_match = _RESULT_PATTERN.search(text or "")
    if result_match is None:
        return CriterionOutcome.unknown, JUDGE_PARSE_FAILURE
    outcome = (
        CriterionOutcome.success
        if result_match.group(1).lower() == "pass"
        else CriterionOutcome.failure
    )
    reasoning_match = _REASONING_PATTERN.search(text)
    rationale = reasoning_match.group(1).strip() if reasoning_match else "No reasoning provided"
    return outcome, rationale


class ChatVapiAdapter(BaseProviderAdapter):
    """Translate between TestDefinition/TestResult and a live Vapi chat session."""

    provider_name = "vapi-chat"

    def __init__(self, missing_criteria_policy: MissingCriteriaPolicy = "unknown") -> None:
        # Every criterion is judged locally; a missing one means its judge never ran.
        super().__init__(missing_criteria_policy)

    def to_provider_request(
        self,
        test: TestDefinition,
        *,
        user_messages: list[str],
        assistant_id: str,
        **context: Any,
    ) -> dict[str, Any]:
        """Build the multi-turn chat plan for the Vapi Chat API."""
        return {
            "assistant_id": assistant_id,
            "name": test.name,
            "user_messages": [
                interpolate_variables(m, test.dynamic_variables) for m in user_messages
            ],
        }

    def normalize_conversation(self, messages: list[dict[str, Any]]) -> NormalizedConversation:
        """Map chat messages onto a NormalizedConversation."""
        turns = [
            ConversationTurn(
                role="user" if m.get("role") == "user" else "agent",
                message=m.get("content") or "",
            )
            for m in messages
            if m.get("content")
        ]
        user_count = sum(1 for t in turns if t.role == "user")
        agent_count = len(turns) - user_count
        summary = (
            f"Conversation with {user_count} user messages and {agent_count} assistant responses. "
            f"Total turns: {len(turns)}."
        )
        return NormalizedConversation(turns=tuple(turns), source="generated", summary=summary)

    def to_test_result(
        self,
        response: dict[str, Any],
        test: TestDefinition,
        *,
        evaluations: Mapping[str, EvaluationResult],
        agent_id: str | None = None,
        execution_time_ms: float = 0.0,
        **context: Any,
    ) -> TestResult:
        """Assemble a TestResult from a finished chat and local judgments.

        Args:
            response: ``{"messages": [...], "total_cost": float}`` from the client.
            test: The originating test.
            evaluations: Local judge results keyed by criterion id.
            agent_id: Assistant id recorded on the result.
            execution_time_ms: Wall time of generation, chat and judging.
        """
        conversation = self.normalize_conversation(response.get("messages") or [])
        call_successful = bool(conversation.agent_turns())
        filled = fill_missing_criteria(
            evaluations, test, call_successful, self.missing_criteria_policy
        )
        cost = response.get("total_cost")
        return build_test_result(
            test,
            provider=self.provider_name,
            conversation=conversation,
            evaluations=filled,
            call_successful=call_successful,
            execution_time_ms=execution_time_ms,
            provider_cost=float(cost) if cost is not None else None,
            provider_run_id=response.get("last_chat_id"),
            agent_id=agent_id,
        )
