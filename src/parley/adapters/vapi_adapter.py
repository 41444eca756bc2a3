"""Vapi Evals adapter: mock conversations judged at positional checkpoints.

Request side: a ``chat.mockConversation`` eval made of the first
scripted user turn followed by one assistant checkpoint whose AI judge
evaluates every criterion. Mock conversations terminate as soon as a
scripted user turn stops matching what the live assistant said, so
only the opening user message is sent.

Response side: Vapi does not echo criterion ids. Judge outputs arrive
as assistant messages carrying a ``judge`` key, in checkpoint order,
and are mapped back to criteria by position through
``_correlate_positionally``. That mapping is best effort and is only
used here; id-preserving providers go through
``parley.adapters.base.correlate_by_id``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from parley.adapters.base import (
    BaseProviderAdapter,
    build_test_result,
    fill_missing_criteria,
)
from parley.adapters.text import (
    criterion_to_question,
    describe_variables,
    interpolate_variables,
    parse_role_transcript,
    summarize_conversation,
)
from parley.errors import TranscriptParseError
from parley.models.definition import EvaluationCriterion, TestDefinition
from parley.models.result import (
    ConversationTurn,
    CriterionOutcome,
    EvaluationResult,
    NormalizedConversation,
    TestResult,
)

log = structlog.get_logger(__name__)

DEFAULT_JUDGE_MODEL = "gpt-4o"
JUDGE_MAX_TOKENS = 500
JUDGE_TEMPERATURE = 0.2

_VAPI_JUDGE_MODELS = frozenset({"gpt-4o", "gpt-4o-mini", "gpt-4", "gpt-3.5-turbo"})

SINGLE_CRITERION_JUDGE_TEMPLATE = """You are evaluating an AI assistant's performance in a conversation.

# Evaluation Criterion
Name: {name}
Question: {question}

# Instructions
Review the complete conversation in {{{{messages}}}} and determine if the assistant met this specific criterion.

Respond with ONLY one word:
- "pass" if the criterion was met
- "fail" if the criterion was not met

Do NOT include any explanation, reasoning, or other text. Just "pass" or "fail"."""

MULTI_CRITERIA_JUDGE_TEMPLATE = """You are evaluating an AI assistant's performance in a conversation.

# Evaluation Criteria
You need to evaluate the following {count} criteria based on the assistant's response:

{criteria_block}

# Instructions
Review the assistant's response in {{{{messages}}}} and determine if it demonstrates ALL of these criteria.

This evaluates the assistant's FIRST RESPONSE to the user. The criteria may reference actions that
would normally happen across multiple turns. Evaluate whether the response shows proper understanding
and sets up the conversation correctly.

Respond with ONLY one word:
- "pass" if the response demonstrates all criteria OR sets up the conversation to meet them
- "fail" if the response clearly violates or fails to set up any criterion

Do NOT include any explanation, reasoning, or other text. Just "pass" or "fail"."""

GENERATOR_TEMPLATE = """You are simulating a complete conversation between a user and an AI assistant.

# User Profile
{persona}

# First Message
The user starts with: "{first_message}"

# Language
{language}

# Context Variables
{variables_block}

# Instructions
Generate a COMPLETE, realistic conversation between the user and assistant that:
1. Starts with the user's first message
2. Follows the user's behavior profile
3. Continues until the conversation reaches a natural conclusion
4. Represents a realistic interaction

# Output Format
Format the conversation exactly like this:

User: [first message]
Assistant: [response]
User: [next message]
Assistant: [response]
...

Use ONLY "User:" and "Assistant:" prefixes.
Do NOT include any other text, explanations, or formatting.
"""


def normalize_judge_model(model: str | None) -> str:
    """Map a model name onto one Vapi's AI judge accepts."""
    if model in _VAPI_JUDGE_MODELS:
        return model  # type: ignore[return-value]
    return DEFAULT_JUDGE_MODEL


def build_judge_system_prompt(criteria: list[EvaluationCriterion], variables: dict[str, Any]) -> str:
    """Build the judge system prompt for one checkpoint.

    Criterion text is interpolated and rewritten into a yes/no question
    before it is placed in the prompt.
    """
    questions = [
        criterion_to_question(interpolate_variables(c.judge_instruction, variables))
        for c in criteria
    ]
    if len(criteria) == 1:
        return SINGLE_CRITERION_JUDGE_TEMPLATE.format(name=criteria[0].name, question=questions[0])
    block = "\n\n".join(
        f"{i}. {c.name}\n   {q}" for i, (c, q) in enumerate(zip(criteria, questions), 1)
    )
    return MULTI_CRITERIA_JUDGE_TEMPLATE.format(count=len(criteria), criteria_block=block)


def build_generator_prompt(test: TestDefinition) -> str:
    """Build the system prompt asking an LLM to write the whole conversation."""
    user = test.simulated_user
    variables = test.dynamic_variables
    return GENERATOR_TEMPLATE.format(
        persona=interpolate_variables(user.prompt, variables),
        first_message=interpolate_variables(user.first_message, variables),
        language=user.language or "en",
        variables_block=describe_variables(variables),
    )


def parse_generated_transcript(text: str) -> list[ConversationTurn]:
    """Parse an LLM-written ``User:``/``Assistant:`` transcript.

    Raises:
        TranscriptParseError: If no turns are found or the first turn is
            not a user turn.
    """
    turns = parse_role_transcript(text)
    if not turns:
        raise TranscriptParseError(
            "Generated conversation contains no recognizable turns",
            details={"preview": (text or "")[:200]},
        )
    if turns[0].role != "user":
        raise TranscriptParseError(
            "Generated conversation must start with a user message",
            details={"first_role": turns[0].role},
        )
    return turns


def scripted_turns(test: TestDefinition) -> list[ConversationTurn] | None:
    """Return the test's hand-written conversation turns, interpolated, if any."""
    if test.vapi is None or not test.vapi.conversation_turns:
        return None
    return [
        ConversationTurn(
            role="user" if turn.role == "user" else "agent",
            message=interpolate_variables(turn.message, test.dynamic_variables),
        )
        for turn in test.vapi.conversation_turns
    ]


def _correlate_positionally(
    judge_messages: list[dict[str, Any]],
    criteria: list[EvaluationCriterion],
) -> dict[str, EvaluationResult]:
    """Best-effort fallback: map the i-th judge output to the i-th criterion.

    Vapi returns checkpoint verdicts in order without criterion ids.
    When the provider ends the conversation early, fewer judge outputs
    than criteria come back and the trailing criteria are left out
    here (the caller fills them). The mapping is not guaranteed to be
    correct if checkpoints were skipped mid-conversation.
    """
    results: dict[str, EvaluationResult] = {}
    for message, criterion in zip(judge_messages, criteria):
        judge = message.get("judge") or {}
        status = str(judge.get("status", "")).lower()
        if status == "pass":
            outcome = CriterionOutcome.success
            rationale = f"Criterion passed: {criterion.name}"
        elif status == "fail":
            outcome = CriterionOutcome.failure
            rationale = f"Criterion failed: {judge.get('failureReason') or criterion.name}"
        else:
            outcome = CriterionOutcome.unknown
            rationale = f"Judge returned no verdict (status={status or 'missing'})"
        results[criterion.id] = EvaluationResult(
            criteria_id=criterion.id, result=outcome, rationale=rationale
        )
    return results


def _duration_ms(run: dict[str, Any]) -> float:
    started, ended = run.get("startedAt"), run.get("endedAt")
    if not started or not ended:
        return 0.0
    try:
        start = datetime.fromisoformat(str(started).replace("Z", "+00:00"))
        end = datetime.fromisoformat(str(ended).replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    return max((end - start).total_seconds() * 1000, 0.0)


class VapiEvalAdapter(BaseProviderAdapter):
    """Translate between TestDefinition/TestResult and Vapi eval runs."""

    provider_name = "vapi"

    def to_provider_request(
        self,
        test: TestDefinition,
        *,
        conversation_turns: list[ConversationTurn],
        judge_model: str = DEFAULT_JUDGE_MODEL,
        **context: Any,
    ) -> dict[str, Any]:
        """Build a ``chat.mockConversation`` eval definition.

        Args:
            test: The test to translate.
            conversation_turns: Scripted or generated conversation; only
                the first user turn is sent.
            judge_model: Model for the AI judge.

        Returns:
            JSON-serializable eval DTO.

        Raises:
            TranscriptParseError: If the conversation has no user turn.
        """
        first_user = next((t for t in conversation_turns if t.role == "user"), None)
        if first_user is None:
            raise TranscriptParseError(
                f"Conversation for '{test.name}' has no user turn",
                details={"turns": len(conversation_turns)},
            )

        messages: list[dict[str, Any]] = [
            {"role": "user", "content": interpolate_variables(first_user.message, test.dynamic_variables)}
        ]

        if test.evaluation_criteria:
            model = normalize_judge_model(judge_model)
            judge_model_config: dict[str, Any] = {
                "provider": "openai",
                "model": model,
                "maxTokens": JUDGE_MAX_TOKENS,
                "messages": [
                    {
                        "role": "system",
                        "content": build_judge_system_prompt(
                            list(test.evaluation_criteria), test.dynamic_variables
                        ),
                    }
                ],
            }
            if "gpt-5" not in judge_model:
                judge_model_config["temperature"] = JUDGE_TEMPERATURE
            messages.append(
                {"role": "assistant", "judgePlan": {"type": "ai", "model": judge_model_config}}
            )
        else:
            messages.append({"role": "assistant", "judgePlan": {"type": "regex", "content": ".+"}})

        return {
            "name": test.name,
            "description": test.description,
            "type": "chat.mockConversation",
            "messages": messages,
        }

    def to_test_result(
        self,
        response: dict[str, Any],
        test: TestDefinition,
        *,
        agent_id: str | None = None,
        **context: Any,
    ) -> TestResult:
        """Convert a finished eval run into a TestResult.

        Raises:
            TranscriptParseError: If the run carries no results.
        """
        results = response.get("results") or []
        if not results:
            raise TranscriptParseError(
                "No eval results found in run", details={"eval_run_id": response.get("id")}
            )
        result = results[0]
        messages = result.get("messages") or []
        call_successful = str(result.get("status", "")).lower() == "pass"

        turns = [
            ConversationTurn(
                role="user" if m.get("role") == "user" else "agent",
                message=m.get("content") or m.get("message") or "",
            )
            for m in messages
            if m.get("role") in ("user", "assistant")
        ]
        conversation = NormalizedConversation(
            turns=tuple(turns), source="structured", summary=summarize_conversation(turns)
        )

        judge_messages = [m for m in messages if m.get("role") == "assistant" and m.get("judge")]
        positional = _correlate_positionally(judge_messages, list(test.evaluation_criteria))
        if len(positional) < len(test.evaluation_criteria):
            log.warning(
                "vapi.partial_judgments",
                test_name=test.name,
                judged=len(positional),
                requested=len(test.evaluation_criteria),
            )
        evaluations = fill_missing_criteria(
            positional, test, call_successful, self.missing_criteria_policy
        )

        effective_agent = agent_id or (test.vapi.assistant_id if test.vapi else None) or test.agent_id
        cost = response.get("cost")
        return build_test_result(
            test,
            provider=self.provider_name,
            conversation=conversation,
            evaluations=evaluations,
            call_successful=call_successful,
            execution_time_ms=_duration_ms(response),
            provider_cost=float(cost) if cost is not None else None,
            provider_run_id=response.get("id"),
            agent_id=effective_agent,
        )
