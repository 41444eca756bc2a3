"""Viernes adapter: structured turn arrays with id-preserving criteria.

Viernes runs the whole simulation server-side and returns the
transcript as an array of role-tagged turns plus an analysis block in
which every criterion result carries the criterion id it judged, so
correlation is by id.
"""

from __future__ import annotations

from typing import Any

import structlog

from parley.adapters.base import (
    BaseProviderAdapter,
    build_test_result,
    correlate_by_id,
    fill_missing_criteria,
    parse_outcome,
)
from parley.adapters.text import interpolate_variables
from parley.errors import TranscriptParseError
from parley.models.definition import TestDefinition
from parley.models.result import (
    ConversationTurn,
    EvaluationResult,
    NormalizedConversation,
    StructuredDataEvaluation,
    TestResult,
)

log = structlog.get_logger(__name__)

DEFAULT_PLATFORM = "whatsapp"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 150
DEFAULT_MAX_TURNS = 10
DEFAULT_CONVERSATION_TIMEOUT = 300
DEFAULT_WEBHOOK_TIMEOUT = 120

# Checked in order; gpt-4o-mini must win over gpt-4o.
_MODEL_ALIASES: tuple[tuple[str, str], ...] = (
    ("gpt-4o-mini", "gpt-4o-mini"),
    ("gpt-4o", "gpt-4o"),
    ("llama3.2", "ollama/llama3.2"),
    ("llama3.1", "ollama/llama3.1"),
)


def normalize_viernes_model(llm: str | None) -> str:
    """Map a free-form model hint onto a model Viernes accepts."""
    if not llm:
        return DEFAULT_MODEL
    lowered = llm.lower()
    for needle, model in _MODEL_ALIASES:
        if needle in lowered:
            return model
    return DEFAULT_MODEL


class ViernesAdapter(BaseProviderAdapter):
    """Translate between TestDefinition/TestResult and the Viernes simulation API."""

    provider_name = "viernes"

    def to_provider_request(
        self,
        test: TestDefinition,
        *,
        organization_id: int,
        agent_id: int,
        **context: Any,
    ) -> dict[str, Any]:
        """Build a Viernes simulation request.

        Args:
            test: The test to translate.
            organization_id: Viernes organization owning the agent.
            agent_id: Numeric Viernes agent id.

        Returns:
            JSON-serializable request body for POST /simulate/conversation.
        """
        user = test.simulated_user
        variables = test.dynamic_variables
        overrides = test.viernes

        request: dict[str, Any] = {
            "organization_id": organization_id,
            "agent_id": agent_id,
            "platform": (overrides.platform if overrides else None) or DEFAULT_PLATFORM,
            "simulated_user_config": {
                "persona": interpolate_variables(user.prompt, variables),
                "model": normalize_viernes_model(user.llm),
                "temperature": user.temperature if user.temperature is not None else DEFAULT_TEMPERATURE,
                "initial_message": interpolate_variables(user.first_message, variables),
                "max_tokens": user.max_tokens if user.max_tokens is not None else DEFAULT_MAX_TOKENS,
                "provider": None,
                "language": user.language,
            },
            "max_turns": (
                (overrides.max_turns if overrides else None)
                or test.new_turns_limit
                or DEFAULT_MAX_TURNS
            ),
            "conversation_timeout": (
                (overrides.conversation_timeout if overrides else None)
                or DEFAULT_CONVERSATION_TIMEOUT
            ),
            "webhook_timeout": (
                (overrides.webhook_timeout if overrides else None) or DEFAULT_WEBHOOK_TIMEOUT
            ),
        }

        if test.evaluation_criteria:
            request["evaluation_criteria"] = [
                {
                    "id": c.id,
                    "goal": c.name,
                    "evaluation_prompt": interpolate_variables(c.judge_instruction, variables),
                }
                for c in test.evaluation_criteria
            ]

        if test.expected_structured_data:
            request["expected_structured_data"] = [
                field.model_dump(exclude_none=True) for field in test.expected_structured_data
            ]

        return request

    def to_test_result(
        self,
        response: dict[str, Any],
        test: TestDefinition,
        *,
        agent_id: str | None = None,
        execution_time_ms: float | None = None,
        **context: Any,
    ) -> TestResult:
        """Convert a completed Viernes simulation into a TestResult.

        Args:
            response: Final simulation payload (the ``results`` of a status poll).
            test: The originating test.
            agent_id: Effective agent id recorded on the result.
            execution_time_ms: Measured wall time, used when the provider
                does not report ``duration_secs``.

        Raises:
            TranscriptParseError: If the payload has no transcript array.
        """
        conversation = self.normalize_conversation(response)
        analysis = response.get("analysis") or {}
        status = response.get("status")

        call_successful = status == "completed" and analysis.get("call_successful") == "success"

        reported: dict[str, EvaluationResult] = {}
        for item in analysis.get("evaluation_criteria_results") or []:
            criterion_id = str(item.get("criterion_id", ""))
            if not criterion_id:
                continue
            reported[criterion_id] = EvaluationResult(
                criteria_id=criterion_id,
                result=parse_outcome(item.get("success")),
                rationale=item.get("rationale") or "",
            )
        evaluations = fill_missing_criteria(
            correlate_by_id(reported, test, self.provider_name),
            test,
            call_successful,
            self.missing_criteria_policy,
        )

        structured_raw = analysis.get("structured_data_evaluation")
        structured = (
            StructuredDataEvaluation.model_validate(structured_raw) if structured_raw else None
        )

        duration = response.get("duration_secs")
        if duration is not None:
            elapsed_ms = float(duration) * 1000
        else:
            elapsed_ms = execution_time_ms or 0.0

        return build_test_result(
            test,
            provider=self.provider_name,
            conversation=conversation,
            evaluations=evaluations,
            call_successful=call_successful,
            structured_data=structured,
            execution_time_ms=elapsed_ms,
            provider_run_id=response.get("simulation_id"),
            agent_id=agent_id,
        )

    def normalize_conversation(self, response: dict[str, Any]) -> NormalizedConversation:
        """Map the Viernes transcript array onto a NormalizedConversation."""
        transcript = response.get("transcript")
        if not isinstance(transcript, list):
            raise TranscriptParseError(
                "Viernes response has no transcript array",
                details={"simulation_id": response.get("simulation_id"), "status": response.get("status")},
            )

        turns = [
            ConversationTurn(
                role="user" if turn.get("role") == "user" else "agent",
                message=turn.get("message") or "",
                tool_calls=turn.get("tool_calls") or None,
                timestamp=turn.get("timestamp"),
                time_in_call_secs=turn.get("time_in_call_secs"),
            )
            for turn in transcript
        ]

        analysis = response.get("analysis") or {}
        summary = analysis.get("transcript_summary") or (
            f"Simulation {response.get('status')}. "
            f"Performance score: {analysis.get('agent_performance_score')}"
        )
        return NormalizedConversation(turns=tuple(turns), source="structured", summary=summary)
