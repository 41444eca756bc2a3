"""ElevenLabs adapter: server-side simulation with results keyed by criterion id.

ElevenLabs accepts the whole scenario as a ``simulation_specification``
and returns the simulated conversation plus an analysis whose
``evaluation_criteria_results`` is an object keyed by the criterion ids
that were sent, so correlation is by id. Variable references in free
text are rewritten to the ``${VAR}`` syntax the platform resolves
against ``dynamic_variables`` itself.
"""

from __future__ import annotations

from typing import Any

from parley.adapters.base import (
    BaseProviderAdapter,
    build_test_result,
    correlate_by_id,
    fill_missing_criteria,
    parse_outcome,
)
from parley.adapters.text import to_variable_syntax
from parley.errors import TranscriptParseError
from parley.models.definition import TestDefinition
from parley.models.result import (
    ConversationTurn,
    CriterionOutcome,
    EvaluationResult,
    NormalizedConversation,
    TestResult,
)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class ElevenLabsAdapter(BaseProviderAdapter):
    """Translate between TestDefinition/TestResult and ElevenLabs simulate-conversation."""

    provider_name = "elevenlabs"

    def to_provider_request(self, test: TestDefinition, **context: Any) -> dict[str, Any]:
        """Build the simulate-conversation request body.

        Args:
            test: The test to translate.

        Returns:
            JSON-serializable body for
            POST /v1/convai/agents/{agent_id}/simulate-conversation.
        """
        user = test.simulated_user
        simulated_user_config = _drop_none(
            {
                "prompt": _drop_none(
                    {
                        "prompt": to_variable_syntax(user.prompt, "dollar"),
                        "llm": user.llm,
                        "temperature": user.temperature,
                        "max_tokens": user.max_tokens,
                    }
                ),
                "first_message": to_variable_syntax(user.first_message, "dollar"),
                "language": user.language,
                "tools": user.tools or None,
            }
        )
        specification = _drop_none(
            {
                "simulated_user_config": simulated_user_config,
                "tool_mock_config": test.tool_mock_config,
                "partial_conversation_history": test.partial_conversation_history,
                "dynamic_variables": test.dynamic_variables or None,
            }
        )

        request: dict[str, Any] = {"simulation_specification": specification}
        if test.evaluation_criteria:
            request["extra_evaluation_criteria"] = [
                {
                    "id": c.id,
                    "name": c.name,
                    "type": "prompt",
                    "conversation_goal_prompt": to_variable_syntax(c.judge_instruction, "dollar"),
                    "use_knowledge_base": c.use_knowledge_base,
                }
                for c in test.evaluation_criteria
            ]
        if test.new_turns_limit is not None:
            request["new_turns_limit"] = test.new_turns_limit
        return request

    def normalize_conversation(self, response: dict[str, Any]) -> NormalizedConversation:
        """Map ``simulated_conversation`` onto a NormalizedConversation."""
        raw_turns = response.get("simulated_conversation")
        if not isinstance(raw_turns, list):
            raise TranscriptParseError(
                "ElevenLabs response has no simulated_conversation array",
                details={"keys": sorted(response)},
            )
        turns = [
            ConversationTurn(
                role="user" if turn.get("role") == "user" else "agent",
                message=turn.get("message") or "",
                tool_calls=turn.get("tool_calls") or None,
                time_in_call_secs=turn.get("time_in_call_secs"),
            )
            for turn in raw_turns
        ]
        analysis = response.get("analysis") or {}
        return NormalizedConversation(
            turns=tuple(turns),
            source="structured",
            summary=analysis.get("transcript_summary"),
        )

    def to_test_result(
        self,
        response: dict[str, Any],
        test: TestDefinition,
        *,
        execution_time_ms: float = 0.0,
        **context: Any,
    ) -> TestResult:
        """Convert a simulate-conversation response into a TestResult.

        ``call_successful`` is reported either as a verdict string or as
        the older boolean ``call_success``; when neither is present the
        call counts as successful if a conversation came back.

        Raises:
            TranscriptParseError: If the response has no conversation array.
        """
        conversation = self.normalize_conversation(response)
        analysis = response.get("analysis") or {}

        raw_call = analysis.get("call_successful", analysis.get("call_success"))
        if raw_call is None:
            call_successful = len(conversation) > 0
        else:
            call_successful = parse_outcome(raw_call) is CriterionOutcome.success

        reported: dict[str, EvaluationResult] = {}
        for key, item in (analysis.get("evaluation_criteria_results") or {}).items():
            criterion_id = str(item.get("criteria_id") or key)
            reported[criterion_id] = EvaluationResult(
                criteria_id=criterion_id,
                result=parse_outcome(item.get("result")),
                rationale=item.get("rationale") or "",
            )
        evaluations = fill_missing_criteria(
            correlate_by_id(reported, test, self.provider_name),
            test,
            call_successful,
            self.missing_criteria_policy,
        )

        return build_test_result(
            test,
            provider=self.provider_name,
            conversation=conversation,
            evaluations=evaluations,
            call_successful=call_successful,
            execution_time_ms=execution_time_ms,
        )
