"""Result data models: the unified output every provider produces.

A TestResult is immutable once built and is the only thing downstream
consumers (aggregation, reporting, JSON output) ever look at. The
success flag is not trusted from any single provider boolean: it is
recomputed from per-criterion outcomes, the overall call flag, and the
structured-data checks, and the model refuses to be constructed with a
success value that disagrees with them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from parley.models.definition import TestDefinition


class CriterionOutcome(str, Enum):
    """Outcome of judging one criterion.

    ``unknown`` is reserved for cases where the judging mechanism itself
    failed; a criterion that was judged and did not hold is ``failure``.
    """

    success = "success"
    failure = "failure"
    unknown = "unknown"


class ConversationTurn(BaseModel):
    """One utterance in a conversation."""

    model_config = {"frozen": True}

    role: Literal["user", "agent"]
    message: str
    tool_calls: list[dict[str, Any]] | None = None
    timestamp: str | None = None
    time_in_call_secs: float | None = None


class NormalizedConversation(BaseModel):
    """Provider-independent conversation produced by every adapter.

    ``source`` records which strategy produced the turns:
    ``structured`` (provider returned turn arrays), ``transcript``
    (parsed from flat text) or ``generated`` (built client-side from
    generated user messages and live assistant replies).
    """

    model_config = {"frozen": True}

    turns: tuple[ConversationTurn, ...] = ()
    source: Literal["structured", "transcript", "generated"] = "structured"
    summary: str | None = None

    def __len__(self) -> int:
        return len(self.turns)

    def agent_turns(self) -> list[ConversationTurn]:
        return [t for t in self.turns if t.role == "agent"]


class EvaluationResult(BaseModel):
    """Judgment of one criterion for one test execution."""

    model_config = {"frozen": True}

    criteria_id: str
    result: CriterionOutcome
    rationale: str = ""

    @property
    def passed(self) -> bool:
        return self.result is CriterionOutcome.success


class StructuredFieldResult(BaseModel):
    """Outcome of one expected structured-data field."""

    model_config = {"frozen": True}

    field_name: str
    success: bool
    expected_value: Any = None
    captured_value: Any = None
    captured_from_turn: int | None = None
    match_mode: str | None = None
    reason: str = ""


class StructuredDataEvaluation(BaseModel):
    """Structured-data extraction checks reported by the provider."""

    model_config = {"frozen": True}

    total_fields: int = 0
    passed_fields: int = 0
    failed_fields: int = 0
    missing_fields: int = 0
    success_rate: float | None = None
    all_passed: bool = True
    field_results: list[StructuredFieldResult] = Field(default_factory=list)


def compute_success(
    call_successful: bool,
    evaluation_results: dict[str, EvaluationResult],
    structured_data: StructuredDataEvaluation | None = None,
) -> bool:
    """Compute the overall success flag of a test execution.

    Success holds iff the provider reported an overall-successful call,
    every criterion outcome is ``success``, and (when present) every
    structured-data check passed. A single ``unknown`` or ``failure``
    forces False.

    Args:
        call_successful: Provider-reported overall call outcome.
        evaluation_results: Per-criterion results keyed by criterion id.
        structured_data: Optional structured-data extraction checks.

    Returns:
        The overall success flag.
    """
    if not call_successful:
        return False
    if any(r.result is not CriterionOutcome.success for r in evaluation_results.values()):
        return False
    if structured_data is not None and not structured_data.all_passed:
        return False
    return True


class TestResult(BaseModel):
    """Unified, immutable output of one test execution."""

    __test__ = False

    model_config = {"frozen": True}

    test_name: str
    agent_id: str
    provider: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool
    call_successful: bool
    conversation: tuple[ConversationTurn, ...] = ()
    conversation_source: str | None = None
    evaluation_results: dict[str, EvaluationResult] = Field(default_factory=dict)
    structured_data_evaluation: StructuredDataEvaluation | None = None
    transcript_summary: str = ""
    execution_time_ms: float = 0.0
    provider_cost: float | None = None
    provider_run_id: str | None = None
    error: str | None = None
    error_kind: str | None = None

    @model_validator(mode="after")
    def _check_success_invariant(self) -> TestResult:
        expected = compute_success(
            self.call_successful,
            self.evaluation_results,
            self.structured_data_evaluation,
        ) and self.error is None
        if self.success != expected:
            raise ValueError(
                f"success={self.success} disagrees with criteria and call outcome "
                f"(expected {expected}) for test '{self.test_name}'"
            )
        for key, value in self.evaluation_results.items():
            if key != value.criteria_id:
                raise ValueError(
                    f"evaluation result keyed '{key}' carries criteria_id '{value.criteria_id}'"
                )
        return self

    @classmethod
    def failed(
        cls,
        test: TestDefinition,
        provider: str,
        error: str,
        *,
        error_kind: str | None = None,
        execution_time_ms: float = 0.0,
        agent_id: str | None = None,
        conversation: tuple[ConversationTurn, ...] = (),
    ) -> TestResult:
        """Build the canonical failed result for a test that could not run.

        Args:
            test: The originating test definition.
            provider: Name of the provider that attempted it.
            error: Human-readable error message.
            error_kind: Machine-readable error kind, if known.
            execution_time_ms: Time spent before failing.
            agent_id: Effective agent identifier (defaults to test.agent_id).
            conversation: Any partial conversation captured before failing.

        Returns:
            A TestResult with success=False and no evaluation results.
        """
        return cls(
            test_name=test.name,
            agent_id=agent_id if agent_id is not None else test.agent_id,
            provider=provider,
            success=False,
            call_successful=False,
            conversation=conversation,
            transcript_summary=f"Test failed: {error}",
            execution_time_ms=execution_time_ms,
            error=error,
            error_kind=error_kind,
        )

    @property
    def unknown_count(self) -> int:
        return sum(
            1 for r in self.evaluation_results.values()
            if r.result is CriterionOutcome.unknown
        )


def check_criteria_ids(result: TestResult, test: TestDefinition) -> None:
    """Verify every criterion id in a result exists in its test definition.

    Raises:
        ValueError: If the result references an id the test never defined.
    """
    known = set(test.criterion_ids)
    orphaned = [cid for cid in result.evaluation_results if cid not in known]
    if orphaned:
        raise ValueError(
            f"result for '{test.name}' references unknown criteria: {', '.join(orphaned)}"
        )
