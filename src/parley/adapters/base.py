"""BaseProviderAdapter ABC and shared result-assembly helpers.

Adapters are pure translators between the unified TestDefinition /
TestResult models and one provider's wire schema. They never perform
I/O. Every adapter produces a NormalizedConversation from its own
response shape and hands it, together with per-criterion results, to
build_test_result(), which is the single place a TestResult is
assembled and its success flag computed.

Criterion correlation comes in two flavours. Providers that echo the
criterion id back go through correlate_by_id(). Providers that only
return ordered judge outputs use their own clearly labelled positional
fallback inside the adapter module. Either way, criteria the provider
never judged are filled by fill_missing_criteria() so that no
criterion is ever silently dropped.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Literal

import structlog

from parley.models.definition import TestDefinition
from parley.models.result import (
    CriterionOutcome,
    EvaluationResult,
    NormalizedConversation,
    StructuredDataEvaluation,
    TestResult,
    compute_success,
)

log = structlog.get_logger(__name__)

MissingCriteriaPolicy = Literal["overall_status", "unknown"]

MISSING_JUDGMENT_RATIONALE = "No individual judge result available, using overall eval status"
MISSING_JUDGMENT_UNKNOWN_RATIONALE = "No individual judge result available; criterion was not evaluated"

_SUCCESS_VALUES = frozenset({"success", "pass", "passed", "true", "yes"})
_FAILURE_VALUES = frozenset({"failure", "fail", "failed", "false", "no"})


def parse_outcome(value: Any) -> CriterionOutcome:
    """Map a provider-reported verdict (string or bool) onto CriterionOutcome.

    Unrecognized values map to ``unknown``.
    """
    if isinstance(value, CriterionOutcome):
        return value
    if isinstance(value, bool):
        return CriterionOutcome.success if value else CriterionOutcome.failure
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _SUCCESS_VALUES:
            return CriterionOutcome.success
        if normalized in _FAILURE_VALUES:
            return CriterionOutcome.failure
    return CriterionOutcome.unknown


def correlate_by_id(
    reported: Mapping[str, EvaluationResult],
    test: TestDefinition,
    provider: str,
) -> dict[str, EvaluationResult]:
    """Keep provider results whose id exists in the test, in request order.

    Results for ids the test never defined are dropped and logged.
    """
    known = set(test.criterion_ids)
    orphaned = [cid for cid in reported if cid not in known]
    if orphaned:
        log.warning(
            "adapter.orphaned_criteria",
            provider=provider,
            test_name=test.name,
            criteria_ids=orphaned,
        )
    return {cid: reported[cid] for cid in test.criterion_ids if cid in reported}


def fill_missing_criteria(
    evaluations: Mapping[str, EvaluationResult],
    test: TestDefinition,
    call_successful: bool,
    policy: MissingCriteriaPolicy = "overall_status",
) -> dict[str, EvaluationResult]:
    """Return a result for every criterion of the test, in request order.

    Criteria missing from ``evaluations`` are filled according to
    ``policy``: ``overall_status`` derives the outcome from the
    provider's overall call flag, ``unknown`` marks them as not
    evaluated. Either way the rationale states that no individual
    judgment was available.
    """
    filled: dict[str, EvaluationResult] = {}
    for criterion in test.evaluation_criteria:
        existing = evaluations.get(criterion.id)
        if existing is not None:
            filled[criterion.id] = existing
            continue
        if policy == "unknown":
            filled[criterion.id] = EvaluationResult(
                criteria_id=criterion.id,
                result=CriterionOutcome.unknown,
                rationale=MISSING_JUDGMENT_UNKNOWN_RATIONALE,
            )
        else:
            filled[criterion.id] = EvaluationResult(
                criteria_id=criterion.id,
                result=CriterionOutcome.success if call_successful else CriterionOutcome.failure,
                rationale=MISSING_JUDGMENT_RATIONALE,
            )
    return filled


def build_test_result(
    test: TestDefinition,
    *,
    provider: str,
    conversation: NormalizedConversation,
    evaluations: Mapping[str, EvaluationResult],
    call_successful: bool,
    structured_data: StructuredDataEvaluation | None = None,
    execution_time_ms: float = 0.0,
    provider_cost: float | None = None,
    provider_run_id: str | None = None,
    agent_id: str | None = None,
) -> TestResult:
    """Assemble a TestResult with its success flag derived from the evaluations.

    Args:
        test: The originating test definition.
        provider: Provider name recorded on the result.
        conversation: Normalized conversation produced by the adapter.
        evaluations: Per-criterion results keyed by criterion id.
        call_successful: Provider-reported overall call outcome.
        structured_data: Optional structured-data extraction checks.
        execution_time_ms: Wall time of the provider call.
        provider_cost: Cost reported by the provider, if any.
        provider_run_id: Provider-side identifier of the run, if any.
        agent_id: Effective agent identifier (defaults to test.agent_id).

    Returns:
        An immutable TestResult.
    """
    evaluation_results = dict(evaluations)
    return TestResult(
        test_name=test.name,
        agent_id=agent_id if agent_id is not None else test.agent_id,
        provider=provider,
        success=compute_success(call_successful, evaluation_results, structured_data),
        call_successful=call_successful,
        conversation=conversation.turns,
        conversation_source=conversation.source,
        evaluation_results=evaluation_results,
        structured_data_evaluation=structured_data,
        transcript_summary=conversation.summary or "",
        execution_time_ms=execution_time_ms,
        provider_cost=provider_cost,
        provider_run_id=provider_run_id,
    )


class BaseProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Subclasses implement the request and response directions for one
    provider. Both methods are pure.

    Args:
        missing_criteria_policy: How criteria the provider never judged
            are filled (see fill_missing_criteria).
    """

    provider_name: str = "provider"

    def __init__(self, missing_criteria_policy: MissingCriteriaPolicy = "overall_status") -> None:
        self.missing_criteria_policy = missing_criteria_policy

    @abstractmethod
    def to_provider_request(self, test: TestDefinition, **context: Any) -> dict[str, Any]:
        """Translate a TestDefinition into the provider's request payload."""
        ...

    @abstractmethod
    def to_test_result(self, response: Any, test: TestDefinition, **context: Any) -> TestResult:
        """Translate a provider response into a TestResult."""
        ...
