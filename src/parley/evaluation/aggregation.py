"""Run-level aggregation over TestResults from any provider.

Computes pass rates, cost totals and execution-time percentiles across
a batch of results, ranks criteria by how often they were not met, and
counts error kinds. Only the unified TestResult model is read here, so
results from different providers aggregate the same way.
"""

from __future__ import annotations

import statistics
from collections import Counter
from collections.abc import Iterable

from pydantic import BaseModel, Field

from parley.models.result import CriterionOutcome, TestResult


class CriterionFailure(BaseModel):
    """How often one criterion id was not met across a run."""

    model_config = {"extra": "forbid"}

    criteria_id: str
    occurrences: int
    fail_count: int
    unknown_count: int
    fail_rate: float
    sample_rationales: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Aggregate metrics for one batch of test results."""

    model_config = {"extra": "forbid"}

    total: int
    passed: int
    failed: int
    errored: int
    pass_rate: float
    unknown_criteria: int
    cost_total: float | None = None
    latency_p50_ms: float | None = None
    latency_p95_ms: float | None = None
    criterion_failures: list[CriterionFailure] = Field(default_factory=list)
    error_kinds: dict[str, int] = Field(default_factory=dict)
    providers: dict[str, int] = Field(default_factory=dict)

    @property
    def all_passed(self) -> bool:
        return self.total > 0 and self.passed == self.total


def _percentiles(values: list[float]) -> tuple[float | None, float | None]:
    if not values:
        return None, None
    if len(values) == 1:
        # statistics.quantiles requires >= 2 data points
        return values[0], values[0]
    # quantiles(n=100) gives 99 cut points -> index 49 is p50, 94 is p95
    cuts = statistics.quantiles(values, n=100)
    return cuts[49], cuts[94]


def rank_criterion_failures(results: Iterable[TestResult]) -> list[CriterionFailure]:
    """Rank criteria by the number of executions in which they were not met.

    Both ``failure`` and ``unknown`` outcomes count as not met; they are
    reported separately so an unreliable judge is distinguishable from
    an agent that really misbehaved. Criteria that always succeeded are
    omitted.
    """
    occurrences: Counter[str] = Counter()
    failures: Counter[str] = Counter()
    unknowns: Counter[str] = Counter()
    samples: dict[str, list[str]] = {}

    for result in results:
        for criteria_id, evaluation in result.evaluation_results.items():
            occurrences[criteria_id] += 1
            if evaluation.result is CriterionOutcome.success:
                continue
            if evaluation.result is CriterionOutcome.unknown:
                unknowns[criteria_id] += 1
            else:
                failures[criteria_id] += 1
            bucket = samples.setdefault(criteria_id, [])
            if len(bucket) < 3 and evaluation.rationale:
                bucket.append(evaluation.rationale)

    ranked = [
        CriterionFailure(
            criteria_id=cid,
            occurrences=occurrences[cid],
            fail_count=failures[cid],
            unknown_count=unknowns[cid],
            fail_rate=(failures[cid] + unknowns[cid]) / occurrences[cid],
            sample_rationales=samples.get(cid, []),
        )
        for cid in occurrences
        if failures[cid] or unknowns[cid]
    ]
    ranked.sort(key=lambda f: (-(f.fail_count + f.unknown_count), -f.fail_rate, f.criteria_id))
    return ranked


def summarize_results(results: list[TestResult]) -> RunSummary:
    """Compute a RunSummary for a batch of results.

    Args:
        results: Results in any order, from any mix of providers.

    Returns:
        RunSummary; an empty batch yields zero counts and a 0.0 pass rate.
    """
    total = len(results)
    passed = sum(1 for r in results if r.success)
    errored = sum(1 for r in results if r.error is not None)
    costs = [r.provider_cost for r in results if r.provider_cost is not None]
    p50, p95 = _percentiles([r.execution_time_ms for r in results])

    return RunSummary(
        total=total,
        passed=passed,
        failed=total - passed,
        errored=errored,
        pass_rate=passed / total if total else 0.0,
        unknown_criteria=sum(r.unknown_count for r in results),
        cost_total=sum(costs) if costs else None,
        latency_p50_ms=p50,
        latency_p95_ms=p95,
        criterion_failures=rank_criterion_failures(results),
        error_kinds=dict(Counter(r.error_kind or "unknown" for r in results if r.error is not None)),
        providers=dict(Counter(r.provider for r in results)),
    )


class ResultAggregator:
    """Collect results as they arrive and summarize on demand."""

    def __init__(self) -> None:
        self._results: list[TestResult] = []

    def __len__(self) -> int:
        return len(self._results)

    @property
    def results(self) -> list[TestResult]:
        return list(self._results)

    def add(self, result: TestResult) -> None:
        self._results.append(result)

    def extend(self, results: Iterable[TestResult]) -> None:
        self._results.extend(results)

    def summary(self) -> RunSummary:
        return summarize_results(self._results)
