"""Parley evaluation - run-level aggregation of test results."""

from parley.evaluation.aggregation import (
    CriterionFailure,
    ResultAggregator,
    RunSummary,
    rank_criterion_failures,
    summarize_results,
)

__all__ = [
    "CriterionFailure",
    "ResultAggregator",
    "RunSummary",
    "rank_criterion_failures",
    "summarize_results",
]
