"""Tests for parley.adapters.base - outcome parsing, correlation and missing-criteria fill."""

from __future__ import annotations

from parley.adapters.base import (
    MISSING_JUDGMENT_RATIONALE,
    MISSING_JUDGMENT_UNKNOWN_RATIONALE,
    build_test_result,
    correlate_by_id,
    fill_missing_criteria,
    parse_outcome,
)
from parley.models.definition import TestDefinition
from parley.models.result import CriterionOutcome, EvaluationResult, NormalizedConversation


def _make_test(criteria_ids: list[str]) -> TestDefinition:
    return TestDefinition.model_validate(
        {
            "name": "t",
            "agent_id": "agent-1",
            "simulated_user": {"prompt": "p", "first_message": "Hi"},
            "evaluation_criteria": [
                {"id": cid, "name": cid.upper(), "prompt": f"check {cid}"} for cid in criteria_ids
            ],
        }
    )


def _evaluation(cid: str, outcome: CriterionOutcome) -> EvaluationResult:
    return EvaluationResult(criteria_id=cid, result=outcome, rationale="judged")


class TestParseOutcome:
    """Test provider verdict normalization."""

    def test_strings(self):
        assert parse_outcome("success") is CriterionOutcome.success
        assert parse_outcome("PASS") is CriterionOutcome.success
        assert parse_outcome("failure") is CriterionOutcome.failure
        assert parse_outcome(" fail ") is CriterionOutcome.failure

    def test_bools(self):
        assert parse_outcome(True) is CriterionOutcome.success
        assert parse_outcome(False) is CriterionOutcome.failure

    def test_unrecognized_is_unknown(self):
        assert parse_outcome("maybe") is CriterionOutcome.unknown
        assert parse_outcome(None) is CriterionOutcome.unknown


class TestCorrelateById:
    """Test id-preserving correlation."""

    def test_orders_by_request_and_drops_orphans(self):
        test = _make_test(["a", "b"])
        reported = {
            "zz": _evaluation("zz", CriterionOutcome.success),
            "b": _evaluation("b", CriterionOutcome.failure),
            "a": _evaluation("a", CriterionOutcome.success),
        }
        correlated = correlate_by_id(reported, test, "viernes")
        assert list(correlated) == ["a", "b"]


class TestFillMissingCriteria:
    """Test that no criterion is ever silently dropped."""

    def test_overall_status_policy(self):
        test = _make_test(["a", "b", "c"])
        filled = fill_missing_criteria(
            {"a": _evaluation("a", CriterionOutcome.success)}, test, call_successful=True
        )
        assert list(filled) == ["a", "b", "c"]
        assert filled["a"].rationale == "judged"
        for cid in ("b", "c"):
            assert filled[cid].result is CriterionOutcome.success
            assert filled[cid].rationale == MISSING_JUDGMENT_RATIONALE

    def test_overall_status_policy_with_failed_call(self):
        test = _make_test(["a"])
        filled = fill_missing_criteria({}, test, call_successful=False)
        assert filled["a"].result is CriterionOutcome.failure

    def test_unknown_policy(self):
        test = _make_test(["a", "b"])
        filled = fill_missing_criteria({}, test, True, policy="unknown")
        assert all(r.result is CriterionOutcome.unknown for r in filled.values())
        assert filled["a"].rationale == MISSING_JUDGMENT_UNKNOWN_RATIONALE


class TestBuildTestResult:
    """Test the single TestResult assembly point."""

    def test_one_failure_among_five(self):
        test = _make_test(["c1", "c2", "c3", "c4", "c5"])
        evaluations = {
            cid: _evaluation(
                cid, CriterionOutcome.failure if cid == "c3" else CriterionOutcome.success
            )
            for cid in test.criterion_ids
        }
        result = build_test_result(
            test,
            provider="stub",
            conversation=NormalizedConversation(),
            evaluations=evaluations,
            call_successful=True,
        )
        assert result.success is False
        failing = [cid for cid, r in result.evaluation_results.items() if r.result is CriterionOutcome.failure]
        assert failing == ["c3"]

    def test_defaults_agent_id_and_summary(self):
        test = _make_test(["c1"])
        result = build_test_result(
            test,
            provider="stub",
            conversation=NormalizedConversation(summary="short"),
            evaluations={"c1": _evaluation("c1", CriterionOutcome.success)},
            call_successful=True,
            agent_id=None,
        )
        assert result.success is True
        assert result.agent_id == "agent-1"
        assert result.transcript_summary == "short"
