"""Tests for parley.adapters.elevenlabs_adapter - simulation spec and keyed results."""

from __future__ import annotations

import pytest

from parley.adapters.elevenlabs_adapter import ElevenLabsAdapter
from parley.errors import TranscriptParseError
from parley.models.definition import TestDefinition
from parley.models.result import CriterionOutcome


def _make_test(**overrides) -> TestDefinition:
    data = {
        "name": "greet",
        "agent_id": "agent_abc",
        "simulated_user": {
            "prompt": "friendly user called {{name}}",
            "first_message": "Hi",
            "language": "en",
        },
        "evaluation_criteria": [
            {"id": "c1", "name": "Greeting", "prompt": "Did the agent greet {name} back?"}
        ],
        "dynamic_variables": {"name": "Ana"},
    }
    data.update(overrides)
    return TestDefinition.model_validate(data)


def _make_response(results: dict | None = None, **analysis) -> dict:
    return {
        "simulated_conversation": [
            {"role": "user", "message": "Hi", "time_in_call_secs": 0},
            {"role": "agent", "message": "Hello Ana!", "time_in_call_secs": 1},
        ],
        "analysis": {
            "call_successful": "success",
            "transcript_summary": "Greeting exchanged.",
            "evaluation_criteria_results": results
            if results is not None
            else {"c1": {"criteria_id": "c1", "result": "success", "rationale": "Greeted"}},
            **analysis,
        },
    }


class TestElevenLabsRequest:
    """Test TestDefinition -> simulate-conversation body."""

    def test_variables_rewritten_to_dollar_syntax(self):
        body = ElevenLabsAdapter().to_provider_request(_make_test())
        spec = body["simulation_specification"]
        user_config = spec["simulated_user_config"]
        assert user_config["prompt"] == {"prompt": "friendly user called ${name}"}
        assert user_config["first_message"] == "Hi"
        assert user_config["language"] == "en"
        assert "tools" not in user_config
        assert spec["dynamic_variables"] == {"name": "Ana"}
        assert "tool_mock_config" not in spec
        assert body["extra_evaluation_criteria"] == [
            {
                "id": "c1",
                "name": "Greeting",
                "type": "prompt",
                "conversation_goal_prompt": "Did the agent greet ${name} back?",
                "use_knowledge_base": False,
            }
        ]
        assert "new_turns_limit" not in body

    def test_optional_fields_passed_through(self):
        test = _make_test(
            new_turns_limit=5,
            tool_mock_config={"lookup": {"default_return_value": "{}"}},
            simulated_user={"prompt": "p", "first_message": "Hi", "llm": "gpt-4o", "temperature": 0.5},
        )
        body = ElevenLabsAdapter().to_provider_request(test)
        assert body["new_turns_limit"] == 5
        spec = body["simulation_specification"]
        assert spec["tool_mock_config"] == {"lookup": {"default_return_value": "{}"}}
        assert spec["simulated_user_config"]["prompt"] == {
            "prompt": "p",
            "llm": "gpt-4o",
            "temperature": 0.5,
        }


class TestElevenLabsResult:
    """Test simulate-conversation response -> TestResult."""

    def test_happy_path(self):
        result = ElevenLabsAdapter().to_test_result(_make_response(), _make_test(), execution_time_ms=50.0)
        assert result.success is True
        assert result.evaluation_results["c1"].rationale == "Greeted"
        assert result.transcript_summary == "Greeting exchanged."
        assert result.execution_time_ms == 50.0

    def test_keyed_results_without_criteria_id(self):
        response = _make_response({"c1": {"result": "failure", "rationale": "No greeting"}})
        result = ElevenLabsAdapter().to_test_result(response, _make_test())
        assert result.evaluation_results["c1"].result is CriterionOutcome.failure
        assert result.success is False

    def test_boolean_call_success_flag(self):
        response = _make_response()
        del response["analysis"]["call_successful"]
        response["analysis"]["call_success"] = False
        result = ElevenLabsAdapter().to_test_result(response, _make_test())
        assert result.call_successful is False

    def test_missing_call_flag_uses_conversation(self):
        response = _make_response()
        del response["analysis"]["call_successful"]
        result = ElevenLabsAdapter().to_test_result(response, _make_test())
        assert result.call_successful is True

    def test_missing_criterion_filled(self):
        result = ElevenLabsAdapter().to_test_result(_make_response({}), _make_test())
        assert result.evaluation_results["c1"].rationale.startswith(
            "No individual judge result available"
        )

    def test_missing_conversation_raises(self):
        with pytest.raises(TranscriptParseError):
            ElevenLabsAdapter().to_test_result({"analysis": {}}, _make_test())
