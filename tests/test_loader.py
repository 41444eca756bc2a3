"""Tests for parley.loader - line-tracked YAML parsing and scenario validation."""

from __future__ import annotations

import textwrap

import pytest

from parley.loader.validator import (
    ScenarioLoadError,
    scenario_files,
    substitute_env_vars,
    validate_test_string,
    load_test_dir,
    load_test_file,
)
from parley.loader.yaml_parser import YAMLParseError, parse_yaml_with_lines

VALID_SCENARIO = textwrap.dedent(
    """\
    name: order status
    agent_id: ${AGENT_ID}
    simulated_user:
      prompt: Customer asking about an order
      first_message: Hi
    evaluation_criteria:
      - id: greet
        name: Greeting
        prompt: Agent greets the user
      - id: order
        name: Order
        prompt: Agent confirms the order number
    dynamic_variables:
      order_id: "1234"
    """
)


def _write(tmp_path, name: str, content: str):
    path = tmp_path / name
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


class TestParseYamlWithLines:
    """Test line map construction."""

    def test_nested_keys_and_sequences_mapped(self):
        data, line_map = parse_yaml_with_lines(VALID_SCENARIO)
        assert data is not None
        assert line_map["name"] == (1, 1)
        assert line_map["simulated_user.first_message"] == (5, 3)
        assert line_map["evaluation_criteria.1.prompt"] == (12, 5)
        assert line_map["dynamic_variables.order_id"] == (14, 3)

    def test_non_mapping_document(self):
        assert parse_yaml_with_lines("- a\n- b\n") == (None, {})
        assert parse_yaml_with_lines("# only a comment\n") == (None, {})

    def test_syntax_error_position(self):
        with pytest.raises(YAMLParseError) as exc_info:
            parse_yaml_with_lines("name: [unclosed\nagent_id: x\n", filename="bad.yaml")
        assert exc_info.value.filename == "bad.yaml"
        assert exc_info.value.line is not None


class TestValidateTestString:
    """Test TestDefinition validation with issue reporting."""

    def test_valid_scenario_with_env_substitution(self):
        test, issues = validate_test_string(VALID_SCENARIO, environ={"AGENT_ID": "agent_abc"})
        assert issues == []
        assert test is not None
        assert test.agent_id == "agent_abc"
        assert test.criterion_ids == ["greet", "order"]
        assert test.dynamic_variables == {"order_id": "1234"}

    def test_unset_env_var_becomes_empty(self):
        test, _ = validate_test_string(VALID_SCENARIO, environ={})
        assert test is not None
        assert test.agent_id == ""

    def test_typo_gets_suggestion_and_line(self):
        source = VALID_SCENARIO + "dynamic_variable: {}\n"
        test, issues = validate_test_string(source, environ={})
        assert test is None
        assert len(issues) == 1
        issue = issues[0]
        assert issue.field == "dynamic_variable"
        assert issue.type == "extra_forbidden"
        assert issue.line == 15
        assert issue.suggestion == "Did you mean 'dynamic_variables'?"

    def test_nested_error_points_at_parent_when_field_missing(self):
        source = textwrap.dedent(
            """\
            name: t
            evaluation_criteria:
              - id: a
                name: A
            """
        )
        test, issues = validate_test_string(source)
        assert test is None
        assert issues[0].field == "evaluation_criteria.0"
        assert issues[0].line == 2

    def test_duplicate_criterion_ids_rejected(self):
        source = textwrap.dedent(
            """\
            name: t
            evaluation_criteria:
              - {id: a, name: A, prompt: x}
              - {id: a, name: B, prompt: y}
            """
        )
        test, issues = validate_test_string(source)
        assert test is None
        assert "duplicate evaluation criterion id 'a'" in issues[0].message

    def test_yaml_error_and_empty_file(self):
        _, issues = validate_test_string("name: [oops\n")
        assert issues[0].type == "yaml_syntax_error"
        _, issues = validate_test_string("")
        assert issues[0].type == "empty_file"

    def test_issue_format(self):
        _, issues = validate_test_string("nam: t\n")
        lines = [issue.format("s.yaml") for issue in issues]
        assert "s.yaml:1:1 -- nam: Extra inputs are not permitted (Did you mean 'name'?)" in lines


class TestLoadFiles:
    """Test file and directory loading."""

    def test_load_test_file_raises_with_all_fields(self, tmp_path):
        path = _write(
            tmp_path,
            "bad.yaml",
            """\
            name: ""
            colour: blue
            """,
        )
        with pytest.raises(ScenarioLoadError) as exc_info:
            load_test_file(path)
        error = exc_info.value
        assert error.kind == "scenario_load"
        assert set(error.details["fields"]) == {"name", "colour"}
        assert error.message.startswith(f"Invalid scenario {path}:")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_test_file(tmp_path / "nope.yaml")

    def test_directory_sorted_by_name(self, tmp_path):
        _write(tmp_path, "b.yml", "name: second\n")
        _write(tmp_path, "a.yaml", "name: first\n")
        _write(tmp_path, "notes.txt", "not a scenario\n")
        (tmp_path / "sub.yaml").mkdir()

        assert [p.name for p in scenario_files(tmp_path)] == ["a.yaml", "b.yml"]
        assert [t.name for t in load_test_dir(tmp_path)] == ["first", "second"]


class TestSubstituteEnvVars:
    """Test ${NAME} substitution."""

    def test_multiple_references(self):
        env = {"A": "1", "B": "2"}
        assert substitute_env_vars("${A}-${B}-${C}", env) == "1-2-"
