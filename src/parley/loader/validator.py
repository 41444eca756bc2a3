"""Scenario loading: YAML parsing plus TestDefinition validation.

Two stages: parse YAML with line tracking, then validate against the
TestDefinition model. Every problem from either stage becomes a
ScenarioIssue with its dotted field path and, where known, its source
position; all of a file's issues are reported together in one
ScenarioLoadError.
"""

from __future__ import annotations

import difflib
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from parley.errors import ConfigurationError
from parley.loader.yaml_parser import LineMap, YAMLParseError, parse_yaml_with_lines
from parley.models.definition import TestDefinition

log = structlog.get_logger(__name__)

VALID_TEST_FIELDS: list[str] = list(TestDefinition.model_fields.keys())
SCENARIO_SUFFIXES = (".yaml", ".yml")

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


@dataclass
class ScenarioIssue:
    """A single scenario problem with source position and context.

    Attributes:
        field: Dotted path of the offending field, or ``<yaml>``.
        message: Human-readable description.
        type: Pydantic error type (``missing``, ``extra_forbidden``...).
        line: 1-indexed line in the source, or None if unknown.
        col: 1-indexed column in the source, or None if unknown.
        suggestion: "Did you mean ...?" hint for mistyped top-level keys.
    """

    field: str
    message: str
    type: str
    line: int | None = None
    col: int | None = None
    suggestion: str | None = None
    input_value: Any = field(default=None, repr=False)

    def format(self, filename: str) -> str:
        """Render as ``file:line:col -- field: message (suggestion)``."""
        suffix = f" ({self.suggestion})" if self.suggestion else ""
        return f"{filename}:{self.line or 0}:{self.col or 0} -- {self.field}: {self.message}{suffix}"


class ScenarioLoadError(ConfigurationError):
    """A scenario file could not be parsed or does not describe a valid test."""

    kind = "scenario_load"

    def __init__(self, path: str, issues: list[ScenarioIssue]) -> None:
        self.path = path
        self.issues = issues
        lines = "\n".join(f"  {issue.format(path)}" for issue in issues)
        super().__init__(
            f"Invalid scenario {path}:\n{lines}",
            details={"path": path, "fields": [issue.field for issue in issues]},
        )


def substitute_env_vars(value: str, environ: Mapping[str, str] | None = None) -> str:
    """Replace ``${NAME}`` references with environment values (unset -> empty)."""
    environ = os.environ if environ is None else environ
    return _ENV_REFERENCE.sub(lambda match: environ.get(match.group(1), ""), value)


def _find_position(field_path: str, line_map: LineMap) -> tuple[int | None, int | None]:
    """Return the position of the field, else of its closest recorded parent."""
    parts = field_path.split(".")
    while parts:
        prefix = ".".join(parts)
        if prefix in line_map:
            return line_map[prefix]
        parts.pop()
    return None, None


def _suggest(field_name: str) -> str | None:
    matches = difflib.get_close_matches(field_name, VALID_TEST_FIELDS, n=1, cutoff=0.6)
    return f"Did you mean '{matches[0]}'?" if matches else None


def validate_test_data(
    raw_data: dict[str, Any],
    line_map: LineMap | None = None,
    environ: Mapping[str, str] | None = None,
) -> tuple[TestDefinition | None, list[ScenarioIssue]]:
    """Validate parsed YAML against TestDefinition.

    ``${ENV}`` references in ``agent_id`` are substituted first.

    Returns:
        ``(test, [])`` on success, ``(None, issues)`` on failure.
    """
    line_map = line_map or {}
    data = dict(raw_data)
    agent_id = data.get("agent_id")
    if isinstance(agent_id, str) and "${" in agent_id:
        data["agent_id"] = substitute_env_vars(agent_id, environ)

    try:
        return TestDefinition.model_validate(data), []
    except ValidationError as exc:
        issues: list[ScenarioIssue] = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field_path = ".".join(str(part) for part in loc) or "<root>"
            error_type = err.get("type", "unknown")
            line, col = _find_position(field_path, line_map)

            suggestion = None
            if error_type == "extra_forbidden" and len(loc) == 1:
                suggestion = _suggest(str(loc[0]))

            issues.append(
                ScenarioIssue(
                    field=field_path,
                    message=err.get("msg", "Validation error"),
                    type=error_type,
                    line=line,
                    col=col,
                    suggestion=suggestion,
                    input_value=err.get("input"),
                )
            )
        return None, issues


def validate_test_string(
    source: str,
    filename: str = "<string>",
    environ: Mapping[str, str] | None = None,
) -> tuple[TestDefinition | None, list[ScenarioIssue]]:
    """Parse and validate a scenario from a YAML string."""
    try:
        raw_data, line_map = parse_yaml_with_lines(source, filename=filename)
    except YAMLParseError as exc:
        return None, [
            ScenarioIssue(
                field="<yaml>",
                message=exc.message,
                type="yaml_syntax_error",
                line=exc.line,
                col=exc.column,
            )
        ]

    if raw_data is None:
        return None, [
            ScenarioIssue(
                field="<yaml>",
                message="File is empty or is not a mapping",
                type="empty_file",
            )
        ]
    return validate_test_data(raw_data, line_map, environ)


def load_test_file(
    path: Path | str, environ: Mapping[str, str] | None = None
) -> TestDefinition:
    """Load one scenario file into a TestDefinition.

    Raises:
        ScenarioLoadError: Listing every invalid field path.
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    test, issues = validate_test_string(path.read_text(encoding="utf-8"), str(path), environ)
    if test is None:
        log.warning("loader.invalid_scenario", path=str(path), issues=len(issues))
        raise ScenarioLoadError(str(path), issues)
    log.debug("loader.scenario_loaded", path=str(path), test_name=test.name)
    return test


def scenario_files(directory: Path | str) -> list[Path]:
    """Return the ``*.yaml``/``*.yml`` files directly inside directory, sorted by name."""
    directory = Path(directory)
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix in SCENARIO_SUFFIXES)


def load_test_dir(
    directory: Path | str, environ: Mapping[str, str] | None = None
) -> list[TestDefinition]:
    """Load every scenario in directory, in file-name order.

    Raises:
        ScenarioLoadError: On the first invalid file.
    """
    return [load_test_file(path, environ) for path in scenario_files(directory)]
