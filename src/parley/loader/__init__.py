"""Parley scenario loader - YAML parsing, validation, and error reporting."""

from parley.loader.validator import (
    ScenarioIssue,
    ScenarioLoadError,
    load_test_dir,
    load_test_file,
    scenario_files,
    substitute_env_vars,
    validate_test_string,
)
from parley.loader.yaml_parser import (
    YAMLParseError,
    parse_yaml_file,
    parse_yaml_with_lines,
)

__all__ = [
    "ScenarioIssue",
    "ScenarioLoadError",
    "YAMLParseError",
    "load_test_dir",
    "load_test_file",
    "parse_yaml_file",
    "parse_yaml_with_lines",
    "scenario_files",
    "substitute_env_vars",
    "validate_test_string",
]
