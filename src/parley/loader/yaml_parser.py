"""YAML parser with line tracking for scenario error reporting.

A PyYAML SafeLoader subclass records the source position of every
mapping key, so a validation error on ``evaluation_criteria.1.prompt``
can point at the line the user has to fix.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

LineMap = dict[str, tuple[int, int]]


class YAMLParseError(Exception):
    """Raised when YAML syntax cannot be parsed.

    Attributes:
        line: 1-indexed line number where the error occurred.
        column: 1-indexed column number where the error occurred.
        message: Human-readable description of the syntax error.
        filename: Name of the file being parsed, or '<string>'.
    """

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        filename: str = "<string>",
    ) -> None:
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename
        super().__init__(message)


class LineTrackingLoader(yaml.SafeLoader):
    """SafeLoader that maps dotted key paths to 1-indexed (line, column)."""

    def __init__(self, stream: str) -> None:
        super().__init__(stream)
        self.line_map: LineMap = {}
        self._prefix_stack: list[str] = []

    def _record(self, key: str, key_node: yaml.Node) -> None:
        full_key = ".".join([*self._prefix_stack, key])
        self.line_map[full_key] = (key_node.start_mark.line + 1, key_node.start_mark.column + 1)

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        self.flatten_mapping(node)
        pairs = []
        for key_node, value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            nested = isinstance(value_node, (yaml.MappingNode, yaml.SequenceNode))

            if isinstance(key, str):
                self._record(key, key_node)
                if nested:
                    self._prefix_stack.append(key)
            value = self.construct_object(value_node, deep=deep)
            if isinstance(key, str) and nested:
                self._prefix_stack.pop()

            pairs.append((key, value))
        return dict(pairs)

    def construct_sequence(self, node: yaml.SequenceNode, deep: bool = False) -> list[Any]:
        result = []
        for idx, child_node in enumerate(node.value):
            if isinstance(child_node, yaml.MappingNode):
                self._prefix_stack.append(str(idx))
                result.append(self.construct_mapping(child_node, deep=deep))
                self._prefix_stack.pop()
            else:
                result.append(self.construct_object(child_node, deep=deep))
        return result

    def construct_yaml_map(self, node: yaml.MappingNode) -> Any:
        yield self.construct_mapping(node, deep=True)

    def construct_yaml_seq(self, node: yaml.SequenceNode) -> Any:
        yield self.construct_sequence(node, deep=True)


LineTrackingLoader.add_constructor("tag:yaml.org,2002:map", LineTrackingLoader.construct_yaml_map)
LineTrackingLoader.add_constructor("tag:yaml.org,2002:seq", LineTrackingLoader.construct_yaml_seq)


def parse_yaml_with_lines(source: str, filename: str = "<string>") -> tuple[dict | None, LineMap]:
    """Parse a YAML string and return (data, line_map).

    Returns:
        ``(None, {})`` for empty, comment-only or non-mapping documents.

    Raises:
        YAMLParseError: If the YAML contains syntax errors.
    """
    try:
        loader = LineTrackingLoader(source)
        try:
            data = loader.get_single_data()
        finally:
            loader.dispose()
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        raise YAMLParseError(
            message=str(exc),
            line=mark.line + 1 if mark is not None else None,
            column=mark.column + 1 if mark is not None else None,
            filename=filename,
        ) from exc

    if not isinstance(data, dict):
        return None, {}
    return data, loader.line_map


def parse_yaml_file(filepath: Path) -> tuple[dict | None, LineMap]:
    """Parse a YAML file and return (data, line_map).

    Raises:
        YAMLParseError: If the file contains YAML syntax errors.
        FileNotFoundError: If the file does not exist.
    """
    return parse_yaml_with_lines(filepath.read_text(encoding="utf-8"), filename=str(filepath))
