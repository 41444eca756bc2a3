"""Pure text utilities shared by the provider adapters.

Variable interpolation, the declarative-to-question criterion rewrite,
role-prefixed transcript parsing, and short conversation summaries.
Nothing here performs I/O or knows about a specific provider.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from parley.models.result import ConversationTurn

# {{VAR}} is listed first so {VAR} can never match half of a double-brace reference.
_VARIABLE_PATTERN = re.compile(
    r"\{\{\s*(?P<double>\w+)\s*\}\}"
    r"|\$\{(?P<dollar>\w+)\}"
    r"|(?<!\{)\{(?P<single>\w+)\}(?!\})"
)


def _variable_name(match: re.Match[str]) -> str:
    return match.group("double") or match.group("dollar") or match.group("single")


def interpolate_variables(text: str, variables: Mapping[str, Any] | None) -> str:
    """Substitute ``${VAR}``, ``{VAR}`` and ``{{VAR}}`` references in one pass.

    Substituted values are never re-scanned, so a value that itself
    contains a reference is inserted literally. Unknown names are left
    exactly as written.

    Args:
        text: Free text containing variable references.
        variables: Mapping of variable names to values.

    Returns:
        The interpolated text.
    """
    if not text or not variables:
        return text

    def _replace(match: re.Match[str]) -> str:
        name = _variable_name(match)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE_PATTERN.sub(_replace, text)


def to_variable_syntax(text: str, style: Literal["dollar", "mustache"]) -> str:
    """Rewrite every variable reference into a single syntax.

    Args:
        text: Free text containing variable references in any syntax.
        style: ``dollar`` for ``${VAR}``, ``mustache`` for ``{{VAR}}``.

    Returns:
        Text with all references in the requested syntax.
    """
    if not text:
        return text
    template = "${{{name}}}" if style == "dollar" else "{{{{{name}}}}}"
    return _VARIABLE_PATTERN.sub(lambda m: template.format(name=_variable_name(m)), text)


# ---------------------------------------------------------------------------
# Criterion rewrite
# ---------------------------------------------------------------------------

_SATISFY_PREFIX = "Did the test satisfy:"
_FALLBACK_PREFIX = "Did the conversation meet this criterion:"

_EVALUATE_PATTERN = re.compile(
    r"^(?:evaluate|assess|determine|judge)\s+(?:whether|if)\s+(?P<rest>.+)$",
    re.IGNORECASE | re.DOTALL,
)
_VERIFY_PATTERN = re.compile(
    r"^(?:verify|check|ensure|confirm)\s+(?:that|whether|if)\s+(?P<rest>.+)$",
    re.IGNORECASE | re.DOTALL,
)
_SHOULD_PATTERN = re.compile(
    r"^(?P<subject>.+?)\s+(?P<modal>should|must)\s+(?P<rest>.+)$",
    re.IGNORECASE | re.DOTALL,
)
_AGENT_VERB_PATTERN = re.compile(
    r"^(?:the\s+)?(?P<actor>agent|assistant|bot)\s+(?P<verb>[a-z]+)\s+(?P<rest>.+)$",
    re.IGNORECASE | re.DOTALL,
)

_IRREGULAR_VERBS: dict[str, str] = {"does": "do", "has": "have", "goes": "go"}


def _base_form(verb: str) -> str | None:
    """Return the base form of a third-person singular verb, or None."""
    lower = verb.lower()
    if lower in _IRREGULAR_VERBS:
        return _IRREGULAR_VERBS[lower]
    if not lower.endswith("s") or lower.endswith("ss") or len(lower) < 3:
        return None
    if lower.endswith("ies"):
        return lower[:-3] + "y"
    if lower.endswith(("sses", "shes", "ches", "xes", "zzes")):
        return lower[:-2]
    return lower[:-1]


def criterion_to_question(text: str) -> str:
    """Rewrite a declarative criterion into a yes/no question.

    Rules, in order:

    * already interrogative (ends with ``?``): unchanged
    * ``Evaluate whether X`` / ``Assess if X``: ``Did the test satisfy: X?``
    * ``Verify that X`` / ``Check whether X``: ``Did the test satisfy: X?``
    * ``Agent is X``: ``Was the agent X?``
    * ``Agent <verb>s X``: ``Did the agent <verb> X?``
    * ``<subject> should X``: ``Did the test satisfy: <subject> should X?``
    * anything else: ``Did the conversation meet this criterion: <text>?``

    Args:
        text: Criterion instruction text.

    Returns:
        An interrogative judge question.

    Raises:
        ValueError: If text is empty or whitespace.
    """
    stripped = " ".join(text.split())
    if not stripped:
        raise ValueError("criterion text is empty")
    if stripped.endswith("?"):
        return stripped
    body = stripped.rstrip(".!;: ")

    match = _EVALUATE_PATTERN.match(body)
    if match:
        return f"{_SATISFY_PREFIX} {match.group('rest')}?"

    match = _VERIFY_PATTERN.match(body)
    if match:
        return f"{_SATISFY_PREFIX} {match.group('rest')}?"

    if _SHOULD_PATTERN.match(body):
        return f"{_SATISFY_PREFIX} {body}?"

    match = _AGENT_VERB_PATTERN.match(body)
    if match:
        actor = match.group("actor").lower()
        verb = match.group("verb")
        rest = match.group("rest")
        if verb.lower() in ("is", "was"):
            return f"Was the {actor} {rest}?"
        base = _base_form(verb)
        if base is not None:
            return f"Did the {actor} {base} {rest}?"

    return f"{_FALLBACK_PREFIX} {body}?"


# ---------------------------------------------------------------------------
# Transcript parsing
# ---------------------------------------------------------------------------

DEFAULT_ROLE_MARKERS: dict[str, Literal["user", "agent"]] = {
    "user": "user",
    "agent": "agent",
    "assistant": "agent",
}


def parse_role_transcript(
    text: str,
    role_markers: Mapping[str, Literal["user", "agent"]] | None = None,
) -> list[ConversationTurn]:
    """Split a flat transcript into turns on role-prefix markers.

    A line starting with a marker (``User:``, ``Agent:``, ``Assistant:``
    by default, case-insensitive) opens a new turn; following lines
    without a marker are appended to the current turn; the trailing turn
    is finalized at end of input. Lines before the first marker are
    ignored and a transcript with no markers yields no turns.

    Args:
        text: Transcript text.
        role_markers: Mapping of lowercase marker words to turn roles.

    Returns:
        Ordered list of ConversationTurn.
    """
    markers = role_markers or DEFAULT_ROLE_MARKERS
    alternatives = "|".join(re.escape(m) for m in sorted(markers, key=len, reverse=True))
    line_pattern = re.compile(rf"^\s*\**(?P<marker>{alternatives})\**\s*:\s*(?P<body>.*)$", re.IGNORECASE)

    turns: list[ConversationTurn] = []
    current_role: Literal["user", "agent"] | None = None
    current_parts: list[str] = []

    def _flush() -> None:
        if current_role is not None:
            message = " ".join(p for p in current_parts if p).strip()
            if message:
                turns.append(ConversationTurn(role=current_role, message=message))

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = line_pattern.match(line)
        if match:
            _flush()
            current_role = markers[match.group("marker").lower()]
            current_parts = [match.group("body").strip()]
        elif current_role is not None:
            current_parts.append(line)

    _flush()
    return turns


def summarize_conversation(turns: Iterable[ConversationTurn], edge: int = 2) -> str:
    """Render a short summary: every turn, or the first and last few with an ellipsis.

    Args:
        turns: Conversation turns in order.
        edge: Number of turns kept at each end of long conversations.

    Returns:
        One line per kept turn, ``"Empty conversation"`` for no turns.
    """
    lines = [f"{t.role.capitalize()}: {t.message}" for t in turns]
    if not lines:
        return "Empty conversation"
    if len(lines) > edge * 2:
        lines = lines[:edge] + ["..."] + lines[-edge:]
    return "\n".join(lines)


def describe_variables(variables: Mapping[str, Any] | None) -> str:
    """Render dynamic variables as a bullet list for generator prompts."""
    if not variables:
        return "No specific variables defined."
    return "The following variables are available for use:\n" + "\n".join(
        f"- {{{{{key}}}}}: {value}" for key, value in variables.items()
    )
