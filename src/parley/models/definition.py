"""Test definition models: the provider-agnostic description of one test.

These models encode the user-facing YAML contract. A TestDefinition is
built once by the loader, handed read-only to a single provider call,
and never mutated afterwards (all models here are frozen).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class SimulatedUser(BaseModel):
    """Persona and opening utterance driving the simulated user.

    Persona and first message may be empty at load time; providers
    reject such tests before performing any I/O.
    """

    model_config = {"extra": "forbid", "frozen": True}

    prompt: str = ""
    first_message: str = ""
    language: str = Field(default="en", min_length=2)
    llm: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    tools: list[dict[str, Any]] = Field(default_factory=list)


class EvaluationCriterion(BaseModel):
    """One named natural-language judge instruction.

    Scenario files in the wild use either ``prompt`` or
    ``conversation_goal_prompt`` for the instruction text; both are
    accepted and ``judge_instruction`` resolves the effective one.
    """

    model_config = {"extra": "forbid", "frozen": True}

    id: str = Field(min_length=1)
    name: str
    prompt: str | None = None
    conversation_goal_prompt: str | None = None
    use_knowledge_base: bool = False

    @model_validator(mode="after")
    def _require_instruction(self) -> EvaluationCriterion:
        if not (self.prompt or self.conversation_goal_prompt):
            raise ValueError(
                f"criterion '{self.id}' needs either 'prompt' or 'conversation_goal_prompt'"
            )
        return self

    @property
    def judge_instruction(self) -> str:
        """Return the effective judge instruction text."""
        return self.prompt or self.conversation_goal_prompt or self.name


class ExpectedStructuredDataField(BaseModel):
    """A field the agent is expected to capture during the conversation."""

    model_config = {"extra": "forbid", "frozen": True}

    field_name: str
    expected_value: str | list[str]
    match_mode: Literal["exact", "contains", "regex", "any_of"] = "exact"
    capture_strategy: Literal["first", "last", "all"] = "last"
    required: bool = True
    description: str | None = None


class ScriptedTurn(BaseModel):
    """A hand-written conversation turn overriding LLM generation."""

    model_config = {"extra": "forbid", "frozen": True}

    role: Literal["user", "assistant"]
    message: str


class ViernesOverrides(BaseModel):
    """Viernes-specific settings carried by a test."""

    model_config = {"extra": "forbid", "frozen": True}

    organization_id: int | None = None
    agent_id: int | None = None
    platform: Literal["whatsapp", "telegram", "facebook", "instagram", "web", "api"] | None = None
    max_turns: int | None = Field(default=None, ge=1)
    conversation_timeout: int | None = Field(default=None, ge=1)
    webhook_timeout: int | None = Field(default=None, ge=1)


class VapiOverrides(BaseModel):
    """Vapi-specific settings carried by a test."""

    model_config = {"extra": "forbid", "frozen": True}

    assistant_id: str | None = None
    attempts: int = Field(default=1, ge=1, le=5)
    persistent_eval: bool = False
    max_conversation_tokens: int | None = Field(default=None, gt=0)
    conversation_turns: list[ScriptedTurn] | None = None


class TestDefinition(BaseModel):
    """A complete provider-agnostic test loaded from a scenario file."""

    __test__ = False

    model_config = {"extra": "forbid", "frozen": True}

    name: str = Field(min_length=1)
    description: str = ""
    agent_id: str = ""
    simulated_user: SimulatedUser = Field(default_factory=SimulatedUser)
    evaluation_criteria: list[EvaluationCriterion] = Field(default_factory=list)
    dynamic_variables: dict[str, Any] = Field(default_factory=dict)
    tool_mock_config: dict[str, Any] | None = None
    partial_conversation_history: list[dict[str, Any]] | None = None
    new_turns_limit: int | None = Field(default=None, ge=1)
    expected_structured_data: list[ExpectedStructuredDataField] | None = None
    provider: Literal["elevenlabs", "vapi", "viernes"] | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    viernes: ViernesOverrides | None = None
    vapi: VapiOverrides | None = None

    @field_validator("evaluation_criteria")
    @classmethod
    def _unique_criterion_ids(
        cls, criteria: list[EvaluationCriterion]
    ) -> list[EvaluationCriterion]:
        seen: set[str] = set()
        for criterion in criteria:
            if criterion.id in seen:
                raise ValueError(f"duplicate evaluation criterion id '{criterion.id}'")
            seen.add(criterion.id)
        return criteria

    @property
    def criterion_ids(self) -> list[str]:
        """Criterion ids in request order."""
        return [c.id for c in self.evaluation_criteria]
