"""Parley data models - re-exports all public model classes."""

from parley.models.config import (
    ElevenLabsSettings,
    ProjectConfig,
    QueueSettings,
    VapiSettings,
    ViernesSettings,
)
from parley.models.definition import (
    EvaluationCriterion,
    ExpectedStructuredDataField,
    ScriptedTurn,
    SimulatedUser,
    TestDefinition,
    VapiOverrides,
    ViernesOverrides,
)
from parley.models.result import (
    ConversationTurn,
    CriterionOutcome,
    EvaluationResult,
    NormalizedConversation,
    StructuredDataEvaluation,
    StructuredFieldResult,
    TestResult,
    check_criteria_ids,
    compute_success,
)

__all__ = [
    "ConversationTurn",
    "CriterionOutcome",
    "ElevenLabsSettings",
    "EvaluationCriterion",
    "EvaluationResult",
    "ExpectedStructuredDataField",
    "NormalizedConversation",
    "ProjectConfig",
    "QueueSettings",
    "ScriptedTurn",
    "SimulatedUser",
    "StructuredDataEvaluation",
    "StructuredFieldResult",
    "TestDefinition",
    "TestResult",
    "VapiOverrides",
    "VapiSettings",
    "ViernesOverrides",
    "ViernesSettings",
    "check_criteria_ids",
    "compute_success",
]
