"""Configuration models for Parley.

Queue and provider settings are pydantic models with validated
defaults; each has a ``from_env`` constructor that reads the
environment-variable names used in deployment. Project-level defaults
live in an optional parley.yaml discovered by walking up from the
current directory.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from parley.errors import ConfigurationError

DEFAULT_VIERNES_BASE_URL = "https://bot.dev.viernes-for-business.bananascript.io"
DEFAULT_VAPI_BASE_URL = "https://api.vapi.ai"
DEFAULT_ELEVENLABS_BASE_URL = "https://api.elevenlabs.io"

MAX_ATTEMPTS_CEILING = 50

_FALSE_VALUES = frozenset({"false", "0", "no", "off"})
_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})


def _env_bool(value: str | None, default: bool) -> bool:
    """Parse a boolean environment value, falling back to default when unset."""
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"Invalid boolean value '{value}'",
        details={"value": value},
    )


def _pick(environ: Mapping[str, str], mapping: dict[str, str]) -> dict[str, str]:
    """Collect the set, non-empty environment variables for a settings model."""
    return {
        field_name: environ[var]
        for var, field_name in mapping.items()
        if environ.get(var, "").strip() != ""
    }


def _validate(model: type[BaseModel], data: dict, source: str) -> BaseModel:
    """Validate settings data, converting pydantic errors to ConfigurationError."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or source}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(
            f"Invalid {source} configuration: {problems}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


class QueueSettings(BaseModel):
    """Settings for a RetryQueue instance.

    jitter_ratio is the upper bound of the uniform jitter factor added to
    every exponential delay; 0 makes delays deterministic.
    """

    model_config = {"extra": "forbid", "frozen": True}

    max_concurrency: int = Field(default=3, ge=1)
    max_queue_size: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=10, ge=1, le=MAX_ATTEMPTS_CEILING)
    base_delay_ms: float = Field(default=30_000, ge=0)
    max_delay_ms: float = Field(default=120_000, ge=0)
    use_exponential_backoff: bool = True
    jitter_ratio: float = Field(default=0.2, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def _delay_bounds(self) -> QueueSettings:
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be greater than or equal to base_delay_ms")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> QueueSettings:
        """Build queue settings from environment variables.

        Reads VIERNES_MAX_CONCURRENCY, VIERNES_MAX_QUEUE_SIZE,
        MAX_RETRY_ATTEMPTS, RETRY_DELAY_MS, MAX_RETRY_DELAY_MS and
        EXPONENTIAL_BACKOFF. Keyword overrides win over the environment.

        Raises:
            ConfigurationError: If any value is missing its constraints.
        """
        environ = os.environ if environ is None else environ
        data: dict = _pick(
            environ,
            {
                "VIERNES_MAX_CONCURRENCY": "max_concurrency",
                "VIERNES_MAX_QUEUE_SIZE": "max_queue_size",
                "MAX_RETRY_ATTEMPTS": "max_attempts",
                "RETRY_DELAY_MS": "base_delay_ms",
                "MAX_RETRY_DELAY_MS": "max_delay_ms",
            },
        )
        if "EXPONENTIAL_BACKOFF" in environ:
            data["use_exponential_backoff"] = _env_bool(environ["EXPONENTIAL_BACKOFF"], True)
        data.update(overrides)
        return _validate(cls, data, "queue")  # type: ignore[return-value]


class ViernesSettings(BaseModel):
    """Credentials and polling settings for the Viernes simulation API."""

    model_config = {"extra": "forbid", "frozen": True}

    api_key: str | None = None
    base_url: str = DEFAULT_VIERNES_BASE_URL
    organization_id: int | None = None
    timeout_seconds: float = Field(default=180.0, gt=0)
    poll_interval_seconds: float = Field(default=3.0, ge=0)
    poll_max_attempts: int = Field(default=40, ge=1)
    queue: QueueSettings = Field(default_factory=QueueSettings)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ViernesSettings:
        environ = os.environ if environ is None else environ
        data: dict = _pick(
            environ,
            {
                "VIERNES_API_KEY": "api_key",
                "VIERNES_BASE_URL": "base_url",
                "VIERNES_ORGANIZATION_ID": "organization_id",
            },
        )
        data["queue"] = QueueSettings.from_env(environ)
        return _validate(cls, data, "Viernes")  # type: ignore[return-value]


class VapiSettings(BaseModel):
    """Credentials and LLM settings for the Vapi providers."""

    model_config = {"extra": "forbid", "frozen": True}

    api_key: str | None = None
    base_url: str = DEFAULT_VAPI_BASE_URL
    assistant_id: str | None = None
    generator_model: str = "gpt-4o"
    judge_model: str = "gpt-4o"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_conversation_tokens: int = Field(default=4000, gt=0)
    llm_adapter: str = "openai"
    use_chat_api: bool = False
    timeout_seconds: float = Field(default=60.0, gt=0)
    poll_interval_seconds: float = Field(default=3.0, ge=0)
    poll_timeout_seconds: float = Field(default=120.0, gt=0)
    cache_dir: str = ".parley/conversations"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> VapiSettings:
        environ = os.environ if environ is None else environ
        data: dict = _pick(
            environ,
            {
                "VAPI_API_KEY": "api_key",
                "VAPI_BASE_URL": "base_url",
                "VAPI_ASSISTANT_ID": "assistant_id",
                "VAPI_EVAL_GENERATOR_MODEL": "generator_model",
                "VAPI_EVAL_JUDGE_MODEL": "judge_model",
                "VAPI_EVAL_TEMPERATURE": "temperature",
                "VAPI_MAX_CONVERSATION_TOKENS": "max_conversation_tokens",
                "VAPI_LLM_ADAPTER": "llm_adapter",
            },
        )
        if "VAPI_USE_CHAT_API" in environ:
            data["use_chat_api"] = _env_bool(environ["VAPI_USE_CHAT_API"], False)
        return _validate(cls, data, "Vapi")  # type: ignore[return-value]


class ElevenLabsSettings(BaseModel):
    """Credentials for the ElevenLabs conversation simulation API."""

    model_config = {"extra": "forbid", "frozen": True}

    api_key: str | None = None
    base_url: str = DEFAULT_ELEVENLABS_BASE_URL
    timeout_seconds: float = Field(default=120.0, gt=0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ElevenLabsSettings:
        environ = os.environ if environ is None else environ
        data = _pick(
            environ,
            {"ELEVENLABS_API_KEY": "api_key", "ELEVENLABS_BASE_URL": "base_url"},
        )
        return _validate(cls, data, "ElevenLabs")  # type: ignore[return-value]


class ProjectConfig(BaseModel):
    """Project-level configuration loaded from parley.yaml."""

    model_config = {"extra": "forbid"}

    default_provider: Literal["elevenlabs", "vapi", "viernes"] = "elevenlabs"
    scenarios_dir: str = "tests"
    results_dir: str = ".parley/results"
    log_format: Literal["console", "json"] = "console"


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from start (default: cwd) looking for parley.yaml or .parley/.

    Args:
        start: Starting path (file or directory). Defaults to cwd.

    Returns:
        Path to the directory containing parley.yaml or .parley/,
        or cwd if neither is found.
    """
    current = (start or Path.cwd()).resolve()
    if current.is_file():
        current = current.parent
    while current != current.parent:
        if (current / "parley.yaml").exists() or (current / ".parley").exists():
            return current
        current = current.parent
    return Path.cwd()


def load_project_config(project_root: Path | None = None) -> ProjectConfig:
    """Load ProjectConfig from parley.yaml. Returns defaults if not found.

    Args:
        project_root: Path to the project root directory. If None,
            uses find_project_root() to locate it.

    Returns:
        Validated ProjectConfig instance.
    """
    if project_root is None:
        project_root = find_project_root()
    config_path = project_root / "parley.yaml"
    if not config_path.exists():
        return ProjectConfig()
    import yaml

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if raw is None:
        return ProjectConfig()
    return ProjectConfig.model_validate(raw)
