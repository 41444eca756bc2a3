"""Tests for parley.models.config - settings from the environment and project config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from parley.errors import ConfigurationError
from parley.models.config import (
    ProjectConfig,
    QueueSettings,
    VapiSettings,
    ViernesSettings,
    find_project_root,
    load_project_config,
)


class TestQueueSettings:
    """Test queue defaults and environment parsing."""

    def test_defaults(self):
        settings = QueueSettings.from_env({})
        assert settings.max_concurrency == 3
        assert settings.max_queue_size == 100
        assert settings.max_attempts == 10
        assert settings.base_delay_ms == 30_000
        assert settings.max_delay_ms == 120_000
        assert settings.use_exponential_backoff is True

    def test_environment_values(self):
        settings = QueueSettings.from_env(
            {
                "VIERNES_MAX_CONCURRENCY": "5",
                "MAX_RETRY_ATTEMPTS": "4",
                "RETRY_DELAY_MS": "1000",
                "MAX_RETRY_DELAY_MS": "2000",
                "EXPONENTIAL_BACKOFF": "false",
            }
        )
        assert settings.max_concurrency == 5
        assert settings.max_attempts == 4
        assert settings.base_delay_ms == 1000
        assert settings.use_exponential_backoff is False

    def test_overrides_win(self):
        settings = QueueSettings.from_env({"VIERNES_MAX_CONCURRENCY": "5"}, max_concurrency=1)
        assert settings.max_concurrency == 1

    def test_blank_values_ignored(self):
        assert QueueSettings.from_env({"VIERNES_MAX_CONCURRENCY": "  "}).max_concurrency == 3

    def test_invalid_values_raise_configuration_error(self):
        with pytest.raises(ConfigurationError, match="max_concurrency"):
            QueueSettings.from_env({"VIERNES_MAX_CONCURRENCY": "0"})
        with pytest.raises(ConfigurationError):
            QueueSettings.from_env({"MAX_RETRY_ATTEMPTS": "500"})

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(ValidationError):
            QueueSettings(base_delay_ms=5000, max_delay_ms=1000)

    def test_invalid_boolean(self):
        with pytest.raises(ConfigurationError, match="Invalid boolean value 'sometimes'"):
            QueueSettings.from_env({"EXPONENTIAL_BACKOFF": "sometimes"})


class TestProviderSettings:
    """Test provider settings from the environment."""

    def test_viernes(self):
        settings = ViernesSettings.from_env(
            {"VIERNES_API_KEY": "vk", "VIERNES_ORGANIZATION_ID": "12", "RETRY_DELAY_MS": "10"}
        )
        assert settings.api_key == "vk"
        assert settings.organization_id == 12
        assert settings.queue.base_delay_ms == 10

    def test_vapi(self):
        settings = VapiSettings.from_env(
            {
                "VAPI_API_KEY": "pk",
                "VAPI_EVAL_JUDGE_MODEL": "gpt-4o-mini",
                "VAPI_EVAL_TEMPERATURE": "0.5",
                "VAPI_USE_CHAT_API": "yes",
            }
        )
        assert settings.api_key == "pk"
        assert settings.judge_model == "gpt-4o-mini"
        assert settings.generator_model == "gpt-4o"
        assert settings.temperature == 0.5
        assert settings.use_chat_api is True

    def test_settings_are_frozen(self):
        settings = VapiSettings()
        with pytest.raises(ValidationError):
            settings.api_key = "x"


class TestProjectConfig:
    """Test parley.yaml discovery and loading."""

    def test_find_project_root_walks_up(self, tmp_path):
        (tmp_path / "parley.yaml").write_text("default_provider: vapi\n", encoding="utf-8")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()

    def test_load_project_config(self, tmp_path):
        (tmp_path / "parley.yaml").write_text(
            "default_provider: viernes\nresults_dir: out\n", encoding="utf-8"
        )
        config = load_project_config(tmp_path)
        assert config.default_provider == "viernes"
        assert config.results_dir == "out"
        assert config.log_format == "console"

    def test_missing_or_empty_file_gives_defaults(self, tmp_path):
        assert load_project_config(tmp_path) == ProjectConfig()
        (tmp_path / "parley.yaml").write_text("", encoding="utf-8")
        assert load_project_config(tmp_path) == ProjectConfig()

    def test_unknown_provider_rejected(self, tmp_path):
        (tmp_path / "parley.yaml").write_text("default_provider: twilio\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_project_config(tmp_path)
