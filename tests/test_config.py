"""Tests for configuration loading."""

import os

import pytest
from pydantic import ValidationError

from sitepilot.config import load_config, parse_config
from sitepilot.errors import ConfigError


class TestParseConfig:
    def test_empty_document_uses_defaults(self):
        config = parse_config("")

        assert config.model.name == "gpt-4o-mini"
        assert config.model.fallback is None
        assert config.provider_order == ["openai", "anthropic"]
        assert config.classifier.confidence_threshold == 0.5
        assert config.dispatcher.max_concurrency is None
        assert config.deployment.poll_timeout == 150.0
        assert config.sync.heartbeat_interval == 30.0

    def test_env_interpolation_and_data_dir_reference(self, monkeypatch):
        monkeypatch.setenv("SITEPILOT_TEST_KEY", "sk-test")
        config = parse_config(
            """
data_dir: /tmp/sitepilot
openai:
  api_key: ${SITEPILOT_TEST_KEY}
storage:
  db_path: ${data_dir}/sitepilot.db
model:
  name: gpt-4o-mini
  fallback:
    name: claude-3-5-haiku-latest
    temperature: 0.3
"""
        )

        assert config.openai.api_key == "sk-test"
        assert config.storage.db_path == "/tmp/sitepilot/sitepilot.db"
        assert config.model.fallback.name == "claude-3-5-haiku-latest"

    def test_unset_variable_is_left_verbatim(self, monkeypatch):
        monkeypatch.delenv("SITEPILOT_UNSET_TOKEN", raising=False)
        config = parse_config("deployment:\n  api_token: ${SITEPILOT_UNSET_TOKEN}\n")
        assert config.deployment.api_token == "${SITEPILOT_UNSET_TOKEN}"

    @pytest.mark.parametrize(
        "document",
        [
            "classifier:\n  confidence_threshold: 1.5\n",
            "dispatcher:\n  max_concurrency: 0\n",
            "workers:\n  frontend:\n    timeout: 10\n",
            "model:\n  timeout: soon\n",
        ],
    )
    def test_invalid_values_raise_config_error(self, document):
        with pytest.raises(ConfigError) as info:
            parse_config(document)
        assert info.value.details["errors"]

    def test_config_is_frozen(self):
        config = parse_config("")
        with pytest.raises(ValidationError):
            config.model.name = "other"


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml", tmp_path / ".env")

    def test_reads_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SITEPILOT_DOTENV_TOKEN", raising=False)
        (tmp_path / ".env").write_text("SITEPILOT_DOTENV_TOKEN=vercel-secret\n", encoding="utf-8")
        (tmp_path / "config.yaml").write_text(
            "deployment:\n  api_token: ${SITEPILOT_DOTENV_TOKEN}\n  main_domain: example.app\n", encoding="utf-8"
        )
        try:
            config = load_config(tmp_path / "config.yaml", tmp_path / ".env")
        finally:
            os.environ.pop("SITEPILOT_DOTENV_TOKEN", None)

        assert config.deployment.api_token == "vercel-secret"
        assert config.deployment.main_domain == "example.app"
