"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation.

The loaded ``AppConfig`` is frozen: it is read once at startup and every
component receives the typed models, never the raw YAML.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sitepilot.errors import ConfigError


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class FallbackModelConfig(_Frozen):
    name: str
    temperature: float = 0.5


class ModelConfig(_Frozen):
    name: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: float = 60.0  # seconds, applied to every provider call
    fallback: Optional[FallbackModelConfig] = None


class AnthropicConfig(_Frozen):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 0  # the gateway owns retry policy
    timeout: int = 120
    model_patterns: list[str] = Field(default_factory=lambda: ["claude-*"])
    cost_per_1k_tokens: float = 0.003


class OpenAIConfig(_Frozen):
    api_key: str
    base_url: Optional[str] = None
    organization: Optional[str] = None
    max_retries: int = 0
    timeout: int = 120
    model_patterns: list[str] = Field(default_factory=lambda: ["gpt-*", "o1*", "o3*", "o4*"])
    cost_per_1k_tokens: float = 0.002


class ClassifierConfig(_Frozen):
    use_model: bool = True
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    history_window: int = 6
    temperature: float = 0.2
    max_tokens: int = 400


class DispatcherConfig(_Frozen):
    max_concurrency: Optional[int] = Field(default=None, ge=1)
    task_timeout: Optional[float] = None


class WorkerEndpointConfig(_Frozen):
    url: str
    timeout: float = 120.0
    headers: dict[str, str] = Field(default_factory=dict)


class WorkersConfig(_Frozen):
    frontend: Optional[WorkerEndpointConfig] = None
    backend: Optional[WorkerEndpointConfig] = None


class DeploymentConfig(_Frozen):
    enabled: bool = True
    provider: str = "vercel"
    api_token: Optional[str] = None
    team_id: Optional[str] = None
    base_url: str = "https://api.vercel.com"
    main_domain: Optional[str] = None
    framework: str = "vite"
    build_command: str = "npm run build"
    output_directory: str = "dist"
    poll_interval: float = 5.0
    poll_timeout: float = 150.0
    request_timeout: float = 30.0


class StorageConfig(_Frozen):
    db_path: str = "./data/sitepilot.db"


class SyncConfig(_Frozen):
    heartbeat_interval: float = 30.0


class AppConfig(_Frozen):
    log_level: str = "INFO"
    log_json: bool = False
    debug: bool = False
    data_dir: str = "./data"
    model: ModelConfig = Field(default_factory=ModelConfig)
    anthropic: Optional[AnthropicConfig] = None
    openai: Optional[OpenAIConfig] = None
    provider_order: list[str] = Field(default_factory=lambda: ["openai", "anthropic"])
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def parse_config(raw_text: str) -> AppConfig:
    """Interpolate and validate a YAML document."""
    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError("Invalid configuration", {"errors": e.errors(include_url=False)}) from e


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return parse_config(config_file.read_text(encoding="utf-8"))
