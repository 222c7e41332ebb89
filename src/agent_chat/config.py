"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly and helpful AI assistant. Be warm, approachable, and genuinely "
    "eager to help users. Only provide information you're certain about, and honestly "
    "acknowledge when you don't have specific information available."
)

_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


class ChatbotDefaults(BaseModel):
    """Values applied to chatbot columns that are NULL in storage."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    model: str = "claude-sonnet-4-20250514"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = 2048


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class StorageConfig(BaseModel):
    db_path: str = "./data/agent_chat.db"


class CacheConfig(BaseModel):
    ttl_seconds: float = 300.0


class RunnerConfig(BaseModel):
    history_limit: int = 50  # most recent events sent to the model per turn


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3001
    internal_api_token: Optional[str] = None
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("internal_api_token")
    @classmethod
    def _unset_placeholder(cls, value: Optional[str]) -> Optional[str]:
        # "${INTERNAL_API_TOKEN}" survives interpolation when the variable is unset
        if not value or _ENV_VAR_PATTERN.fullmatch(value):
            return None
        return value


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    defaults: ChatbotDefaults = Field(default_factory=ChatbotDefaults)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    anthropic: Optional[AnthropicConfig] = None
    server: ServerConfig = Field(default_factory=ServerConfig)


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


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
