"""Configuration management for Chatline.

Loads settings from YAML config file with Pydantic validation.
Config file location: ~/.chatline/config.yaml
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


# === Default paths ===

def get_chatline_home() -> Path:
    """Get the Chatline data directory (~/.chatline)."""
    return Path(os.environ.get("CHATLINE_HOME", Path.home() / ".chatline"))


# === Configuration Models ===


class ProviderConfig(BaseModel):
    """Configuration for a single LLM provider."""

    api_key_env: str | None = None  # Environment variable name for API key
    api_key: str | None = None  # Direct API key (not recommended)
    base_url: str | None = None  # Custom base URL (e.g., for Ollama)

    def get_api_key(self) -> str | None:
        """Resolve API key from env var or direct value."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return self.api_key


class ModelsConfig(BaseModel):
    """Completion provider configuration."""

    default: str = "openai/gpt-3.5-turbo"
    fallback_chain: list[str] = Field(default_factory=list)
    providers: dict[str, ProviderConfig] = Field(default_factory=lambda: {
        "openai": ProviderConfig(api_key_env="OPENAI_API_KEY"),
        "anthropic": ProviderConfig(api_key_env="ANTHROPIC_API_KEY"),
        "ollama": ProviderConfig(base_url="http://localhost:11434"),
    })
    temperature: float = 0.7
    max_tokens: int = 2000


class ContextConfig(BaseModel):
    """Outbound context window policy."""

    max_tokens: int = 4000
    max_messages: int = 30  # Non-system turns
    keep_recent: int = 10
    chars_per_token: int = 4
    message_overhead: int = 10  # Role/metadata framing per turn
    summarize_ratio: float = 0.8
    tokenizer: str = "approx"  # approx | model


class ValidationConfig(BaseModel):
    """User input validation limits."""

    max_length: int = 10_000


class SessionConfig(BaseModel):
    """In-memory session store and reaper settings."""

    system_prompt: str = (
        "You are a helpful AI assistant. Be concise, friendly, and informative "
        "in your responses. Keep your answers clear and well-structured."
    )
    idle_timeout_hours: float = 24
    sweep_interval_minutes: float = 60
    persist: bool = False  # Write-through to SQLite history
    db_path: str | None = None  # Defaults to ~/.chatline/history.db


class WebUIConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = 3001
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class ChatlineConfig(BaseModel):
    """Root configuration for Chatline."""

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    web_ui: WebUIConfig = Field(default_factory=WebUIConfig)


# === Config Loading ===


def load_config(config_path: Path | None = None) -> ChatlineConfig:
    """Load configuration from YAML file.

    Falls back to defaults if the config file doesn't exist.
    """
    if config_path is None:
        config_path = get_chatline_home() / "config.yaml"

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return ChatlineConfig(**raw)

    return ChatlineConfig()


def save_default_config(config_path: Path | None = None) -> Path:
    """Save the default configuration to a YAML file.

    Creates parent directories if needed. Returns the path.
    """
    if config_path is None:
        config_path = get_chatline_home() / "config.yaml"

    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = ChatlineConfig().model_dump()

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    return config_path
