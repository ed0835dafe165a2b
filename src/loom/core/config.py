"""
Loom Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ProviderConfig:
    """Upstream LLM credentials and endpoints."""

    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""
    cerebras_api_key: str = ""
    mistral_api_key: str = ""
    ollama_url: str = "http://localhost:11434"
    cerebras_base_url: str = "https://api.cerebras.ai/v1"
    mistral_base_url: str = "https://api.mistral.ai/v1"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    request_timeout: float = 120.0

    @classmethod
    def from_env(cls) -> ProviderConfig:
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            google_api_key=os.getenv("GOOGLE_API_KEY", ""),
            cerebras_api_key=os.getenv("CEREBRAS_API_KEY", ""),
            mistral_api_key=os.getenv("MISTRAL_API_KEY", ""),
            ollama_url=os.getenv("LOOM_OLLAMA_URL", "http://localhost:11434"),
            cerebras_base_url=os.getenv(
                "LOOM_CEREBRAS_BASE_URL", "https://api.cerebras.ai/v1"
            ),
            mistral_base_url=os.getenv(
                "LOOM_MISTRAL_BASE_URL", "https://api.mistral.ai/v1"
            ),
            google_base_url=os.getenv(
                "LOOM_GOOGLE_BASE_URL",
                "https://generativelanguage.googleapis.com/v1beta",
            ),
            request_timeout=float(os.getenv("LOOM_PROVIDER_TIMEOUT", "120.0")),
        )


@dataclass(frozen=True)
class TurnConfig:
    """Limits for one user-message-to-assistant-message cycle."""

    max_tool_recursion_depth: int = 10
    max_calls_per_tool: int = 3
    stream_timeout: float = 300.0  # seconds, wall clock for the whole turn
    max_output_tokens: int = 8192
    reasoning_max_output_tokens: int = 16384

    @classmethod
    def from_env(cls) -> TurnConfig:
        return cls(
            max_tool_recursion_depth=int(os.getenv("LOOM_MAX_TOOL_DEPTH", "10")),
            max_calls_per_tool=int(os.getenv("LOOM_MAX_CALLS_PER_TOOL", "3")),
            stream_timeout=float(os.getenv("LOOM_STREAM_TIMEOUT", "300.0")),
            max_output_tokens=int(os.getenv("LOOM_MAX_OUTPUT_TOKENS", "8192")),
            reasoning_max_output_tokens=int(
                os.getenv("LOOM_REASONING_MAX_OUTPUT_TOKENS", "16384")
            ),
        )


@dataclass(frozen=True)
class ToolConfig:
    """Tool execution retry and timeout policy."""

    search_retries: int = 2
    retry_delay_base: float = 0.5  # seconds, doubles each attempt
    passthrough_timeout: float = 60.0
    artifacts_enabled: bool = True

    @classmethod
    def from_env(cls) -> ToolConfig:
        return cls(
            search_retries=int(os.getenv("LOOM_SEARCH_RETRIES", "2")),
            retry_delay_base=float(os.getenv("LOOM_RETRY_DELAY_BASE", "0.5")),
            passthrough_timeout=float(os.getenv("LOOM_TOOL_TIMEOUT", "60.0")),
            artifacts_enabled=_env_bool("LOOM_ARTIFACTS_ENABLED", True),
        )


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("LOOM_HOST", "0.0.0.0"),
            port=int(os.getenv("LOOM_PORT", "8000")),
        )


@dataclass(frozen=True)
class LoomConfig:
    """Root configuration — one object for everything."""

    providers: ProviderConfig = field(default_factory=ProviderConfig)
    turn: TurnConfig = field(default_factory=TurnConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> LoomConfig:
        return cls(
            providers=ProviderConfig.from_env(),
            turn=TurnConfig.from_env(),
            tools=ToolConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Singleton: import this wherever you need config
config = LoomConfig.from_env()


def reload_config() -> LoomConfig:
    """Re-read the environment and replace the module-level singleton."""
    global config
    config = LoomConfig.from_env()
    return config
