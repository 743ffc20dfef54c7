"""
Configuration module for the context selection engine.
Manages environment variables and settings.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class SelectionConfig:
    """Context selection configuration."""
    trim_strategy: str = field(
        default_factory=lambda: os.getenv("TRIM_STRATEGY", "relevance_descending")
    )
    max_prompt_tokens: int = field(default_factory=lambda: _env_int("MAX_PROMPT_TOKENS", 3000))
    reserve_output_tokens: int = field(
        default_factory=lambda: _env_int("RESERVE_OUTPUT_TOKENS", 512)
    )
    max_chunks: int = field(default_factory=lambda: _env_int("MAX_CHUNKS", 20))
    oracle_failure_policy: str = field(
        default_factory=lambda: os.getenv("ORACLE_FAILURE_POLICY", "conservative")
    )
    oracle_retry_attempts: int = field(
        default_factory=lambda: _env_int("ORACLE_RETRY_ATTEMPTS", 1)
    )


@dataclass
class VertexConfig:
    """Vertex AI REST configuration. The access token is minted elsewhere."""
    project_id: str = field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "global"))
    access_token: str = field(default_factory=lambda: os.getenv("VERTEX_ACCESS_TOKEN", ""))
    timeout: float = field(default_factory=lambda: float(os.getenv("VERTEX_TIMEOUT", "30")))


@dataclass
class OpenAIConfig:
    """OpenAI configuration for generation."""
    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    timeout: float = field(default_factory=lambda: float(os.getenv("OPENAI_TIMEOUT", "30")))
    encoding_name: str = "cl100k_base"


@dataclass
class Settings:
    """Main application settings loaded from environment."""

    # "vertex" or "openai"
    ORACLE_PROVIDER: str = field(default_factory=lambda: os.getenv("ORACLE_PROVIDER", "vertex"))
    GENERATION_MODEL: str = field(
        default_factory=lambda: os.getenv("GENERATION_MODEL", "gemini-2.0-flash")
    )
    COUNT_TOKENS_MODEL: Optional[str] = field(
        default_factory=lambda: os.getenv("COUNT_TOKENS_MODEL")
    )

    # Application settings
    DEBUG: bool = field(default_factory=lambda: _env_bool("DEBUG", False))
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    EMIT_METRICS: bool = field(default_factory=lambda: _env_bool("EMIT_METRICS", True))
    METRICS_NAMESPACE: Optional[str] = field(
        default_factory=lambda: os.getenv("METRICS_NAMESPACE")
    )

    # Nested configs
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    vertex: VertexConfig = field(default_factory=VertexConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
