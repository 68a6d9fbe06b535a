"""Configuration management for the hybrid conversation memory.

Loads settings from YAML config file with Pydantic validation.
Config file location: ~/.hybrid_memory/config.yaml
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field


# === Default paths ===

def get_home() -> Path:
    """Get the data directory (~/.hybrid_memory)."""
    return Path(os.environ.get("HYBRID_MEMORY_HOME", Path.home() / ".hybrid_memory"))


# === Configuration Models ===


class MemoryConfig(BaseModel):
    """In-memory buffer limits and batch-save behaviour."""

    max_size_bytes: int = Field(default=1 * 1024 * 1024, gt=0)  # pruning trigger
    max_message_count: int = Field(default=300, gt=0)
    batch_save_delay_ms: int = Field(default=2000, ge=0)  # debounce window
    max_batch_size: int = Field(default=10, gt=0)  # markers before a forced save
    context_max_bytes: int = Field(default=1 * 1024 * 1024, gt=0)
    default_session_id: str = "default-session"
    write_through: bool = False  # flush after every add, bypassing the debounce


class StoreConfig(BaseModel):
    """Durable store (SQLite) configuration."""

    enabled: bool = False  # memory-only unless turned on
    db_path: str | None = None  # defaults to ~/.hybrid_memory/conversations.db
    connect_timeout: float = Field(default=5.0, gt=0)  # seconds
    max_retries: int = Field(default=3, ge=0)  # retries beyond the first attempt
    retry_base_delay_ms: int = Field(default=300, ge=0)  # doubled per retry

    def resolve_db_path(self) -> Path:
        """Resolve the database path, falling back to the data directory."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return get_home() / "conversations.db"


class EmbeddingConfig(BaseModel):
    """Optional embedding model used for vector relevance scoring."""

    enabled: bool = False
    model: str = "gemini/text-embedding-004"  # any LiteLLM embedding model id
    api_key_env: str | None = "GEMINI_API_KEY"  # Environment variable name for API key
    timeout: float = Field(default=10.0, gt=0)  # seconds per embed call
    cache_size: int = Field(default=512, ge=0)

    def get_api_key(self) -> str | None:
        """Resolve API key from env var."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


class LoggingConfig(BaseModel):
    """Structured logging configuration."""

    level: str = "INFO"


class HybridMemoryConfig(BaseModel):
    """Root configuration."""

    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# === Config Loading ===


def load_config(config_path: Path | None = None) -> HybridMemoryConfig:
    """Load configuration from YAML file.

    Falls back to defaults if the config file doesn't exist.
    """
    if config_path is None:
        config_path = get_home() / "config.yaml"

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return HybridMemoryConfig(**raw)
    return HybridMemoryConfig()


def save_default_config(config_path: Path | None = None) -> Path:
    """Save the default configuration to a YAML file.

    Creates parent directories if needed. Returns the path.
    """
    if config_path is None:
        config_path = get_home() / "config.yaml"

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config = HybridMemoryConfig()
    data = config.model_dump()

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    return config_path
