"""Tests for YAML configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from hybrid_memory.config import (
    HybridMemoryConfig,
    StoreConfig,
    EmbeddingConfig,
    get_home,
    load_config,
    save_default_config,
)


class TestDefaults:
    def test_defaults(self):
        config = HybridMemoryConfig()
        assert config.memory.max_size_bytes == 1024 * 1024
        assert config.memory.max_message_count == 300
        assert config.memory.batch_save_delay_ms == 2000
        assert config.memory.max_batch_size == 10
        assert config.memory.write_through is False
        assert config.store.enabled is False
        assert config.store.max_retries == 3
        assert config.store.retry_base_delay_ms == 300
        assert config.store.connect_timeout == 5.0
        assert config.embedding.enabled is False
        assert config.logging.level == "INFO"

    def test_invalid_limits_rejected(self):
        with pytest.raises(ValidationError):
            HybridMemoryConfig(memory={"max_message_count": 0})
        with pytest.raises(ValidationError):
            HybridMemoryConfig(store={"max_retries": -1})


class TestPaths:
    def test_home_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HYBRID_MEMORY_HOME", str(tmp_path))
        assert get_home() == tmp_path
        assert StoreConfig().resolve_db_path() == tmp_path / "conversations.db"

    def test_explicit_db_path(self, tmp_path):
        config = StoreConfig(db_path=str(tmp_path / "custom.db"))
        assert config.resolve_db_path() == tmp_path / "custom.db"

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("MY_EMBED_KEY", "secret")
        assert EmbeddingConfig(api_key_env="MY_EMBED_KEY").get_api_key() == "secret"
        assert EmbeddingConfig(api_key_env=None).get_api_key() is None


class TestLoading:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert config == HybridMemoryConfig()

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == HybridMemoryConfig()

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "memory": {"max_message_count": 50, "write_through": True},
            "store": {"enabled": True, "db_path": "/tmp/x.db"},
            "logging": {"level": "DEBUG"},
        }))

        config = load_config(path)
        assert config.memory.max_message_count == 50
        assert config.memory.write_through is True
        assert config.memory.max_batch_size == 10
        assert config.store.enabled is True
        assert config.store.resolve_db_path() == Path("/tmp/x.db")
        assert config.logging.level == "DEBUG"

    def test_save_default_then_load(self, tmp_path):
        path = save_default_config(tmp_path / "nested" / "config.yaml")
        assert path.exists()
        assert load_config(path) == HybridMemoryConfig()
