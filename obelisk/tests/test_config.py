"""Tests for configuration loading, env overrides and persistence."""

import json
import os
import stat
import pytest
from unittest.mock import patch


class TestDefaults:
    def test_llm_config_defaults(self):
        from obelisk.common.config import LLMConfig
        cfg = LLMConfig()
        assert cfg.provider == "openai"
        assert cfg.openai_model == "gpt-4o-mini"
        assert cfg.anthropic_model == "claude-3-5-sonnet-20241022"
        assert cfg.ollama_base_url == "http://localhost:11434"
        assert cfg.ollama_model == "llama3.2"
        assert cfg.temperature == 0.2
        assert cfg.max_tokens == 4000

    def test_embedding_config_defaults(self):
        from obelisk.common.config import EmbeddingConfig
        cfg = EmbeddingConfig()
        assert cfg.model == "text-embedding-3-small"
        assert cfg.batch_size == 10
        assert cfg.batch_timeout == 2.0
        assert cfg.max_concurrency == 2
        assert cfg.await_timeout == 30.0

    def test_retrieval_and_chat_defaults(self):
        from obelisk.common.config import ChatConfig, MemoryConfig, RetrievalConfig
        assert RetrievalConfig().default_k == 8
        assert RetrievalConfig().threshold == 0.7
        assert ChatConfig().retrieval_k == 5
        assert ChatConfig().max_history == 10
        assert MemoryConfig().chunk_size == 1000
        assert MemoryConfig().chunk_overlap == 100


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        from obelisk.common.config import load_config
        with patch("obelisk.common.config.CONFIG_PATH", tmp_path / "absent.json"), \
             patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        assert cfg.llm.provider == "openai"
        assert cfg.retrieval.default_k == 8
        assert cfg._env_sourced_keys == set()

    def test_file_sections_are_read(self, tmp_path):
        from obelisk.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "llm": {"provider": "ollama", "ollama_model": "mistral"},
            "embedding": {"batch_size": 4},
            "memory": {"chunk_size": 500, "chunk_overlap": 50},
            "chat": {"max_history": 3},
        }))
        with patch("obelisk.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        assert cfg.llm.provider == "ollama"
        assert cfg.llm.ollama_model == "mistral"
        assert cfg.embedding.batch_size == 4
        assert cfg.memory.chunk_size == 500
        assert cfg.chat.max_history == 3

    def test_invalid_json_logs_warning(self, tmp_path, caplog):
        import logging
        from obelisk.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")
        with patch("obelisk.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {}, clear=True), \
             caplog.at_level(logging.WARNING, logger="obelisk.common.config"):
            cfg = load_config()
        assert cfg.llm.provider == "openai"
        assert "Failed to load config file" in caplog.text

    def test_env_var_overrides(self, tmp_path):
        from obelisk.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"llm": {"provider": "anthropic"}}))
        env = {
            "LLM_PROVIDER": "ollama",
            "OPENAI_API_KEY": "sk-env",
            "OLLAMA_BASE_URL": "http://gpu-box:11434",
            "OBELISK_DB_PATH": str(tmp_path / "x.db"),
        }
        with patch("obelisk.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        assert cfg.llm.provider == "ollama"
        assert cfg.llm.openai_api_key == "sk-env"
        assert cfg.embedding.openai_api_key == "sk-env"
        assert cfg.llm.ollama_base_url == "http://gpu-box:11434"
        assert cfg.database.path == str(tmp_path / "x.db")
        assert "llm.openai_api_key" in cfg._env_sourced_keys
        assert "embedding.openai_api_key" in cfg._env_sourced_keys


class TestSaveConfig:
    def test_save_config_omits_env_keys(self, tmp_path):
        from obelisk.common.config import load_config, save_config
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"llm": {"anthropic_api_key": "sk-ant-file"}}))

        with patch("obelisk.common.config.CONFIG_PATH", config_file), \
             patch("obelisk.common.config.CONFIG_DIR", tmp_path), \
             patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env"}, clear=True):
            cfg = load_config()
            save_config(cfg)

        saved = json.loads(config_file.read_text())
        assert saved["llm"]["openai_api_key"] == ""
        assert saved["embedding"]["openai_api_key"] == ""
        assert saved["llm"]["anthropic_api_key"] == "sk-ant-file"

    def test_saved_file_is_private(self, tmp_path):
        from obelisk.common.config import ObeliskConfig, save_config
        config_file = tmp_path / "config.json"
        with patch("obelisk.common.config.CONFIG_PATH", config_file), \
             patch("obelisk.common.config.CONFIG_DIR", tmp_path):
            save_config(ObeliskConfig())
        mode = stat.S_IMODE(config_file.stat().st_mode)
        assert mode == 0o600
