"""
Configuration Management for Obelisk

Loads configuration from ~/.obelisk/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("obelisk.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".obelisk"
CONFIG_PATH = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = CONFIG_DIR / "obelisk.db"


@dataclass
class DatabaseConfig:
    """SQLite store configuration"""
    path: str = str(DEFAULT_DB_PATH)


@dataclass
class EmbeddingConfig:
    """Embedding provider and batch coordinator configuration"""
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    openai_api_key: str = ""
    batch_size: int = 10
    batch_timeout: float = 2.0  # seconds before a partial batch is drained
    max_concurrency: int = 2  # concurrent batches
    await_timeout: float = 30.0
    result_ttl: float = 60.0  # unclaimed results expire after this


@dataclass
class LLMConfig:
    """Chat-completion provider configuration"""
    provider: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-sonnet-20241022"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    temperature: float = 0.2
    max_tokens: int = 4000
    timeout: float = 60.0


@dataclass
class MemoryConfig:
    """Chunking configuration"""
    chunk_size: int = 1000
    chunk_overlap: int = 100


@dataclass
class RetrievalConfig:
    """Retrieval defaults for direct callers"""
    default_k: int = 8
    threshold: float = 0.7


@dataclass
class ChatConfig:
    """RAG turn defaults"""
    model: str = ""  # empty: provider's own default
    retrieval_k: int = 5
    retrieval_threshold: float = 0.7
    max_history: int = 10
    include_global_memories: bool = True


@dataclass
class ObeliskConfig:
    """Main Obelisk configuration"""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_database_config(data: dict) -> DatabaseConfig:
    """Parse database section from config dict"""
    database_data = data.get("database", {})
    return DatabaseConfig(
        path=database_data.get("path", str(DEFAULT_DB_PATH)),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        provider=embedding_data.get("provider", "openai"),
        model=embedding_data.get("model", "text-embedding-3-small"),
        openai_api_key=embedding_data.get("openai_api_key", ""),
        batch_size=embedding_data.get("batch_size", 10),
        batch_timeout=embedding_data.get("batch_timeout", 2.0),
        max_concurrency=embedding_data.get("max_concurrency", 2),
        await_timeout=embedding_data.get("await_timeout", 30.0),
        result_ttl=embedding_data.get("result_ttl", 60.0),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "openai"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-3-5-sonnet-20241022"),
        ollama_base_url=llm_data.get("ollama_base_url", "http://localhost:11434"),
        ollama_model=llm_data.get("ollama_model", "llama3.2"),
        temperature=llm_data.get("temperature", 0.2),
        max_tokens=llm_data.get("max_tokens", 4000),
        timeout=llm_data.get("timeout", 60.0),
    )


def _parse_memory_config(data: dict) -> MemoryConfig:
    """Parse memory section from config dict"""
    memory_data = data.get("memory", {})
    return MemoryConfig(
        chunk_size=memory_data.get("chunk_size", 1000),
        chunk_overlap=memory_data.get("chunk_overlap", 100),
    )


def _parse_retrieval_config(data: dict) -> RetrievalConfig:
    """Parse retrieval section from config dict"""
    retrieval_data = data.get("retrieval", {})
    return RetrievalConfig(
        default_k=retrieval_data.get("default_k", 8),
        threshold=retrieval_data.get("threshold", 0.7),
    )


def _parse_chat_config(data: dict) -> ChatConfig:
    """Parse chat section from config dict"""
    chat_data = data.get("chat", {})
    return ChatConfig(
        model=chat_data.get("model", ""),
        retrieval_k=chat_data.get("retrieval_k", 5),
        retrieval_threshold=chat_data.get("retrieval_threshold", 0.7),
        max_history=chat_data.get("max_history", 10),
        include_global_memories=chat_data.get("include_global_memories", True),
    )


def load_config() -> ObeliskConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.obelisk/config.json)
    3. Default values
    """
    config = ObeliskConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.database = _parse_database_config(data)
            config.embedding = _parse_embedding_config(data)
            config.llm = _parse_llm_config(data)
            config.memory = _parse_memory_config(data)
            config.retrieval = _parse_retrieval_config(data)
            config.chat = _parse_chat_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    if os.getenv("OBELISK_DB_PATH"):
        config.database.path = os.getenv("OBELISK_DB_PATH")
    if os.getenv("EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("EMBEDDING_MODEL")
    if os.getenv("OPENAI_API_KEY"):
        config.embedding.openai_api_key = os.getenv("OPENAI_API_KEY")
        config._env_sourced_keys.add("embedding.openai_api_key")

    # LLM env var overrides (target config.llm, track env-sourced keys)
    _env_llm_map = {
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OLLAMA_BASE_URL": "ollama_base_url",
        "OLLAMA_MODEL": "ollama_model",
        "LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(f"llm.{attr}")

    return config


def save_config(config: ObeliskConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "ollama_base_url": config.llm.ollama_base_url,
        "ollama_model": config.llm.ollama_model,
        "temperature": config.llm.temperature,
        "max_tokens": config.llm.max_tokens,
        "timeout": config.llm.timeout,
    }
    for key in ("openai_api_key", "anthropic_api_key"):
        if f"llm.{key}" in env_sourced:
            llm_section[key] = ""

    embedding_section = {
        "provider": config.embedding.provider,
        "model": config.embedding.model,
        "openai_api_key": config.embedding.openai_api_key,
        "batch_size": config.embedding.batch_size,
        "batch_timeout": config.embedding.batch_timeout,
        "max_concurrency": config.embedding.max_concurrency,
        "await_timeout": config.embedding.await_timeout,
        "result_ttl": config.embedding.result_ttl,
    }
    if "embedding.openai_api_key" in env_sourced:
        embedding_section["openai_api_key"] = ""

    data = {
        "database": {
            "path": config.database.path,
        },
        "embedding": embedding_section,
        "llm": llm_section,
        "memory": {
            "chunk_size": config.memory.chunk_size,
            "chunk_overlap": config.memory.chunk_overlap,
        },
        "retrieval": {
            "default_k": config.retrieval.default_k,
            "threshold": config.retrieval.threshold,
        },
        "chat": {
            "model": config.chat.model,
            "retrieval_k": config.chat.retrieval_k,
            "retrieval_threshold": config.chat.retrieval_threshold,
            "max_history": config.chat.max_history,
            "include_global_memories": config.chat.include_global_memories,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
