"""
Obelisk application wiring

create_app() builds the store, embedding provider, batch coordinator, LLM
router and the services on top of them. Call close() on shutdown so queued
embedding jobs are drained.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

from .common.config import ObeliskConfig, load_config
from .common.database import Database
from .chat.chat import Chat
from .embeddings.coordinator import EmbeddingBatchCoordinator
from .embeddings.providers import EmbeddingProvider, create_embedding_provider, embedding_dimensions
from .embeddings.service import EmbeddingService
from .llm.base import ChatProvider
from .llm.router import LLMRouter
from .memory.memory_store import MemoryStore
from .retrieval.retriever import Retriever

logger = logging.getLogger("obelisk.app")


@dataclass
class ObeliskApp:
    """Wired component graph"""
    config: ObeliskConfig
    database: Database
    embeddings: EmbeddingService
    retriever: Retriever
    memory: MemoryStore
    router: LLMRouter
    chat: Chat

    async def close(self) -> None:
        """Drain the embedding queue, then release clients and the store"""
        await self.embeddings.close()
        await self.router.aclose()
        self.database.close()
        logger.info("Obelisk shut down")


def create_app(
    config: Optional[ObeliskConfig] = None,
    *,
    database: Optional[Database] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
    embedding_dimension: Optional[int] = None,
    chat_providers: Optional[Dict[str, ChatProvider]] = None,
) -> ObeliskApp:
    """
    Build an ObeliskApp.

    Args:
        config: Configuration (loaded from .env, ~/.obelisk/config.json and
            the environment when None)
        database: Pre-built store (opened from config.database.path when None)
        embedding_provider: Embedding backend (built from config.embedding.provider when None)
        embedding_dimension: Vector dimension (derived from the model when None)
        chat_providers: Name -> provider registry (builtin providers when None)
    """
    if config is None:
        load_dotenv()
        config = load_config()

    emb_cfg = config.embedding
    dimension = embedding_dimension or embedding_dimensions(emb_cfg.model)
    if embedding_provider is None:
        embedding_provider = create_embedding_provider(
            emb_cfg.provider, api_key=emb_cfg.openai_api_key, model=emb_cfg.model
        )

    if database is None:
        database = Database(config.database.path, dimension=dimension)

    coordinator = EmbeddingBatchCoordinator(
        embedding_provider,
        writer=database,
        model=emb_cfg.model,
        batch_size=emb_cfg.batch_size,
        batch_timeout=emb_cfg.batch_timeout,
        max_concurrency=emb_cfg.max_concurrency,
        result_ttl=emb_cfg.result_ttl,
    )
    embeddings = EmbeddingService(
        embedding_provider,
        coordinator,
        model=emb_cfg.model,
        await_timeout=emb_cfg.await_timeout,
        dimensions=dimension,
    )

    retriever = Retriever(
        database,
        embeddings,
        default_k=config.retrieval.default_k,
        default_threshold=config.retrieval.threshold,
    )
    memory = MemoryStore(
        database,
        embeddings,
        chunk_size=config.memory.chunk_size,
        chunk_overlap=config.memory.chunk_overlap,
    )

    if chat_providers is None:
        router = LLMRouter.from_config(config.llm)
    else:
        router = LLMRouter(chat_providers, default_provider=config.llm.provider)

    chat = Chat(memory, retriever, database, router, config.chat)

    logger.info(
        "Obelisk ready (db=%s, embedding=%s/%d, llm=%s)",
        database.db_path, emb_cfg.model, dimension, router.default_provider,
    )
    return ObeliskApp(
        config=config,
        database=database,
        embeddings=embeddings,
        retriever=retriever,
        memory=memory,
        router=router,
        chat=chat,
    )
