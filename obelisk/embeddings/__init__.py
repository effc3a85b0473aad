"""Embedding providers, batch coordinator and service facade"""

from .coordinator import EmbeddingBatchCoordinator, EmbeddingJob, JobKind
from .providers import (
    DEFAULT_EMBEDDING_DIMENSIONS,
    DEFAULT_EMBEDDING_MODEL,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_embedding_provider,
    embedding_dimensions,
)
from .service import EmbeddingService

__all__ = [
    "DEFAULT_EMBEDDING_DIMENSIONS",
    "DEFAULT_EMBEDDING_MODEL",
    "EmbeddingBatchCoordinator",
    "EmbeddingJob",
    "EmbeddingProvider",
    "EmbeddingService",
    "JobKind",
    "OpenAIEmbeddingProvider",
    "create_embedding_provider",
    "embedding_dimensions",
]
