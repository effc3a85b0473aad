"""
Embedding Service

Facade over an EmbeddingProvider and the batch coordinator:
- embed_text:               direct provider call (write paths)
- embed_text_async:         enqueue on the coordinator and await the vector
- embed_text_async_nowait:  enqueue and return the token
"""

import logging
from typing import Any, Dict, List, Optional

from ..common.errors import ErrorReason, ObeliskError, Result
from .coordinator import EmbeddingBatchCoordinator
from .providers import EmbeddingProvider, embedding_dimensions

logger = logging.getLogger("obelisk.embeddings.service")


class EmbeddingService:
    """
    Embedding entry point shared by the memory store and the retriever.

    Usage:
        service = EmbeddingService(provider, coordinator)
        result = await service.embed_text_async("query")
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        coordinator: Optional[EmbeddingBatchCoordinator] = None,
        model: Optional[str] = None,
        await_timeout: float = 30.0,
        dimensions: Optional[int] = None,
    ):
        self._provider = provider
        self._coordinator = coordinator or EmbeddingBatchCoordinator(provider, model=model)
        self.model = model
        self.await_timeout = await_timeout
        self._dimensions = dimensions

    @property
    def coordinator(self) -> EmbeddingBatchCoordinator:
        return self._coordinator

    @property
    def dimensions(self) -> int:
        return self._dimensions or embedding_dimensions(self.model)

    async def embed_text(self, text: str) -> Result:
        """Embed one text with a direct provider call"""
        try:
            vector: List[float] = await self._provider.embed(text, model=self.model)
        except ObeliskError as e:
            logger.error("Direct embedding failed: %s", e)
            return Result.failure(ErrorReason.EMBEDDING_FAILED, str(e), cause=e.reason)
        return Result.success(list(vector))

    async def embed_text_async(self, text: str, timeout: Optional[float] = None) -> Result:
        """Embed one text through the batch coordinator"""
        try:
            token = self._coordinator.enqueue(text)
        except ObeliskError as e:
            return Result.from_error(e)
        return await self._coordinator.await_result(
            token, timeout=self.await_timeout if timeout is None else timeout
        )

    def embed_text_async_nowait(self, text: str) -> str:
        """Enqueue and return the token; redeem it with coordinator.await_result()"""
        return self._coordinator.enqueue(text)

    async def await_result(self, token: str, timeout: Optional[float] = None) -> Result:
        return await self._coordinator.await_result(
            token, timeout=self.await_timeout if timeout is None else timeout
        )

    def queue_info(self) -> Dict[str, Any]:
        info = self._coordinator.queue_info()
        info["model"] = self.model
        info["dimensions"] = self.dimensions
        return info

    async def close(self) -> None:
        await self._coordinator.close()
