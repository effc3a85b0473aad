"""
Retriever

Semantic search over memory chunks. A text query is embedded through the
batch coordinator; the vector is ranked against stored chunk embeddings by
cosine similarity, filtered by threshold and truncated to k.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from ..common.database import Database
from ..common.errors import DimensionMismatchError, ErrorReason, ObeliskError, Result
from ..embeddings.service import EmbeddingService

logger = logging.getLogger("obelisk.retrieval.retriever")


@dataclass
class RetrievedChunk:
    """A single retrieval hit"""
    chunk_id: int
    text: str
    memory_id: int
    kind: str
    session_id: Optional[int]
    score: float  # 1 - cosine distance, rounded to 3 decimals


class Retriever:
    """
    Retrieves relevant chunks for a query.

    Scope:
    - session_id=None                  -> global memories only
    - session_id + include_global=True -> global and that session's memories
    - session_id + include_global=False -> that session's memories only
    """

    def __init__(
        self,
        database: Database,
        embeddings: EmbeddingService,
        default_k: int = 8,
        default_threshold: float = 0.7,
        embed_timeout: Optional[float] = None,
    ):
        """
        Args:
            database: Persistent store holding chunk embeddings
            embeddings: Embedding service (query text goes through its coordinator)
            default_k: Result count when the caller gives none
            default_threshold: Minimum score when the caller gives none
            embed_timeout: Await timeout for query embeddings (service default if None)
        """
        self._db = database
        self._embeddings = embeddings
        self.default_k = default_k
        self.default_threshold = default_threshold
        self._embed_timeout = embed_timeout

    async def retrieve(
        self,
        query: Union[str, Sequence[float]],
        session_id: Optional[int] = None,
        k: Optional[int] = None,
        threshold: Optional[float] = None,
        include_global: bool = True,
    ) -> Result:
        """
        Retrieve chunks relevant to `query` (text or a precomputed vector).

        Returns:
            Result with List[RetrievedChunk] sorted by score, highest first.
            Failures: EMBEDDING_FAILED / TIMEOUT when the query cannot be
            embedded, DIMENSION_MISMATCH for a wrong-shape vector.
        """
        k = self.default_k if k is None else k
        threshold = self.default_threshold if threshold is None else threshold
        if k <= 0 or threshold < 0 or threshold > 1:
            logger.debug("Empty retrieval (k=%s, threshold=%s)", k, threshold)
            return Result.success([])

        if isinstance(query, str):
            embedded = await self._embeddings.embed_text_async(query, timeout=self._embed_timeout)
            if not embedded.ok:
                logger.warning("Query embedding failed: %s", embedded.detail)
                return embedded
            vector = embedded.value
        else:
            vector = query

        return await self.retrieve_by_embedding(
            vector,
            session_id=session_id,
            k=k,
            threshold=threshold,
            include_global=include_global,
        )

    async def retrieve_by_embedding(
        self,
        vector: Sequence[float],
        session_id: Optional[int] = None,
        k: Optional[int] = None,
        threshold: Optional[float] = None,
        include_global: bool = True,
    ) -> Result:
        """Retrieve with a precomputed query vector"""
        k = self.default_k if k is None else k
        threshold = self.default_threshold if threshold is None else threshold
        if k <= 0 or threshold < 0 or threshold > 1:
            return Result.success([])

        try:
            rows = await asyncio.to_thread(
                self._db.nearest_chunks,
                vector,
                session_id=session_id,
                include_global=include_global,
                k=k,
                threshold=threshold,
            )
        except DimensionMismatchError as e:
            logger.error("Retrieval rejected query vector: %s", e)
            return Result.from_error(e)
        except ObeliskError as e:
            return Result.failure(ErrorReason.RETRIEVAL_FAILED, str(e), cause=e.reason)

        results = [
            RetrievedChunk(
                chunk_id=row["chunk_id"],
                text=row["text"],
                memory_id=row["memory_id"],
                kind=row["kind"],
                session_id=row["session_id"],
                score=round(row["score"], 3),
            )
            for row in rows
        ]
        logger.debug(
            "Retrieved %d chunks (session=%s, k=%d, threshold=%.3f)",
            len(results), session_id, k, threshold,
        )
        return Result.success(results)

    async def get_memory_chunks(self, memory_id: int) -> Result:
        """All chunks of one memory, in insertion order"""
        chunks = await asyncio.to_thread(self._db.list_chunks, memory_id)
        return Result.success(chunks)
