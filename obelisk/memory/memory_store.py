"""
Memory Store

Stores knowledge as memories with embedded chunks, and manages sessions.
A memory and all of its chunks are written in one transaction: either every
row lands or none does.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..common.database import Database
from ..common.errors import ErrorReason, NotFoundError, ObeliskError, Result
from ..common.schemas import Memory, NewMemory, NewSession, validate_input
from ..embeddings.service import EmbeddingService
from .chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_text

logger = logging.getLogger("obelisk.memory.memory_store")


class MemoryStore:
    """
    Memory and session operations.

    Usage:
        store = MemoryStore(database, embeddings)
        result = await store.store_memory({"text": "...", "kind": "fact"})
        if result.ok:
            memory = result.value
    """

    def __init__(
        self,
        database: Database,
        embeddings: EmbeddingService,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        self._db = database
        self._embeddings = embeddings
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def store_memory(
        self,
        attrs: Union[Dict[str, Any], NewMemory],
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        defer_embeddings: bool = False,
    ) -> Result:
        """
        Store a memory, chunk it and embed every chunk.

        Args:
            attrs: text, kind, optional session_id and metadata
            chunk_size: Characters per chunk (store default if None)
            chunk_overlap: Characters shared by consecutive chunks
            defer_embeddings: Persist with empty embeddings and let the batch
                coordinator fill them in

        Returns:
            Result with the Memory (chunks included).
            Failures: VALIDATION, EMBEDDING_FAILED, STORAGE_FAILED
        """
        chunk_size = self.chunk_size if chunk_size is None else chunk_size
        chunk_overlap = self.chunk_overlap if chunk_overlap is None else chunk_overlap

        try:
            new = validate_input(NewMemory, attrs)
            pieces = chunk_text(new.text, chunk_size, chunk_overlap)
        except ObeliskError as e:
            return Result.from_error(e)

        if defer_embeddings:
            return await self._store_deferred(new, pieces)

        # Document vector and chunk vectors are computed before anything is written
        outcomes = await asyncio.gather(
            self._embeddings.embed_text(new.text),
            *(self._embeddings.embed_text(piece) for piece in pieces),
        )
        failed = next((o for o in outcomes if not o.ok), None)
        if failed is not None:
            logger.error("Not storing memory, embedding failed: %s", failed.detail)
            return failed

        doc_vector = outcomes[0].value
        chunk_rows = [(piece, o.value) for piece, o in zip(pieces, outcomes[1:])]
        result = await self._insert(new, doc_vector, chunk_rows)
        if result.ok:
            logger.info(
                "Stored memory %s (%s, %d chunks)",
                result.value.id, new.kind.value, len(chunk_rows),
            )
        return result

    async def store_memory_simple(self, attrs: Union[Dict[str, Any], NewMemory]) -> Result:
        """Store a memory as exactly one chunk that reuses the document embedding"""
        try:
            new = validate_input(NewMemory, attrs)
        except ObeliskError as e:
            return Result.from_error(e)

        embedded = await self._embeddings.embed_text(new.text)
        if not embedded.ok:
            return embedded
        return await self._insert(new, embedded.value, [(new.text, embedded.value)])

    async def _store_deferred(self, new: NewMemory, pieces: List[str]) -> Result:
        result = await self._insert(new, None, [(piece, None) for piece in pieces])
        if not result.ok:
            return result

        memory: Memory = result.value
        coordinator = self._embeddings.coordinator
        try:
            coordinator.embed_memory(memory.id, memory.text)
            for chunk in memory.chunks:
                coordinator.embed_chunk(chunk.id, chunk.text)
        except ObeliskError as e:
            logger.error("Memory %s stored but embeddings not enqueued: %s", memory.id, e)
            return Result.failure(ErrorReason.ENQUEUE_FAILED, str(e))
        logger.info("Stored memory %s with %d deferred chunks", memory.id, len(memory.chunks))
        return result

    async def _insert(
        self,
        new: NewMemory,
        doc_vector: Optional[Sequence[float]],
        chunk_rows: List[tuple],
    ) -> Result:
        try:
            memory = await asyncio.to_thread(
                self._db.insert_memory_with_chunks, new, doc_vector, chunk_rows
            )
        except ObeliskError as e:
            logger.error("Memory insert rolled back: %s", e)
            return Result.from_error(e)
        return Result.success(memory)

    async def get_memory(self, memory_id: int) -> Result:
        memory = await asyncio.to_thread(self._db.get_memory, memory_id)
        if memory is None:
            return Result.failure(ErrorReason.NOT_FOUND, f"Memory not found: {memory_id}")
        return Result.success(memory)

    async def list_memories(self, session_id: Optional[int] = None) -> Result:
        """Memories with chunks, newest first; session_id=None lists global memories"""
        memories = await asyncio.to_thread(self._db.list_memories, session_id)
        return Result.success(memories)

    async def delete_memory(self, memory_id: int) -> Result:
        """Delete a memory and all its chunks"""
        deleted = await asyncio.to_thread(self._db.delete_memory, memory_id)
        if not deleted:
            return Result.from_error(NotFoundError(f"Memory not found: {memory_id}"))
        logger.info("Deleted memory %s", memory_id)
        return Result.success(memory_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get_or_create_session(
        self, name: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result:
        """Return the named session, creating it on first use (metadata is never updated)"""
        try:
            new = validate_input(NewSession, {"name": name, "metadata": metadata or {}})
            session = await asyncio.to_thread(
                self._db.get_or_create_session, new.name, new.metadata
            )
        except ObeliskError as e:
            return Result.from_error(e)
        return Result.success(session)

    async def get_session_by_name(self, name: str) -> Result:
        session = await asyncio.to_thread(self._db.get_session_by_name, name)
        if session is None:
            return Result.failure(ErrorReason.SESSION_NOT_FOUND, f"Session not found: {name}")
        return Result.success(session)

    async def delete_session(self, session_id: int) -> Result:
        """Delete a session and its messages; its memories become global"""
        deleted = await asyncio.to_thread(self._db.delete_session, session_id)
        if not deleted:
            return Result.failure(
                ErrorReason.SESSION_NOT_FOUND, f"Session not found: {session_id}"
            )
        logger.info("Deleted session %s", session_id)
        return Result.success(session_id)
