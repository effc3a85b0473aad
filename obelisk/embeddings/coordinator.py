"""
Embedding Batch Coordinator

Queues embedding jobs, drains them in batches (size threshold or timer,
whichever first), makes exactly one provider call per unique text in a batch
and fans the outcome back to every job sharing that text.

Job types:
- query:  a caller holds a token and awaits the vector
- memory: vector is written back onto a Memory row
- chunk:  vector is written back onto a MemoryChunk row

Tokens are single-use. Each pending token has its own expiry timer; a result
arriving after the token was awaited, timed out or expired is discarded.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ..common.errors import ErrorReason, NotFoundError, ObeliskError, Result
from .providers import EmbeddingProvider

logger = logging.getLogger("obelisk.embeddings.coordinator")


class JobKind(str, Enum):
    QUERY = "query"
    MEMORY = "memory"
    CHUNK = "chunk"


@dataclass
class EmbeddingJob:
    """A single queued embedding request"""
    kind: JobKind
    text: str
    token: Optional[str] = None  # query jobs
    target_id: Optional[int] = None  # memory/chunk jobs


@dataclass
class _PendingRequest:
    future: asyncio.Future
    expiry: Optional[asyncio.TimerHandle] = None


class EmbeddingBatchCoordinator:
    """
    Batches and deduplicates embedding requests.

    Usage:
        coordinator = EmbeddingBatchCoordinator(provider, writer=database)
        token = coordinator.enqueue("some text")
        result = await coordinator.await_result(token, timeout=30.0)
        if result.ok:
            vector = result.value
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        writer=None,
        model: Optional[str] = None,
        batch_size: int = 10,
        batch_timeout: float = 2.0,
        max_concurrency: int = 2,
        result_ttl: float = 60.0,
    ):
        """
        Args:
            provider: Embedding backend
            writer: Store exposing update_memory_embedding / update_chunk_embedding
                (required for memory/chunk jobs)
            model: Embedding model passed to the provider
            batch_size: Drain as soon as this many jobs are buffered
            batch_timeout: Drain a partial batch after this many seconds
            max_concurrency: Maximum batches processed at once
            result_ttl: Seconds a pending token lives before it expires
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self._provider = provider
        self._writer = writer
        self._model = model
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout
        self._result_ttl = result_ttl

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._buffer: List[EmbeddingJob] = []
        self._pending: Dict[str, _PendingRequest] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

        self._batches_processed = 0
        self._provider_calls = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def enqueue(self, text: str) -> str:
        """
        Queue a query job without blocking.

        Returns:
            Single-use token for await_result()
        """
        if not isinstance(text, str):
            raise TypeError("text must be a string")
        loop = asyncio.get_running_loop()
        token = uuid.uuid4().hex
        pending = _PendingRequest(future=loop.create_future())
        pending.expiry = loop.call_later(self._result_ttl, self._expire, token)
        self._pending[token] = pending
        try:
            self._submit(EmbeddingJob(kind=JobKind.QUERY, text=text, token=token))
        except ObeliskError:
            self._discard(token)
            raise
        logger.debug("Enqueued query job %s", token)
        return token

    def embed_memory(self, memory_id: int, text: str) -> None:
        """Fire-and-forget: embed `text` and write it onto the memory"""
        self._submit(EmbeddingJob(kind=JobKind.MEMORY, text=text, target_id=memory_id))
        logger.debug("Enqueued embed_memory job for memory_id: %s", memory_id)

    def embed_chunk(self, chunk_id: int, text: str) -> None:
        """Fire-and-forget: embed `text` and write it onto the chunk"""
        self._submit(EmbeddingJob(kind=JobKind.CHUNK, text=text, target_id=chunk_id))
        logger.debug("Enqueued embed_chunk job for chunk_id: %s", chunk_id)

    def _submit(self, job: EmbeddingJob) -> None:
        if self._closed:
            raise ObeliskError("Embedding coordinator is closed", ErrorReason.ENQUEUE_FAILED)
        if job.kind is not JobKind.QUERY and self._writer is None:
            raise ObeliskError(
                f"No writer configured for {job.kind.value} jobs", ErrorReason.ENQUEUE_FAILED
            )

        self._buffer.append(job)
        if len(self._buffer) >= self._batch_size:
            self._drain()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._batch_timeout, self._drain)

    # ------------------------------------------------------------------
    # Awaiting
    # ------------------------------------------------------------------

    async def await_result(self, token: str, timeout: float = 30.0) -> Result:
        """
        Wait for the vector behind `token`.

        Returns:
            Result with the vector, a TIMEOUT failure after `timeout` seconds,
            the provider failure for that text, or NOT_FOUND for an unknown,
            already-used or expired token.
        """
        pending = self._pending.get(token)
        if pending is None:
            return Result.failure(ErrorReason.NOT_FOUND, f"Unknown or expired token: {token}")

        try:
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout)
        except asyncio.TimeoutError:
            logger.warning("Embedding await timed out after %.3fs (token %s)", timeout, token)
            return Result.failure(
                ErrorReason.TIMEOUT, f"Embedding not delivered within {timeout}s"
            )
        finally:
            self._discard(token)

    def _discard(self, token: str) -> None:
        pending = self._pending.pop(token, None)
        if pending is None:
            return
        if pending.expiry is not None:
            pending.expiry.cancel()
        if not pending.future.done():
            pending.future.cancel()

    def _expire(self, token: str) -> None:
        if token in self._pending:
            logger.debug("Token %s expired unclaimed", token)
            self._discard(token)

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def _drain(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        loop = asyncio.get_running_loop()
        while self._buffer:
            batch = self._buffer[:self._batch_size]
            del self._buffer[:self._batch_size]
            task = loop.create_task(self._run_batch(batch))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_batch(self, batch: List[EmbeddingJob]) -> None:
        async with self._semaphore:
            logger.debug("Processing batch of %d embedding jobs", len(batch))

            # Group jobs by exact text so each unique text is embedded once
            groups: Dict[str, List[EmbeddingJob]] = {}
            for job in batch:
                groups.setdefault(job.text, []).append(job)

            outcomes = await asyncio.gather(*(self._embed_text(text) for text in groups))

            for jobs, outcome in zip(groups.values(), outcomes):
                for job in jobs:
                    try:
                        await self._deliver(job, outcome)
                    except Exception:
                        logger.exception(
                            "Delivery crashed for %s job (%s)",
                            job.kind.value,
                            job.token or job.target_id,
                        )

            self._batches_processed += 1

    async def _embed_text(self, text: str) -> Result:
        self._provider_calls += 1
        try:
            vector = await self._provider.embed(text, model=self._model)
        except ObeliskError as e:
            logger.error("Embedding failed for text (%d chars): %s", len(text), e)
            return Result.failure(ErrorReason.EMBEDDING_FAILED, str(e), cause=e.reason)
        except Exception as e:
            # A crash on one text must not take down the batch
            logger.exception("Embedding provider crashed on text (%d chars)", len(text))
            return Result.failure(ErrorReason.EMBEDDING_FAILED, f"{type(e).__name__}: {e}")
        return Result.success(list(vector))

    async def _deliver(self, job: EmbeddingJob, outcome: Result) -> None:
        if job.kind is JobKind.QUERY:
            pending = self._pending.get(job.token)
            if pending is None or pending.future.done():
                logger.debug("Discarding late result for token %s", job.token)
                return
            pending.future.set_result(outcome)
            return

        if not outcome.ok:
            logger.error(
                "Embedding for %s %s failed: %s", job.kind.value, job.target_id, outcome.detail
            )
            return

        if job.kind is JobKind.MEMORY:
            update = self._writer.update_memory_embedding
        else:
            update = self._writer.update_chunk_embedding
        try:
            await asyncio.to_thread(update, job.target_id, outcome.value)
            logger.debug("Updated embedding for %s: %s", job.kind.value, job.target_id)
        except NotFoundError:
            logger.warning("%s not found for embedding update: %s", job.kind.value, job.target_id)
        except ObeliskError as e:
            logger.error("Failed to update %s embedding: %s", job.kind.value, e)
        except Exception:
            logger.exception("Embedding write-back crashed for %s %s", job.kind.value, job.target_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Drain buffered jobs now and wait until every in-flight batch finishes"""
        if self._buffer:
            self._drain()
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        """Flush, then refuse new jobs and drop unclaimed tokens"""
        await self.flush()
        self._closed = True
        for token in list(self._pending):
            self._discard(token)
        logger.info(
            "Embedding coordinator closed (%d batches, %d provider calls)",
            self._batches_processed,
            self._provider_calls,
        )

    def queue_info(self) -> Dict[str, Any]:
        """Pipeline health snapshot"""
        return {
            "status": "closed" if self._closed else "running",
            "queue_size": len(self._buffer),
            "in_flight_batches": len(self._tasks),
            "pending_tokens": len(self._pending),
            "batches_processed": self._batches_processed,
            "provider_calls": self._provider_calls,
        }
