"""
Chat - retrieval-augmented conversation

One turn:
1. Resolve or create the session by name
2. Persist the user message (before anything that can fail)
3. Retrieve relevant chunks
4. Load the recent history, the new message included
5. Assemble the prompt and dispatch it through the LLM router
6. Persist the assistant reply
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..common.config import ChatConfig
from ..common.database import Database
from ..common.errors import ErrorReason, ObeliskError, ProviderError, Result
from ..common.schemas import Message, MessageRole, Session
from ..llm.base import StreamCallback, StreamChunk, Usage, emit
from ..llm.router import LLMRouter
from ..memory.memory_store import MemoryStore
from ..retrieval.retriever import RetrievedChunk, Retriever
from .prompt import build_rag_prompt

logger = logging.getLogger("obelisk.chat.chat")

# Words per chunk when a non-streaming reply is delivered piecewise
FALLBACK_WORDS_PER_CHUNK = 4


@dataclass
class HistoryEntry:
    """One prior turn, content unwrapped to plain text"""
    role: str
    content: Any
    inserted_at: datetime


@dataclass
class ChatReply:
    """Outcome of a successful turn"""
    response: str
    session: str
    context_used: int
    history_included: int
    model: str = ""
    usage: Usage = field(default_factory=Usage)
    context: List[RetrievedChunk] = field(default_factory=list)


@dataclass
class _Turn:
    session: Session
    user_message: Message
    context: List[RetrievedChunk]
    history: List[HistoryEntry]
    prompt: str


def _to_history_entry(message: Message) -> HistoryEntry:
    text = message.text
    return HistoryEntry(
        role=message.role.value,
        content=text if text is not None else message.content,
        inserted_at=message.inserted_at,
    )


def split_words(text: str, words_per_chunk: int = FALLBACK_WORDS_PER_CHUNK) -> List[str]:
    """Split text into groups of words, keeping whitespace so chunks join back exactly"""
    tokens = re.findall(r"\s*\S+\s*", text) or ([text] if text else [])
    return [
        "".join(tokens[i:i + words_per_chunk])
        for i in range(0, len(tokens), words_per_chunk)
    ]


class Chat:
    """
    RAG chat orchestrator.

    Usage:
        chat = Chat(memory, retriever, database, router)
        result = await chat.send_message("What is Elixir?", "my-session")
        if result.ok:
            print(result.value.response)
    """

    def __init__(
        self,
        memory: MemoryStore,
        retriever: Retriever,
        database: Database,
        router: LLMRouter,
        config: Optional[ChatConfig] = None,
    ):
        self._memory = memory
        self._retriever = retriever
        self._db = database
        self._router = router
        self.config = config or ChatConfig()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(
        self,
        user_message: str,
        session_name: str,
        *,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        retrieval_k: Optional[int] = None,
        retrieval_threshold: Optional[float] = None,
        max_history: Optional[int] = None,
        include_global_memories: Optional[bool] = None,
    ) -> Result:
        """
        Run one RAG turn.

        Returns:
            Result with a ChatReply.
            Failures: VALIDATION, RETRIEVAL_FAILED (cause = embedding failure tag),
            LLM_FAILED. The user message stays stored on any failure after step 2.

        Raises:
            UnknownProviderError: `provider` (or the configured default) is not registered
        """
        prepared = await self._prepare_turn(
            user_message, session_name, retrieval_k, retrieval_threshold,
            max_history, include_global_memories,
        )
        if not prepared.ok:
            return prepared
        turn: _Turn = prepared.value

        try:
            completion = await self._router.chat(
                [{"role": "user", "content": turn.prompt}],
                self._llm_opts(model, provider),
            )
        except ObeliskError as e:
            logger.error("LLM call failed for session %s: %s", session_name, e)
            return Result.failure(ErrorReason.LLM_FAILED, str(e), cause=e.reason)

        return await self._finish_turn(
            turn, session_name, completion.text, completion.model, completion.usage
        )

    async def stream_message(
        self,
        user_message: str,
        session_name: str,
        on_chunk: StreamCallback,
        *,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        retrieval_k: Optional[int] = None,
        retrieval_threshold: Optional[float] = None,
        max_history: Optional[int] = None,
        include_global_memories: Optional[bool] = None,
    ) -> Result:
        """
        Run one RAG turn, delivering the reply to `on_chunk` as it arrives.

        Providers without streaming get one chat call whose reply is then
        delivered in word groups. The full reply is persisted either way and
        returned as a ChatReply.
        """
        prepared = await self._prepare_turn(
            user_message, session_name, retrieval_k, retrieval_threshold,
            max_history, include_global_memories,
        )
        if not prepared.ok:
            return prepared
        turn: _Turn = prepared.value

        messages = [{"role": "user", "content": turn.prompt}]
        opts = self._llm_opts(model, provider)
        parts: List[str] = []

        async def collect(chunk: StreamChunk) -> None:
            if chunk.type == "content":
                parts.append(chunk.content)
            await emit(on_chunk, chunk)

        reply_model = opts.get("model") or ""
        usage = Usage()
        try:
            await self._router.stream_chat(messages, opts, collect)
        except ProviderError as e:
            if e.reason is not ErrorReason.NOT_IMPLEMENTED or parts:
                logger.error("LLM stream failed for session %s: %s", session_name, e)
                return Result.failure(ErrorReason.LLM_FAILED, str(e), cause=e.reason)

            logger.debug("Provider cannot stream; falling back to a single chat call")
            try:
                completion = await self._router.chat(messages, opts)
            except ObeliskError as e:
                logger.error("LLM call failed for session %s: %s", session_name, e)
                return Result.failure(ErrorReason.LLM_FAILED, str(e), cause=e.reason)
            for piece in split_words(completion.text):
                await collect(StreamChunk("content", piece))
            await emit(on_chunk, StreamChunk("done"))
            reply_model, usage = completion.model, completion.usage
        except ObeliskError as e:
            logger.error("LLM stream failed for session %s: %s", session_name, e)
            return Result.failure(ErrorReason.LLM_FAILED, str(e), cause=e.reason)

        return await self._finish_turn(turn, session_name, "".join(parts), reply_model, usage)

    async def _prepare_turn(
        self,
        user_message: str,
        session_name: str,
        retrieval_k: Optional[int],
        retrieval_threshold: Optional[float],
        max_history: Optional[int],
        include_global_memories: Optional[bool],
    ) -> Result:
        cfg = self.config
        k = cfg.retrieval_k if retrieval_k is None else retrieval_k
        threshold = cfg.retrieval_threshold if retrieval_threshold is None else retrieval_threshold
        history_limit = cfg.max_history if max_history is None else max_history
        include_global = (
            cfg.include_global_memories if include_global_memories is None else include_global_memories
        )

        if not isinstance(user_message, str):
            return Result.failure(ErrorReason.VALIDATION, "user_message must be a string")

        session_result = await self._memory.get_or_create_session(session_name)
        if not session_result.ok:
            return session_result
        session: Session = session_result.value

        try:
            stored = await asyncio.to_thread(
                self._db.insert_message, session.id, MessageRole.USER.value, {"text": user_message}
            )
        except ObeliskError as e:
            return Result.from_error(e)

        retrieved = await self._retriever.retrieve(
            user_message, session_id=session.id, k=k, threshold=threshold,
            include_global=include_global,
        )
        if not retrieved.ok:
            logger.error("Retrieval failed for session %s: %s", session_name, retrieved.detail)
            return Result.failure(ErrorReason.RETRIEVAL_FAILED, retrieved.detail, cause=retrieved.error)

        messages = await asyncio.to_thread(
            self._db.recent_messages, session.id, history_limit
        )
        history = [_to_history_entry(m) for m in messages]
        prompt = build_rag_prompt(user_message, retrieved.value, history)

        logger.debug(
            "Turn for session %s: %d context chunks, %d history messages",
            session_name, len(retrieved.value), len(history),
        )
        return Result.success(_Turn(session, stored, retrieved.value, history, prompt))

    async def _finish_turn(
        self,
        turn: _Turn,
        session_name: str,
        response: str,
        model: str,
        usage: Usage,
    ) -> Result:
        try:
            await asyncio.to_thread(
                self._db.insert_message, turn.session.id, MessageRole.ASSISTANT.value, {"text": response}
            )
        except ObeliskError as e:
            return Result.from_error(e)

        return Result.success(ChatReply(
            response=response,
            session=session_name,
            context_used=len(turn.context),
            history_included=len(turn.history),
            model=model,
            usage=usage,
            context=turn.context,
        ))

    def _llm_opts(self, model: Optional[str], provider: Optional[str]) -> Dict[str, Any]:
        return {"model": model or self.config.model or None, "provider": provider}

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_conversation_history(
        self, session_id: int, max_history: Optional[int] = None
    ) -> Result:
        """Most recent messages of a session, oldest first"""
        limit = self.config.max_history if max_history is None else max_history
        messages = await asyncio.to_thread(self._db.recent_messages, session_id, limit)
        return Result.success([_to_history_entry(m) for m in messages])

    async def clear_history(self, session_name: str) -> Result:
        """Delete every message of a session; the session and its memories stay"""
        session_result = await self._memory.get_session_by_name(session_name)
        if not session_result.ok:
            return session_result
        session: Session = session_result.value

        deleted = await asyncio.to_thread(self._db.delete_messages, session.id)
        logger.info("Cleared %d messages from session %s", deleted, session_name)
        return Result.success(deleted)

