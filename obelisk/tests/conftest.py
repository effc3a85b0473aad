"""Shared fixtures: in-memory store, deterministic embeddings, scripted LLMs."""

import asyncio
import hashlib
import re
from typing import Dict, Iterable, List, Optional

import pytest

from obelisk.common.config import ObeliskConfig
from obelisk.common.database import Database
from obelisk.common.errors import ErrorReason, ProviderError
from obelisk.embeddings.providers import EmbeddingProvider
from obelisk.llm.base import ChatCompletion, ChatMessage, ChatProvider, Choice, StreamChunk, Usage, emit

DIM = 64


def hash_vector(text: str, dimension: int = DIM) -> List[float]:
    """Bag-of-words vector: each lowercased word bumps one hashed bucket"""
    vector = [0.0] * dimension
    words = re.findall(r"\w+", text.lower())
    if not words:
        vector[0] = 1.0
    for word in words:
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    return vector


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic embedding backend that records every call"""

    name = "hashing"

    def __init__(
        self,
        dimension: int = DIM,
        delay: float = 0.0,
        fail_on: Iterable[str] = (),
        overrides: Optional[Dict[str, List[float]]] = None,
    ):
        self.dimension = dimension
        self.delay = delay
        self.fail_on = set(fail_on)
        self.overrides = overrides or {}
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def embed(self, text, model=None):
        self.calls.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if text in self.fail_on:
                raise ProviderError(f"refused: {text}", reason=ErrorReason.EMBEDDING_FAILED)
            if text in self.overrides:
                return list(self.overrides[text])
            return hash_vector(text, self.dimension)
        finally:
            self.active -= 1


class ScriptedChatProvider(ChatProvider):
    """Chat backend that answers with a fixed reply and records prompts"""

    def __init__(self, name="openai", reply="Scripted reply", fail=False, stream=False):
        self.name = name
        self.reply = reply
        self.fail = fail
        self.stream = stream
        self.requests = []

    async def chat(self, messages, opts=None):
        self.requests.append((messages, dict(opts or {})))
        if self.fail:
            raise ProviderError("upstream exploded", status=500)
        return ChatCompletion(
            choices=[Choice(message=ChatMessage(role="assistant", content=self.reply))],
            usage=Usage(prompt_tokens=10, completion_tokens=3, total_tokens=13),
            model=(opts or {}).get("model") or "scripted-model",
        )

    async def stream_chat(self, messages, opts, on_chunk):
        if not self.stream:
            return await super().stream_chat(messages, opts, on_chunk)
        self.requests.append((messages, dict(opts or {})))
        for word in self.reply.split(" "):
            await emit(on_chunk, StreamChunk("content", word + " "))
        await emit(on_chunk, StreamChunk("done"))


@pytest.fixture
def db():
    database = Database(":memory:", dimension=DIM)
    yield database
    database.close()


@pytest.fixture
def embedder():
    return HashingEmbeddingProvider()


@pytest.fixture
def chat_provider():
    return ScriptedChatProvider()


@pytest.fixture
def config():
    cfg = ObeliskConfig()
    cfg.database.path = ":memory:"
    cfg.embedding.batch_timeout = 0.01
    cfg.embedding.await_timeout = 2.0
    return cfg


@pytest.fixture
def app(config, embedder, chat_provider):
    from obelisk.app import create_app

    application = create_app(
        config,
        embedding_provider=embedder,
        embedding_dimension=DIM,
        chat_providers={"openai": chat_provider},
    )
    yield application
    application.database.close()


@pytest.fixture
def make_embedder():
    return HashingEmbeddingProvider


@pytest.fixture
def make_chat_provider():
    return ScriptedChatProvider


@pytest.fixture
def vectorize():
    return hash_vector
