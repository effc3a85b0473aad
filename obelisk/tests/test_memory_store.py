"""Tests for MemoryStore: storing, chunking, scoping and deletion."""

import pytest

from obelisk.common.errors import ErrorReason
from obelisk.common.schemas import MemoryKind


class TestStoreMemory:
    @pytest.mark.asyncio
    async def test_short_text_one_chunk(self, app, vectorize):
        result = await app.memory.store_memory({"text": "Short fact", "kind": "fact"})

        assert result.ok
        memory = result.value
        assert memory.kind == MemoryKind.FACT
        assert memory.is_global
        assert memory.embedding == vectorize("Short fact")
        assert [c.text for c in memory.chunks] == ["Short fact"]
        assert memory.chunks[0].memory_id == memory.id

    @pytest.mark.asyncio
    async def test_long_text_chunked_and_embedded(self, app, embedder, vectorize):
        text = "word " * 60  # 300 chars
        result = await app.memory.store_memory(
            {"text": text, "kind": "doc"}, chunk_size=100, chunk_overlap=20
        )

        chunks = result.value.chunks
        assert [len(c.text) for c in chunks] == [100, 100, 100, 60]
        assert all(c.embedding == vectorize(c.text) for c in chunks)
        assert text in embedder.calls

    @pytest.mark.asyncio
    async def test_session_scoped_memory(self, app):
        session = (await app.memory.get_or_create_session("scoped")).unwrap()
        result = await app.memory.store_memory(
            {"text": "Only for this session", "kind": "note", "session_id": session.id,
             "metadata": {"source": "test"}}
        )

        assert result.value.session_id == session.id
        assert result.value.metadata == {"source": "test"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("attrs", [
        {"text": "", "kind": "note"},
        {"text": "   ", "kind": "note"},
        {"text": "valid", "kind": "opinion"},
        {"kind": "note"},
        {"text": "no kind"},
    ])
    async def test_invalid_attrs(self, app, embedder, attrs):
        result = await app.memory.store_memory(attrs)

        assert not result.ok
        assert result.error == ErrorReason.VALIDATION
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_invalid_chunking(self, app):
        result = await app.memory.store_memory(
            {"text": "some text", "kind": "note"}, chunk_size=10, chunk_overlap=10
        )
        assert result.error == ErrorReason.VALIDATION

    @pytest.mark.asyncio
    async def test_embedding_failure_writes_nothing(self, app, embedder):
        text = "a" * 50 + "POISON" + "b" * 50
        chunks_text = [text[:60], text[50:110]]
        embedder.fail_on.add(chunks_text[1])

        result = await app.memory.store_memory(
            {"text": text, "kind": "doc"}, chunk_size=60, chunk_overlap=10
        )

        assert result.error == ErrorReason.EMBEDDING_FAILED
        assert (await app.memory.list_memories()).value == []

    @pytest.mark.asyncio
    async def test_chunk_insert_failure_rolls_back(self, app, embedder):
        # windows: "good chunk", "kbad chunk"; the second gets a wrong-dimension vector
        embedder.overrides["kbad chunk"] = [1.0, 2.0]
        result = await app.memory.store_memory(
            {"text": "good chunkbad chunk", "kind": "doc"}, chunk_size=10, chunk_overlap=1
        )

        assert result.error == ErrorReason.DIMENSION_MISMATCH
        assert (await app.memory.list_memories()).value == []

    @pytest.mark.asyncio
    async def test_store_memory_simple_reuses_document_vector(self, app, embedder):
        text = "x " * 800  # longer than the default chunk size
        result = await app.memory.store_memory_simple({"text": text, "kind": "code"})

        memory = result.value
        assert len(memory.chunks) == 1
        assert memory.chunks[0].text == text
        assert memory.chunks[0].embedding == memory.embedding
        assert embedder.calls == [text]

    @pytest.mark.asyncio
    async def test_deferred_embeddings_filled_by_coordinator(self, app, vectorize):
        result = await app.memory.store_memory(
            {"text": "later please", "kind": "event"}, defer_embeddings=True
        )
        assert result.ok
        assert result.value.embedding is None
        assert result.value.chunks[0].embedding is None

        await app.embeddings.coordinator.flush()

        stored = (await app.memory.get_memory(result.value.id)).value
        assert stored.embedding == vectorize("later please")
        assert stored.chunks[0].embedding == vectorize("later please")


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_memories_newest_first_and_scoped(self, app):
        session = (await app.memory.get_or_create_session("s")).unwrap()
        first = (await app.memory.store_memory_simple({"text": "first", "kind": "note"})).value
        second = (await app.memory.store_memory_simple({"text": "second", "kind": "note"})).value
        await app.memory.store_memory_simple({"text": "mine", "kind": "note", "session_id": session.id})

        global_ids = [m.id for m in (await app.memory.list_memories()).value]
        session_texts = [m.text for m in (await app.memory.list_memories(session.id)).value]

        assert global_ids == [second.id, first.id]
        assert session_texts == ["mine"]

    @pytest.mark.asyncio
    async def test_get_memory_missing(self, app):
        result = await app.memory.get_memory(777)
        assert result.error == ErrorReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_memory(self, app):
        memory = (await app.memory.store_memory(
            {"text": "z" * 30, "kind": "note"}, chunk_size=10, chunk_overlap=0
        )).value

        deleted = await app.memory.delete_memory(memory.id)
        assert deleted.ok
        assert (await app.retriever.get_memory_chunks(memory.id)).value == []

        again = await app.memory.delete_memory(memory.id)
        assert again.error == ErrorReason.NOT_FOUND


class TestSessions:
    @pytest.mark.asyncio
    async def test_get_or_create_session_idempotent(self, app):
        first = await app.memory.get_or_create_session("demo", {"v": 1})
        second = await app.memory.get_or_create_session("demo", {"v": 2})

        assert first.value.id == second.value.id
        assert second.value.metadata == {"v": 1}

    @pytest.mark.asyncio
    async def test_empty_session_name(self, app):
        result = await app.memory.get_or_create_session("")
        assert result.error == ErrorReason.VALIDATION

    @pytest.mark.asyncio
    async def test_get_session_by_name(self, app):
        await app.memory.get_or_create_session("known")
        assert (await app.memory.get_session_by_name("known")).ok
        assert (await app.memory.get_session_by_name("unknown")).error == ErrorReason.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_session_globalizes_memories(self, app):
        session = (await app.memory.get_or_create_session("temp")).unwrap()
        memory = (await app.memory.store_memory_simple(
            {"text": "survivor", "kind": "fact", "session_id": session.id}
        )).value

        assert (await app.memory.delete_session(session.id)).ok
        assert (await app.memory.get_memory(memory.id)).value.session_id is None
        assert (await app.memory.delete_session(session.id)).error == ErrorReason.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_memory_for_unknown_session(self, app):
        result = await app.memory.store_memory_simple(
            {"text": "orphan", "kind": "note", "session_id": 9999}
        )
        assert result.error == ErrorReason.NOT_FOUND
