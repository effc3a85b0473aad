"""Tests for the SQLite store: ownership rules, transactions and vector ranking."""

import pytest

from obelisk.common.errors import DimensionMismatchError, NotFoundError, ValidationError
from obelisk.common.schemas import MemoryKind, MessageRole, NewMemory


def unit(dim, index, weight=1.0, other=None):
    vector = [0.0] * dim
    vector[index] = weight
    if other is not None:
        vector[other[0]] = other[1]
    return vector


class TestSessions:
    def test_get_or_create_session_is_idempotent(self, db):
        first = db.get_or_create_session("s1", {"owner": "ana"})
        second = db.get_or_create_session("s1", {"owner": "someone else"})
        assert first.id == second.id
        assert second.metadata == {"owner": "ana"}

    def test_blank_session_name_rejected(self, db):
        with pytest.raises(ValidationError):
            db.get_or_create_session("")

    def test_delete_session_cascades_messages_and_globalizes_memories(self, db):
        session = db.get_or_create_session("doomed")
        db.insert_message(session.id, "user", {"text": "hi"})
        memory = db.insert_memory(NewMemory(text="kept", kind="note", session_id=session.id))

        assert db.delete_session(session.id) is True
        assert db.get_session_by_name("doomed") is None
        assert db.count_messages(session.id) == 0
        assert db.get_memory(memory.id).session_id is None

    def test_delete_missing_session(self, db):
        assert db.delete_session(999) is False


class TestMessages:
    def test_recent_messages_chronological_and_bounded(self, db):
        session = db.get_or_create_session("chat")
        for i in range(5):
            db.insert_message(session.id, "user", {"text": f"m{i}"})

        recent = db.recent_messages(session.id, 3)
        assert [m.text for m in recent] == ["m2", "m3", "m4"]

    def test_zero_limit_returns_empty(self, db):
        session = db.get_or_create_session("chat")
        db.insert_message(session.id, "user", {"text": "x"})
        assert db.recent_messages(session.id, 0) == []

    def test_invalid_role_rejected(self, db):
        session = db.get_or_create_session("chat")
        with pytest.raises(ValidationError):
            db.insert_message(session.id, "narrator", {"text": "x"})

    def test_message_for_missing_session(self, db):
        with pytest.raises(NotFoundError):
            db.insert_message(12345, "user", {"text": "x"})

    def test_delete_messages_keeps_session(self, db):
        session = db.get_or_create_session("chat")
        db.insert_message(session.id, MessageRole.USER.value, {"text": "a"})
        db.insert_message(session.id, MessageRole.ASSISTANT.value, {"text": "b"})

        assert db.delete_messages(session.id) == 2
        assert db.count_messages(session.id) == 0
        assert db.get_session(session.id) is not None


class TestMemories:
    def test_insert_with_chunks_round_trip(self, db):
        vec = unit(db.dimension, 1)
        memory = db.insert_memory_with_chunks(
            NewMemory(text="abc", kind=MemoryKind.FACT), vec, [("a", vec), ("b", None)]
        )
        stored = db.get_memory(memory.id)
        assert stored.kind == MemoryKind.FACT
        assert stored.embedding == vec
        assert [c.text for c in stored.chunks] == ["a", "b"]
        assert stored.chunks[1].embedding is None

    def test_wrong_dimension_rolls_back_everything(self, db):
        good = unit(db.dimension, 1)
        with pytest.raises(DimensionMismatchError):
            db.insert_memory_with_chunks(
                NewMemory(text="abc", kind="note"), good, [("a", good), ("b", [1.0, 2.0])]
            )
        assert db.list_memories() == []

    def test_list_memories_scoped_newest_first(self, db):
        session = db.get_or_create_session("s")
        g1 = db.insert_memory(NewMemory(text="g1", kind="note"))
        g2 = db.insert_memory(NewMemory(text="g2", kind="note"))
        db.insert_memory(NewMemory(text="s1", kind="note", session_id=session.id))

        assert [m.id for m in db.list_memories()] == [g2.id, g1.id]
        assert [m.text for m in db.list_memories(session.id)] == ["s1"]

    def test_delete_memory_cascades_chunks(self, db):
        memory = db.insert_memory_with_chunks(NewMemory(text="x", kind="note"), None, [("x", None)])
        assert db.delete_memory(memory.id) is True
        assert db.list_chunks(memory.id) == []
        assert db.delete_memory(memory.id) is False

    def test_update_embeddings(self, db):
        memory = db.insert_memory_with_chunks(NewMemory(text="x", kind="note"), None, [("x", None)])
        vec = unit(db.dimension, 3)
        db.update_memory_embedding(memory.id, vec)
        db.update_chunk_embedding(memory.chunks[0].id, vec)

        stored = db.get_memory(memory.id)
        assert stored.embedding == vec
        assert stored.chunks[0].embedding == vec

    def test_update_missing_rows(self, db):
        vec = unit(db.dimension, 3)
        with pytest.raises(NotFoundError):
            db.update_memory_embedding(404, vec)
        with pytest.raises(NotFoundError):
            db.update_chunk_embedding(404, vec)


class TestNearestChunks:
    @pytest.fixture
    def seeded(self, db):
        dim = db.dimension
        session = db.get_or_create_session("s")
        other = db.get_or_create_session("other")
        db.insert_memory_with_chunks(
            NewMemory(text="global", kind="fact"), None,
            [("exact", unit(dim, 0)), ("close", unit(dim, 0, 1.0, (1, 0.5)))],
        )
        db.insert_memory_with_chunks(
            NewMemory(text="mine", kind="note", session_id=session.id), None,
            [("mine", unit(dim, 0, 1.0, (2, 1.0)))],
        )
        db.insert_memory_with_chunks(
            NewMemory(text="theirs", kind="note", session_id=other.id), None,
            [("theirs", unit(dim, 0))],
        )
        db.insert_memory_with_chunks(
            NewMemory(text="pending", kind="note"), None, [("pending", None)],
        )
        return session, other

    def test_global_only_when_no_session(self, db, seeded):
        hits = db.nearest_chunks(unit(db.dimension, 0), k=10)
        assert {h["text"] for h in hits} == {"exact", "close"}
        assert all(h["session_id"] is None for h in hits)

    def test_session_plus_global(self, db, seeded):
        session, _ = seeded
        hits = db.nearest_chunks(unit(db.dimension, 0), session_id=session.id, k=10)
        assert [h["text"] for h in hits] == ["exact", "close", "mine"]

    def test_session_only(self, db, seeded):
        session, _ = seeded
        hits = db.nearest_chunks(
            unit(db.dimension, 0), session_id=session.id, include_global=False, k=10
        )
        assert [h["text"] for h in hits] == ["mine"]

    def test_scores_descending_and_thresholded(self, db, seeded):
        session, _ = seeded
        hits = db.nearest_chunks(unit(db.dimension, 0), session_id=session.id, k=10, threshold=0.8)
        scores = [h["score"] for h in hits]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == pytest.approx(1.0)
        assert all(s >= 0.8 for s in scores)
        assert "mine" not in [h["text"] for h in hits]

    def test_k_truncates(self, db, seeded):
        session, _ = seeded
        assert len(db.nearest_chunks(unit(db.dimension, 0), session_id=session.id, k=1)) == 1
        assert db.nearest_chunks(unit(db.dimension, 0), k=0) == []

    def test_ties_break_by_chunk_id(self, db):
        vec = unit(db.dimension, 5)
        memory = db.insert_memory_with_chunks(
            NewMemory(text="dup", kind="note"), None, [("first", vec), ("second", vec)]
        )
        hits = db.nearest_chunks(vec, k=2)
        assert [h["chunk_id"] for h in hits] == [c.id for c in memory.chunks]

    def test_wrong_query_dimension(self, db, seeded):
        with pytest.raises(DimensionMismatchError):
            db.nearest_chunks([1.0, 0.0, 0.0])
