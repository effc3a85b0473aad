"""
Database — SQLite-backed persistent store

Tables:
    sessions       - Named conversation contexts
    messages       - Append-only chat turns (cascade-deleted with their session)
    memories       - Stored knowledge; session_id NULL => global
    memory_chunks  - Embedded segments of a memory (cascade-deleted with it)

Embeddings are stored as float32 BLOBs of a fixed dimension. Nearest-neighbor
ranking is a cosine scan over the candidate chunks of the requested scope.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .errors import DimensionMismatchError, NotFoundError
from .schemas import (
    Memory,
    MemoryChunk,
    Message,
    NewMemory,
    NewMessage,
    NewSession,
    Session,
    validate_input,
)

logger = logging.getLogger("obelisk.common.database")

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL UNIQUE,
    metadata    TEXT NOT NULL DEFAULT '{}',
    inserted_at TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id  INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    role        TEXT NOT NULL,
    content     TEXT NOT NULL,
    tool_name   TEXT,
    inserted_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memories (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    kind        TEXT NOT NULL,
    text        TEXT NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    embedding   BLOB,
    session_id  INTEGER REFERENCES sessions(id) ON DELETE SET NULL,
    inserted_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memory_chunks (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    text      TEXT NOT NULL,
    embedding BLOB,
    memory_id INTEGER NOT NULL REFERENCES memories(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id);
CREATE INDEX IF NOT EXISTS idx_messages_role ON messages(role);
CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id);
CREATE INDEX IF NOT EXISTS idx_memories_kind ON memories(kind);
CREATE INDEX IF NOT EXISTS idx_chunks_memory ON memory_chunks(memory_id);
"""

_CHUNK_CANDIDATES_SQL = """
SELECT mc.id, mc.text, mc.memory_id, mc.embedding, m.kind, m.session_id
FROM memory_chunks mc
INNER JOIN memories m ON mc.memory_id = m.id
WHERE mc.embedding IS NOT NULL AND {scope}
ORDER BY mc.id
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """
    Thread-safe SQLite store for sessions, messages, memories and chunks.

    One connection is shared behind a re-entrant lock, so callers may hop
    threads (asyncio.to_thread) freely. Multi-row writes go through
    transaction(), which rolls back everything on the first exception.
    """

    def __init__(self, db_path: str = ":memory:", dimension: int = 1536):
        self.db_path = db_path
        self.dimension = dimension
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(
            str(Path(db_path).expanduser()) if db_path != ":memory:" else db_path,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA_SQL)
        logger.info("Opened store at %s (dim=%d)", db_path, dimension)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Unit of work: commit on success, roll back on the first exception"""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                    logger.debug("Transaction rolled back")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Vector encoding
    # ------------------------------------------------------------------

    def _encode_vector(self, vector: Optional[Sequence[float]]) -> Optional[bytes]:
        if vector is None:
            return None
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.shape[0] != self.dimension:
            raise DimensionMismatchError(
                f"Expected {self.dimension}-dimensional vector, got shape {arr.shape}"
            )
        return arr.tobytes()

    @staticmethod
    def _decode_vector(blob: Optional[bytes]) -> Optional[List[float]]:
        if blob is None:
            return None
        return np.frombuffer(blob, dtype=np.float32).tolist()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            name=row["name"],
            metadata=json.loads(row["metadata"]),
            inserted_at=row["inserted_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=json.loads(row["content"]),
            tool_name=row["tool_name"],
            inserted_at=row["inserted_at"],
        )

    def _to_chunk(self, row: sqlite3.Row) -> MemoryChunk:
        return MemoryChunk(
            id=row["id"],
            text=row["text"],
            embedding=self._decode_vector(row["embedding"]),
            memory_id=row["memory_id"],
        )

    def _to_memory(self, row: sqlite3.Row, chunks: Optional[List[MemoryChunk]] = None) -> Memory:
        return Memory(
            id=row["id"],
            kind=row["kind"],
            text=row["text"],
            metadata=json.loads(row["metadata"]),
            embedding=self._decode_vector(row["embedding"]),
            session_id=row["session_id"],
            inserted_at=row["inserted_at"],
            chunks=chunks or [],
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_or_create_session(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> Session:
        """Insert the session if absent; an existing row is returned unchanged"""
        new = validate_input(NewSession, {"name": name, "metadata": metadata or {}})
        now = _now_iso()
        with self.transaction():
            self._conn.execute(
                "INSERT OR IGNORE INTO sessions (name, metadata, inserted_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (new.name, json.dumps(new.metadata), now, now),
            )
            row = self._conn.execute(
                "SELECT * FROM sessions WHERE name = ?", (new.name,)
            ).fetchone()
        return self._to_session(row)

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._to_session(row) if row else None

    def get_session_by_name(self, name: str) -> Optional[Session]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sessions WHERE name = ?", (name,)
            ).fetchone()
        return self._to_session(row) if row else None

    def delete_session(self, session_id: int) -> bool:
        """Delete a session; its messages cascade, its memories become global"""
        with self.transaction():
            cur = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def insert_message(
        self,
        session_id: int,
        role: str,
        content: Dict[str, Any],
        tool_name: Optional[str] = None,
    ) -> Message:
        new = validate_input(
            NewMessage,
            {"session_id": session_id, "role": role, "content": content, "tool_name": tool_name},
        )
        with self.transaction():
            try:
                cur = self._conn.execute(
                    "INSERT INTO messages (session_id, role, content, tool_name, inserted_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (new.session_id, new.role.value, json.dumps(new.content), new.tool_name, _now_iso()),
                )
            except sqlite3.IntegrityError as e:
                raise NotFoundError(f"Session not found: {new.session_id}") from e
            row = self._conn.execute(
                "SELECT * FROM messages WHERE id = ?", (cur.lastrowid,)
            ).fetchone()
        return self._to_message(row)

    def recent_messages(self, session_id: int, limit: int) -> List[Message]:
        """Last `limit` messages of a session in chronological order"""
        if limit <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY id DESC LIMIT ?",
                (session_id, limit),
            ).fetchall()
        return [self._to_message(r) for r in reversed(rows)]

    def count_messages(self, session_id: int) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM messages WHERE session_id = ?", (session_id,)
            ).fetchone()
        return row[0]

    def delete_messages(self, session_id: int) -> int:
        with self.transaction():
            cur = self._conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Memories and chunks
    # ------------------------------------------------------------------

    def insert_memory(self, new: NewMemory, embedding: Optional[Sequence[float]] = None) -> Memory:
        blob = self._encode_vector(embedding)
        with self.transaction():
            try:
                cur = self._conn.execute(
                    "INSERT INTO memories (kind, text, metadata, embedding, session_id, inserted_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (new.kind.value, new.text, json.dumps(new.metadata), blob, new.session_id, _now_iso()),
                )
            except sqlite3.IntegrityError as e:
                raise NotFoundError(f"Session not found: {new.session_id}") from e
            row = self._conn.execute(
                "SELECT * FROM memories WHERE id = ?", (cur.lastrowid,)
            ).fetchone()
        return self._to_memory(row)

    def insert_chunk(
        self,
        memory_id: int,
        text: str,
        embedding: Optional[Sequence[float]] = None,
    ) -> MemoryChunk:
        blob = self._encode_vector(embedding)
        with self.transaction():
            cur = self._conn.execute(
                "INSERT INTO memory_chunks (text, embedding, memory_id) VALUES (?, ?, ?)",
                (text, blob, memory_id),
            )
            row = self._conn.execute(
                "SELECT * FROM memory_chunks WHERE id = ?", (cur.lastrowid,)
            ).fetchone()
        return self._to_chunk(row)

    def insert_memory_with_chunks(
        self,
        new: NewMemory,
        embedding: Optional[Sequence[float]],
        chunks: List[Tuple[str, Optional[Sequence[float]]]],
    ) -> Memory:
        """Insert a memory and all its chunks atomically"""
        with self.transaction():
            memory = self.insert_memory(new, embedding)
            stored = [self.insert_chunk(memory.id, text, vector) for text, vector in chunks]
        return memory.model_copy(update={"chunks": stored})

    def get_memory(self, memory_id: int) -> Optional[Memory]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
            if row is None:
                return None
            return self._to_memory(row, self.list_chunks(memory_id))

    def list_memories(self, session_id: Optional[int] = None) -> List[Memory]:
        """Memories with chunks, newest first; session_id=None lists global ones"""
        with self._lock:
            if session_id is None:
                rows = self._conn.execute(
                    "SELECT * FROM memories WHERE session_id IS NULL ORDER BY id DESC"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM memories WHERE session_id = ? ORDER BY id DESC",
                    (session_id,),
                ).fetchall()
            return [self._to_memory(r, self.list_chunks(r["id"])) for r in rows]

    def delete_memory(self, memory_id: int) -> bool:
        with self.transaction():
            cur = self._conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        return cur.rowcount > 0

    def list_chunks(self, memory_id: int) -> List[MemoryChunk]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM memory_chunks WHERE memory_id = ? ORDER BY id",
                (memory_id,),
            ).fetchall()
        return [self._to_chunk(r) for r in rows]

    def update_memory_embedding(self, memory_id: int, embedding: Sequence[float]) -> None:
        blob = self._encode_vector(embedding)
        with self.transaction():
            cur = self._conn.execute(
                "UPDATE memories SET embedding = ? WHERE id = ?", (blob, memory_id)
            )
        if cur.rowcount == 0:
            raise NotFoundError(f"Memory not found: {memory_id}")

    def update_chunk_embedding(self, chunk_id: int, embedding: Sequence[float]) -> None:
        blob = self._encode_vector(embedding)
        with self.transaction():
            cur = self._conn.execute(
                "UPDATE memory_chunks SET embedding = ? WHERE id = ?", (blob, chunk_id)
            )
        if cur.rowcount == 0:
            raise NotFoundError(f"MemoryChunk not found: {chunk_id}")

    # ------------------------------------------------------------------
    # Nearest-neighbor ranking
    # ------------------------------------------------------------------

    def nearest_chunks(
        self,
        vector: Sequence[float],
        session_id: Optional[int] = None,
        include_global: bool = True,
        k: int = 8,
        threshold: float = 0.0,
    ) -> List[Dict[str, Any]]:
        """
        Rank embedded chunks by cosine similarity to `vector`.

        Scope: session_id=None → global only; session + include_global →
        global ∪ session; session without include_global → session only.

        Returns dicts with chunk_id, text, memory_id, kind, session_id and
        the raw score (1 - cosine distance), highest first, ties by chunk id.

        Raises:
            DimensionMismatchError: if the query vector has the wrong shape
        """
        query = np.asarray(vector, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != self.dimension:
            raise DimensionMismatchError(
                f"Query vector has shape {query.shape}, store expects ({self.dimension},)"
            )
        if k <= 0:
            return []

        if session_id is None:
            scope, params = "m.session_id IS NULL", ()
        elif include_global:
            scope, params = "(m.session_id IS NULL OR m.session_id = ?)", (session_id,)
        else:
            scope, params = "m.session_id = ?", (session_id,)

        with self._lock:
            rows = self._conn.execute(
                _CHUNK_CANDIDATES_SQL.format(scope=scope), params
            ).fetchall()
        if not rows:
            return []

        matrix = np.vstack(
            [np.frombuffer(r["embedding"], dtype=np.float32) for r in rows]
        ).astype(np.float64)
        denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)

        order = np.argsort(-scores, kind="stable")
        results = []
        for idx in order:
            score = float(scores[idx])
            if score < threshold:
                break
            row = rows[idx]
            results.append({
                "chunk_id": row["id"],
                "text": row["text"],
                "memory_id": row["memory_id"],
                "kind": row["kind"],
                "session_id": row["session_id"],
                "score": score,
            })
            if len(results) >= k:
                break
        return results
