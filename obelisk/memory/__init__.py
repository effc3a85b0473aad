"""Memory storage: sessions, memories and chunking"""

from .chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_text, merge_chunks
from .memory_store import MemoryStore

__all__ = [
    "DEFAULT_CHUNK_OVERLAP",
    "DEFAULT_CHUNK_SIZE",
    "MemoryStore",
    "chunk_text",
    "merge_chunks",
]
