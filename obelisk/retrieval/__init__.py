"""
Retrieval - semantic search over memory chunks

Pipeline:
1. Embed the query text (batch coordinator)
2. Rank scoped chunks by cosine similarity
3. Drop results below the threshold and keep the top k
"""

from .retriever import RetrievedChunk, Retriever

__all__ = [
    "RetrievedChunk",
    "Retriever",
]
