"""
Chat - retrieval-augmented conversation over stored memories

Key Components:
- Chat: session-scoped RAG turns, history and streaming
- build_rag_prompt: single-message prompt assembly
"""

from .chat import Chat, ChatReply, HistoryEntry
from .prompt import SYSTEM_PREAMBLE, build_rag_prompt

__all__ = [
    "Chat",
    "ChatReply",
    "HistoryEntry",
    "SYSTEM_PREAMBLE",
    "build_rag_prompt",
]
