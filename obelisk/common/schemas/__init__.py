"""
Obelisk Record Schemas

Sessions, messages, memories and memory chunks.
"""

from .records import (
    Session,
    Message,
    Memory,
    MemoryChunk,
    MemoryKind,
    MessageRole,
    NewSession,
    NewMessage,
    NewMemory,
    validate_input,
)

__all__ = [
    "Session",
    "Message",
    "Memory",
    "MemoryChunk",
    "MemoryKind",
    "MessageRole",
    "NewSession",
    "NewMessage",
    "NewMemory",
    "validate_input",
]
