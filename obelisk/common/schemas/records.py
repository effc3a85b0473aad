"""
Persistent Record Schemas

Sessions own an append-only message sequence. Memories own their chunks.
A memory with session_id=None is global and visible to every session.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from enum import Enum

from ..errors import ValidationError


# ============================================================================
# Enums
# ============================================================================

class MemoryKind(str, Enum):
    """Kinds of stored knowledge"""
    NOTE = "note"
    FACT = "fact"
    DOC = "doc"
    CODE = "code"
    EVENT = "event"


class MessageRole(str, Enum):
    """Chat message roles"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ============================================================================
# Stored records
# ============================================================================

class Session(BaseModel):
    """Named conversation context"""
    id: int
    name: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    inserted_at: datetime
    updated_at: datetime


class Message(BaseModel):
    """One chat turn; content is a structured payload ({"text": ...} for plain turns)"""
    id: int
    session_id: int
    role: MessageRole
    content: Dict[str, Any]
    tool_name: Optional[str] = None
    inserted_at: datetime

    @property
    def text(self) -> Optional[str]:
        value = self.content.get("text")
        return value if isinstance(value, str) else None


class MemoryChunk(BaseModel):
    """Independently embedded segment of a memory's text"""
    id: int
    text: str
    embedding: Optional[List[float]] = None
    memory_id: int


class Memory(BaseModel):
    """Stored unit of knowledge"""
    id: int
    kind: MemoryKind
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[List[float]] = None
    session_id: Optional[int] = None  # None => global
    inserted_at: datetime
    chunks: List[MemoryChunk] = Field(default_factory=list)

    @property
    def is_global(self) -> bool:
        return self.session_id is None


# ============================================================================
# Input models (validated before anything is written)
# ============================================================================

class NewSession(BaseModel):
    name: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NewMessage(BaseModel):
    session_id: int
    role: MessageRole
    content: Dict[str, Any]
    tool_name: Optional[str] = None


class NewMemory(BaseModel):
    text: str
    kind: MemoryKind
    session_id: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("text must not be empty")
        return value


ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_input(model: Type[ModelT], data: Any) -> ModelT:
    """Validate `data` against an input model, raising obelisk ValidationError"""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "<root>"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__} ({fields}): {e}") from e
