"""
LLM provider contract and normalized response types.

Every provider returns a ChatCompletion in the OpenAI chat-completions shape,
whatever its backend's native format is.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..common.errors import ErrorReason, ProviderError


# ============================================================================
# Normalized response
# ============================================================================

class ChatMessage(BaseModel):
    role: str
    content: str


class Choice(BaseModel):
    message: ChatMessage
    finish_reason: str = "stop"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletion(BaseModel):
    choices: List[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    model: str = ""

    @property
    def text(self) -> str:
        """Content of the first choice ("" when there is none)"""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


# ============================================================================
# Streaming
# ============================================================================

@dataclass
class StreamChunk:
    """Streaming callback payload: type is "content" or "done" """
    type: str
    content: str = ""


StreamCallback = Callable[[StreamChunk], Union[None, Awaitable[None]]]


async def emit(on_chunk: StreamCallback, chunk: StreamChunk) -> None:
    """Invoke a sync or async stream callback"""
    outcome = on_chunk(chunk)
    if inspect.isawaitable(outcome):
        await outcome


# ============================================================================
# Provider contract
# ============================================================================

Messages = List[Dict[str, Any]]


class ChatProvider(ABC):
    """Chat-completion backend"""

    name: str = ""
    default_model: str = ""

    @abstractmethod
    async def chat(self, messages: Messages, opts: Optional[Dict[str, Any]] = None) -> ChatCompletion:
        """
        Run one chat completion.

        Raises:
            ProviderError: tagged LLM_FAILED on bad status, malformed payload
                or connection failure
        """

    async def stream_chat(
        self,
        messages: Messages,
        opts: Optional[Dict[str, Any]],
        on_chunk: StreamCallback,
    ) -> None:
        raise ProviderError(
            f"Streaming is not implemented for provider {self.name}",
            reason=ErrorReason.NOT_IMPLEMENTED,
        )

    async def aclose(self) -> None:
        """Release network resources"""
