"""
LLM - chat-completion providers behind a router

Providers:
- openai:    Chat Completions API (streaming supported)
- anthropic: Messages API
- ollama:    local models via /api/chat
"""

from .base import ChatCompletion, ChatMessage, ChatProvider, Choice, StreamChunk, Usage
from .providers import AnthropicChatProvider, OllamaChatProvider, OpenAIChatProvider
from .router import DEFAULT_PROVIDER, LLMRouter

__all__ = [
    "AnthropicChatProvider",
    "ChatCompletion",
    "ChatMessage",
    "ChatProvider",
    "Choice",
    "DEFAULT_PROVIDER",
    "LLMRouter",
    "OllamaChatProvider",
    "OpenAIChatProvider",
    "StreamChunk",
    "Usage",
]
