"""
LLM Router

Dispatches chat requests to a named provider. The provider is chosen per call
(opts["provider"]), else the configured default, else "openai".
"""

import logging
from typing import Any, Dict, List, Optional

from ..common.config import LLMConfig
from ..common.errors import UnknownProviderError
from .base import ChatCompletion, ChatProvider, Messages, StreamCallback
from .providers import AnthropicChatProvider, OllamaChatProvider, OpenAIChatProvider

logger = logging.getLogger("obelisk.llm.router")

DEFAULT_PROVIDER = "openai"


class LLMRouter:
    """Name -> provider registry with per-call selection"""

    def __init__(
        self,
        providers: Dict[str, ChatProvider],
        default_provider: Optional[str] = None,
    ) -> None:
        self._providers = dict(providers)
        self.default_provider = (default_provider or DEFAULT_PROVIDER).lower()

    @classmethod
    def from_config(cls, config: LLMConfig) -> "LLMRouter":
        """Register the builtin providers with credentials from config"""
        providers: Dict[str, ChatProvider] = {
            "openai": OpenAIChatProvider(
                api_key=config.openai_api_key,
                model=config.openai_model,
                temperature=config.temperature,
                timeout=config.timeout,
            ),
            "anthropic": AnthropicChatProvider(
                api_key=config.anthropic_api_key,
                model=config.anthropic_model,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
            ),
            "ollama": OllamaChatProvider(
                base_url=config.ollama_base_url,
                model=config.ollama_model,
                timeout=config.timeout,
            ),
        }
        return cls(providers, default_provider=config.provider)

    def available_providers(self) -> List[str]:
        return sorted(self._providers)

    def resolve_provider_name(self, opts: Optional[Dict[str, Any]] = None) -> str:
        name = (opts or {}).get("provider") or self.default_provider
        return name.lower()

    def get_provider(self, name: str) -> ChatProvider:
        """
        Raises:
            UnknownProviderError: `name` is not registered
        """
        provider = self._providers.get(name)
        if provider is None:
            available = ", ".join(self.available_providers())
            raise UnknownProviderError(
                f"Unknown LLM provider: {name}\n\n"
                f"Available providers: {available}\n\n"
                "Set LLM_PROVIDER environment variable or pass provider in options."
            )
        return provider

    async def chat(self, messages: Messages, opts: Optional[Dict[str, Any]] = None) -> ChatCompletion:
        name = self.resolve_provider_name(opts)
        provider = self.get_provider(name)
        logger.debug("Dispatching chat to %s (%d messages)", name, len(messages))
        return await provider.chat(messages, _provider_opts(opts))

    async def stream_chat(
        self,
        messages: Messages,
        opts: Optional[Dict[str, Any]],
        on_chunk: StreamCallback,
    ) -> None:
        name = self.resolve_provider_name(opts)
        provider = self.get_provider(name)
        logger.debug("Dispatching stream_chat to %s", name)
        await provider.stream_chat(messages, _provider_opts(opts), on_chunk)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def _provider_opts(opts: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {key: value for key, value in (opts or {}).items() if key != "provider" and value is not None}
