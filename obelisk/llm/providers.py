"""
Chat providers for OpenAI, Anthropic and Ollama.

SDK clients are created lazily so a provider without credentials can be
registered and only fails when actually called.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..common.errors import ErrorReason, ProviderError
from .base import (
    ChatCompletion,
    ChatMessage,
    ChatProvider,
    Choice,
    Messages,
    StreamCallback,
    StreamChunk,
    Usage,
    emit,
)

logger = logging.getLogger("obelisk.llm.providers")

DEFAULT_TEMPERATURE = 0.2


def _field(msg: Any, key: str) -> Any:
    if isinstance(msg, dict):
        return msg.get(key)
    return getattr(msg, key, None)


# ============================================================================
# OpenAI
# ============================================================================

class OpenAIChatProvider(ChatProvider):
    """Chat Completions API via AsyncOpenAI, with streaming"""

    name = "openai"
    default_model = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "",
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: float = 60.0,
        client=None,
    ) -> None:
        self.model = model or self.default_model
        self.temperature = temperature
        self.timeout = timeout
        self._api_key = api_key
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ProviderError(
                "OPENAI_API_KEY is required but not set. Export OPENAI_API_KEY=sk-...",
                reason=ErrorReason.LLM_FAILED,
            )
        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(api_key=self._api_key, timeout=self.timeout)
        return self._client

    def _request(self, messages: Messages, opts: Dict[str, Any]) -> Dict[str, Any]:
        request = {
            "model": opts.get("model") or self.model,
            "messages": [
                {"role": _field(m, "role"), "content": _field(m, "content")} for m in messages
            ],
            "temperature": opts.get("temperature", self.temperature),
        }
        if opts.get("max_tokens"):
            request["max_tokens"] = opts["max_tokens"]
        return request

    async def chat(self, messages: Messages, opts: Optional[Dict[str, Any]] = None) -> ChatCompletion:
        import openai

        client = self._get_client()
        try:
            response = await client.chat.completions.create(**self._request(messages, opts or {}))
        except openai.APIStatusError as e:
            raise ProviderError(
                f"OpenAI returned HTTP {e.status_code}: {e.message}", status=e.status_code
            ) from e
        except openai.APIError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        choices = [
            Choice(
                message=ChatMessage(
                    role=choice.message.role or "assistant",
                    content=choice.message.content or "",
                ),
                finish_reason=choice.finish_reason or "stop",
            )
            for choice in response.choices
        ]
        usage = Usage()
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        return ChatCompletion(choices=choices, usage=usage, model=response.model or self.model)

    async def stream_chat(
        self,
        messages: Messages,
        opts: Optional[Dict[str, Any]],
        on_chunk: StreamCallback,
    ) -> None:
        import openai

        client = self._get_client()
        try:
            stream = await client.chat.completions.create(
                stream=True, **self._request(messages, opts or {})
            )
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta
                if delta is not None and delta.content:
                    await emit(on_chunk, StreamChunk("content", delta.content))
        except openai.APIStatusError as e:
            raise ProviderError(
                f"OpenAI stream returned HTTP {e.status_code}: {e.message}", status=e.status_code
            ) from e
        except openai.APIError as e:
            raise ProviderError(f"OpenAI stream failed: {e}") from e
        await emit(on_chunk, StreamChunk("done"))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()


# ============================================================================
# Anthropic
# ============================================================================

class AnthropicChatProvider(ChatProvider):
    """Messages API via AsyncAnthropic; responses normalized to the OpenAI shape"""

    name = "anthropic"
    default_model = "claude-3-5-sonnet-20241022"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "",
        max_tokens: int = 4000,
        temperature: Optional[float] = None,
        timeout: float = 60.0,
        client=None,
    ) -> None:
        self.model = model or self.default_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._api_key = api_key
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ProviderError(
                "ANTHROPIC_API_KEY is required but not set. Export ANTHROPIC_API_KEY=sk-ant-...",
                reason=ErrorReason.LLM_FAILED,
            )
        import anthropic

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=self.timeout)
        return self._client

    @staticmethod
    def split_system(messages: Messages) -> Tuple[Optional[str], List[Dict[str, str]]]:
        """Pull system messages out into one system prompt; others become user/assistant"""
        system_parts = []
        turns = []
        for msg in messages:
            role = _field(msg, "role")
            content = _field(msg, "content")
            if role == "system":
                system_parts.append(content or "")
            else:
                turns.append({"role": "user" if role == "user" else "assistant", "content": content})
        system = "\n".join(system_parts) if system_parts else None
        return system, turns

    async def chat(self, messages: Messages, opts: Optional[Dict[str, Any]] = None) -> ChatCompletion:
        import anthropic

        opts = opts or {}
        system, turns = self.split_system(messages)
        request: Dict[str, Any] = {
            "model": opts.get("model") or self.model,
            "max_tokens": opts.get("max_tokens") or self.max_tokens,
            "messages": turns,
        }
        if system:
            request["system"] = system
        temperature = opts.get("temperature", self.temperature)
        if temperature is not None:
            request["temperature"] = temperature

        client = self._get_client()
        try:
            response = await client.messages.create(**request)
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"Anthropic returned HTTP {e.status_code}: {e.message}", status=e.status_code
            ) from e
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

        text = next(
            (block.text for block in response.content if getattr(block, "type", None) == "text"),
            "",
        )
        input_tokens = getattr(response.usage, "input_tokens", 0) or 0
        output_tokens = getattr(response.usage, "output_tokens", 0) or 0
        return ChatCompletion(
            choices=[
                Choice(
                    message=ChatMessage(role="assistant", content=text),
                    finish_reason=response.stop_reason or "stop",
                )
            ],
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            model=response.model or self.model,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()


# ============================================================================
# Ollama
# ============================================================================

class OllamaChatProvider(ChatProvider):
    """Local models over Ollama's /api/chat endpoint"""

    name = "ollama"
    default_model = "llama3.2"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "",
        temperature: Optional[float] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model or self.default_model
        self.temperature = temperature
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def chat(self, messages: Messages, opts: Optional[Dict[str, Any]] = None) -> ChatCompletion:
        opts = opts or {}
        body: Dict[str, Any] = {
            "model": opts.get("model") or self.model,
            "messages": [
                {"role": _field(m, "role"), "content": _field(m, "content")} for m in messages
            ],
            "stream": False,
        }
        temperature = opts.get("temperature", self.temperature)
        if temperature is not None:
            body["options"] = {"temperature": temperature}

        try:
            response = await self._client.post("/api/chat", json=body)
        except httpx.ConnectError as e:
            raise ProviderError(
                "Ollama server not running. Please start Ollama or check OLLAMA_BASE_URL"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Ollama request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError(
                f"Ollama returned HTTP {response.status_code}: {response.text}",
                status=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"Ollama returned a non-JSON body: {response.text[:200]}") from e
        return self._normalize(payload)

    def _normalize(self, payload: Any) -> ChatCompletion:
        message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(message, dict) or "content" not in message:
            logger.warning("Unexpected Ollama response shape; passing it through as text")
            return ChatCompletion(
                choices=[Choice(message=ChatMessage(role="assistant", content=repr(payload)))],
                model=self.default_model,
            )

        prompt_tokens = payload.get("prompt_eval_count") or 0
        completion_tokens = payload.get("eval_count") or 0
        return ChatCompletion(
            choices=[
                Choice(
                    message=ChatMessage(role="assistant", content=message["content"] or ""),
                    finish_reason="stop" if payload.get("done") else "length",
                )
            ],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            model=payload.get("model") or self.default_model,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
