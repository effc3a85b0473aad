"""
Embedding Providers

Narrow interface to an embedding backend: text in, vector out.
The OpenAI provider uses the async SDK; tests plug in their own provider.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..common.errors import ErrorReason, ProviderError, UnknownProviderError

logger = logging.getLogger("obelisk.embeddings.providers")

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 1536

# Model -> vector dimension
EMBEDDING_DIMENSIONS: Dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def embedding_dimensions(model: Optional[str] = None) -> int:
    """Vector dimension for a model; unknown models get the default dimension"""
    return EMBEDDING_DIMENSIONS.get(model or DEFAULT_EMBEDDING_MODEL, DEFAULT_EMBEDDING_DIMENSIONS)


class EmbeddingProvider(ABC):
    """Embedding backend contract"""

    name: str = ""

    @abstractmethod
    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """
        Embed a single text.

        Raises:
            ProviderError: tagged EMBEDDING_FAILED on any backend failure
        """


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings endpoint via AsyncOpenAI"""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        client=None,
    ):
        """
        Args:
            api_key: OpenAI API key (required unless `client` is given)
            model: Default embedding model
            client: Pre-built AsyncOpenAI-compatible client
        """
        self.model = model
        self._api_key = api_key
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ProviderError(
                "OPENAI_API_KEY is required for OpenAI embeddings but is not set",
                reason=ErrorReason.EMBEDDING_FAILED,
            )
        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        import openai

        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=model or self.model,
                input=text,
                encoding_format="float",
            )
        except openai.APIStatusError as e:
            raise ProviderError(
                f"OpenAI embeddings returned HTTP {e.status_code}: {e.message}",
                reason=ErrorReason.EMBEDDING_FAILED,
                status=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(
                f"OpenAI embeddings request failed: {e}",
                reason=ErrorReason.EMBEDDING_FAILED,
            ) from e

        data = getattr(response, "data", None)
        if not data or getattr(data[0], "embedding", None) is None:
            raise ProviderError(
                "OpenAI embeddings response had no embedding data",
                reason=ErrorReason.EMBEDDING_FAILED,
            )
        return list(data[0].embedding)


def create_embedding_provider(
    name: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> EmbeddingProvider:
    """
    Build the embedding backend named in config.

    Raises:
        UnknownProviderError: `name` is not a supported embedding provider
    """
    name = (name or "openai").lower()
    if name == "openai":
        return OpenAIEmbeddingProvider(api_key=api_key, model=model or DEFAULT_EMBEDDING_MODEL)
    raise UnknownProviderError(
        f"Unknown embedding provider: {name}\n\n"
        "Available providers: openai"
    )
